"""
Abstract base class for all command executors.

The coordinator only talks to this interface, which is also the seam tests
use to substitute a spy for the real process launcher.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shellguard._types import ExecutionLimits, ExecutionResult


class Sandbox(ABC):
    """
    Abstract base for all sandbox implementations.

    Provides a consistent interface for executing commands under an
    ``ExecutionLimits`` envelope and for tearing down running processes.
    """

    @abstractmethod
    async def execute(
        self,
        command: str,
        *,
        cwd: Path | str,
        limits: ExecutionLimits | None = None,
    ) -> ExecutionResult:
        """
        Execute a shell command and return the result.

        Never raises for command-level failures: timeouts, output overflow,
        signals and spawn errors are all encoded in the returned result.

        Args:
            command: The shell command to execute.
            cwd: Working directory for the child process.
            limits: Resource envelope. Defaults to ``ExecutionLimits()``.

        Returns:
            ExecutionResult with output, exit code and kill reason.
        """
        ...

    @abstractmethod
    def kill_all(self) -> int:
        """
        Kill every running child process.

        Returns:
            Number of processes signalled.
        """
        ...

    @property
    @abstractmethod
    def active_count(self) -> int:
        """Number of child processes currently running."""
        ...

    async def close(self) -> None:
        """
        Clean up sandbox resources.

        Idempotent - safe to call multiple times.
        """
        self.kill_all()

    async def __aenter__(self) -> Sandbox:
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager, cleaning up resources."""
        await self.close()
