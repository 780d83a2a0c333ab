"""
PydanticAI integration for shellguard.

Provides helpers to create PydanticAI-compatible tools.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable

try:
    from pydantic_ai import RunContext
except ImportError:
    raise ImportError(
        "PydanticAI integration requires 'pydantic-ai'. "
        "Install with `pip install shellguard[pydantic-ai]`"
    )

from shellguard.errors import SnapshotNotFound
from shellguard.integrations._format import format_outcome, format_rollback

if TYPE_CHECKING:
    from shellguard.coordinator import SafetyCoordinator


def create_shell_tool(coordinator: SafetyCoordinator, cwd: Path | str = ".") -> Callable:
    """
    Create a PydanticAI tool function for safe shell execution.

    The response ends with the snapshot id so the agent can roll back.

    Example:
        >>> from pydantic_ai import Agent
        >>> shell_tool = create_shell_tool(create_safety_coordinator(), "./project")
        >>> agent = Agent("openai:gpt-4", tools=[shell_tool])
    """
    workdir = str(cwd)

    async def shell_tool(
        ctx: RunContext,
        command: str,
    ) -> str:
        """
        Execute a shell command safely.
        Dangerous commands are blocked; every run is snapshotted first.
        """
        outcome = await coordinator.execute(command, workdir)
        return format_outcome(outcome)

    return shell_tool


def create_rollback_tool(coordinator: SafetyCoordinator) -> Callable:
    """Create a PydanticAI tool that restores a snapshot by id."""

    async def rollback_tool(
        ctx: RunContext,
        snapshot_id: str,
    ) -> str:
        """Undo the filesystem effects of a previous shell command."""
        try:
            result = await coordinator.restore(snapshot_id)
        except SnapshotNotFound as exc:
            return str(exc)
        return format_rollback(result)

    return rollback_tool
