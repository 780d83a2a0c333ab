"""
Exception hierarchy.

These are infrastructure failures: the safety net itself is compromised and
the current operation must stop. Command-level failures are never raised,
they are encoded in ``ExecutionResult``.
"""

from __future__ import annotations


class ShellGuardError(Exception):
    """Base class for all shellguard errors."""


class ConfigurationError(ShellGuardError):
    """Invalid construction arguments."""


class SnapshotError(ShellGuardError):
    """A snapshot could not be captured, persisted or used for restore."""


class SnapshotNotFound(SnapshotError, KeyError):
    """No snapshot with the requested id."""

    def __init__(self, snapshot_id: str) -> None:
        self.snapshot_id = snapshot_id
        super().__init__(f"Snapshot not found: {snapshot_id}")

    def __str__(self) -> str:
        return f"Snapshot not found: {self.snapshot_id}"


class SpawnError(ShellGuardError):
    """
    The shell could not be started.

    Attributes:
        snapshot_id: Snapshot captured before the spawn attempt, if any.
    """

    def __init__(self, message: str, *, snapshot_id: str | None = None) -> None:
        self.snapshot_id = snapshot_id
        super().__init__(message)
