"""
Main entry point: create_safety_coordinator factory function.

This is the primary API for wiring the classifier, snapshot store and
executor together for an agent.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from shellguard._types import ConfirmationHandler, ExecutionLimits, RetentionPolicy
from shellguard.coordinator import DEFAULT_CONFIRMATION_TIMEOUT, SafetyCoordinator
from shellguard.errors import ConfigurationError
from shellguard.sandbox._base import Sandbox
from shellguard.sandbox.local import LocalSandbox
from shellguard.security.policy import SecurityPolicy
from shellguard.security.violations import ViolationLog
from shellguard.snapshots.store import DEFAULT_MAX_DEPTH, SnapshotStore

DEFAULT_HOME = Path("~/.shellguard")


def create_safety_coordinator(
    *,
    snapshot_dir: Path | str | None = None,
    violation_log: Path | str | None = None,
    security: SecurityPolicy | None = None,
    limits: ExecutionLimits | None = None,
    retention: RetentionPolicy | None = None,
    confirm: ConfirmationHandler | None = None,
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
    sandbox: Sandbox | Literal["local"] = "local",
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> SafetyCoordinator:
    """
    Create a safety coordinator for executing agent-proposed commands.

    Args:
        snapshot_dir: Where snapshots are persisted.
                      Defaults to ``~/.shellguard/snapshots``.
        violation_log: JSONL file for violations. In-memory only if omitted.
        security: Classifier policy. Defaults to ``SecurityPolicy.standard()``.
        limits: Default execution limits (30s, 512MB, 1MB output, network allowed).
        retention: Snapshot retention. Defaults to 50 snapshots / 24 hours.
        confirm: Async approve/deny callback for commands that need a human.
                 Without one, such commands are denied.
        confirmation_timeout: Seconds to wait for ``confirm`` before denying.
        sandbox: Executor backend. Currently only "local" is supported.
                 Pass a Sandbox instance for custom implementations.
        max_depth: Depth bound when enumerating recursive-delete targets.

    Returns:
        A ready SafetyCoordinator.

    Raises:
        ConfigurationError: Unknown sandbox backend or invalid timeout.
        SnapshotError: The snapshot directory cannot be created.

    Example:
        >>> coordinator = create_safety_coordinator(snapshot_dir="./.snapshots")
        >>> outcome = await coordinator.execute("rm -rf ./build", ".")
        >>> if not outcome.success:
        ...     await coordinator.restore(outcome.snapshot_id)
    """
    if confirmation_timeout <= 0:
        raise ConfigurationError(f"confirmation_timeout must be positive, got {confirmation_timeout}")

    limits = limits or ExecutionLimits.default()

    sandbox_instance: Sandbox
    if isinstance(sandbox, str):
        if sandbox == "local":
            sandbox_instance = LocalSandbox(limits=limits)
        else:
            raise ConfigurationError(
                f"Unknown sandbox type: {sandbox}. Use 'local' or provide a Sandbox instance."
            )
    else:
        sandbox_instance = sandbox

    store = SnapshotStore(
        Path(snapshot_dir) if snapshot_dir else DEFAULT_HOME / "snapshots",
        retention=retention,
        max_depth=max_depth,
    )

    return SafetyCoordinator(
        store=store,
        sandbox=sandbox_instance,
        policy=security or SecurityPolicy.standard(),
        violations=ViolationLog(violation_log),
        limits=limits,
        confirm=confirm,
        confirmation_timeout=confirmation_timeout,
    )
