"""
Top-level facade for shellguard.

Classify agent-proposed shell commands, run the acceptable ones under
resource limits, and snapshot every path they may touch so the effects can
be rolled back.
"""

from shellguard._types import (
    CommandError,
    CommandRequest,
    ConfirmationRequest,
    ExecutionLimits,
    ExecutionOutcome,
    ExecutionResult,
    KilledReason,
    RetentionPolicy,
    RollbackResult,
    Severity,
    Snapshot,
    SnapshotDiff,
    SnapshotEntry,
    SnapshotStatus,
    Verdict,
    VerdictKind,
    ViolationRecord,
)
from shellguard.api import create_safety_coordinator
from shellguard.coordinator import SafetyCoordinator
from shellguard.errors import (
    ConfigurationError,
    ShellGuardError,
    SnapshotError,
    SnapshotNotFound,
    SpawnError,
)
from shellguard.networking import NetworkMode
from shellguard.sandbox import LocalSandbox, Sandbox
from shellguard.security import SecurityPolicy, SecurityViolation, ViolationLog
from shellguard.snapshots import SnapshotStore

__all__ = [
    "create_safety_coordinator",
    "SafetyCoordinator",
    "SecurityPolicy",
    "SecurityViolation",
    "ViolationLog",
    "SnapshotStore",
    "Sandbox",
    "LocalSandbox",
    "NetworkMode",
    "CommandError",
    "CommandRequest",
    "ConfirmationRequest",
    "ExecutionLimits",
    "ExecutionOutcome",
    "ExecutionResult",
    "KilledReason",
    "RetentionPolicy",
    "RollbackResult",
    "Severity",
    "Snapshot",
    "SnapshotDiff",
    "SnapshotEntry",
    "SnapshotStatus",
    "Verdict",
    "VerdictKind",
    "ViolationRecord",
    "ShellGuardError",
    "ConfigurationError",
    "SnapshotError",
    "SnapshotNotFound",
    "SpawnError",
]
