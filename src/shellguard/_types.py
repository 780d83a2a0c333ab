"""
Core type definitions for shellguard.

Uses dataclasses and Protocols for lightweight, typed abstractions.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from shellguard.networking import NetworkMode


class VerdictKind(Enum):
    """Classifier outcome for a candidate command."""

    BLOCKED = "blocked"  # Never executed, always recorded as a violation
    REQUIRES_CONFIRMATION = "requires_confirmation"  # Needs a human approve/deny
    ALLOWED = "allowed"


class Severity(Enum):
    """Severity attached to a violation record."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class KilledReason(Enum):
    """Why a command did not run to natural completion."""

    NONE = "none"
    TIMEOUT = "timeout"
    OUTPUT_OVERFLOW = "output_overflow"
    SIGNAL = "signal"
    BLOCKED = "blocked"


@dataclass(frozen=True, slots=True)
class Verdict:
    """Immutable classification of a command."""

    kind: VerdictKind
    reason: str = ""
    pattern: str | None = None
    severity: Severity | None = None

    @classmethod
    def blocked(cls, reason: str, *, pattern: str | None = None,
                severity: Severity = Severity.ERROR) -> Verdict:
        return cls(VerdictKind.BLOCKED, reason, pattern, severity)

    @classmethod
    def requires_confirmation(cls, reason: str, *, pattern: str | None = None) -> Verdict:
        return cls(VerdictKind.REQUIRES_CONFIRMATION, reason, pattern)

    @classmethod
    def allowed(cls) -> Verdict:
        return cls(VerdictKind.ALLOWED)

    @property
    def is_blocked(self) -> bool:
        return self.kind is VerdictKind.BLOCKED

    @property
    def needs_confirmation(self) -> bool:
        return self.kind is VerdictKind.REQUIRES_CONFIRMATION

    @property
    def is_allowed(self) -> bool:
        return self.kind is VerdictKind.ALLOWED


@dataclass(frozen=True, slots=True)
class ExecutionLimits:
    """
    Resource and environment envelope for a single execution.

    Attributes:
        timeout: Wall-clock seconds before the process group is killed.
        max_output_bytes: Cap for each of stdout and stderr.
        max_memory_bytes: Address-space ceiling, best-effort (RLIMIT_AS).
        network: ``BLOCKED`` injects proxy variables pointing nowhere.
        restricted_path: Replace PATH with a minimal trusted set.
        env_allowlist: If set, only these variables are passed through.
        env_denylist: Variables always removed.
    """

    timeout: float = 30.0
    max_output_bytes: int = 1024 * 1024
    max_memory_bytes: int | None = 512 * 1024 * 1024
    network: NetworkMode = NetworkMode.ALLOWED
    restricted_path: bool = False
    env_allowlist: frozenset[str] | None = None
    env_denylist: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_output_bytes <= 0:
            raise ValueError(f"max_output_bytes must be positive, got {self.max_output_bytes}")

    @classmethod
    def default(cls) -> ExecutionLimits:
        """30s timeout, 512MB memory, 1MB output cap, network allowed."""
        return cls()

    @classmethod
    def strict(cls) -> ExecutionLimits:
        """Short timeout, no network, minimal PATH."""
        return cls(
            timeout=10.0,
            max_output_bytes=256 * 1024,
            max_memory_bytes=256 * 1024 * 1024,
            network=NetworkMode.BLOCKED,
            restricted_path=True,
        )


@dataclass(frozen=True, slots=True)
class CommandRequest:
    """One submitted command. Discarded once its result is returned."""

    command: str
    cwd: str
    explicit_paths: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Immutable result from command execution."""

    command: str
    stdout: str
    stderr: str
    exit_code: int
    duration: float = 0.0
    killed_reason: KilledReason = KilledReason.NONE
    truncated: bool = False
    sandboxed: bool = True
    spawn_error: str | None = None

    @property
    def killed(self) -> bool:
        return self.killed_reason is not KilledReason.NONE

    @property
    def success(self) -> bool:
        """Return True if command exited with code 0 and was not killed."""
        return self.exit_code == 0 and not self.killed and self.spawn_error is None

    @classmethod
    def blocked(cls, command: str, reason: str) -> ExecutionResult:
        """Synthetic result for a command that was never spawned."""
        return cls(
            command=command,
            stdout="",
            stderr=f"BLOCKED: {reason}",
            exit_code=-1,
            killed_reason=KilledReason.BLOCKED,
        )

    def raise_for_status(self) -> None:
        """Raise SecurityViolation for blocked commands, CommandError for failures."""
        if self.success:
            return
        if self.killed_reason is KilledReason.BLOCKED:
            from shellguard.security.policy import SecurityViolation

            raise SecurityViolation(self.stderr.removeprefix("BLOCKED: "), self.command)
        raise CommandError(
            f"Command failed with exit code {self.exit_code}"
            f" ({self.killed_reason.value}): {self.stderr or self.stdout}"
        )


class CommandError(Exception):
    """Raised when a command exits with non-zero status."""

    pass


@dataclass(frozen=True, slots=True)
class ViolationRecord:
    """Append-only log entry for a rejected command."""

    command: str
    reason: str
    severity: Severity
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "reason": self.reason,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ViolationRecord:
        return cls(
            command=data["command"],
            reason=data["reason"],
            severity=Severity(data["severity"]),
            timestamp=float(data["timestamp"]),
        )


class EntryKind(Enum):
    """Recorded pre-command state of one path."""

    ABSENT = "absent"
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


@dataclass(frozen=True, slots=True)
class SnapshotEntry:
    """One affected path's state before the command ran."""

    path: str
    kind: EntryKind
    content: bytes | None = None
    mode: int | None = None
    target: str | None = None

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "kind": self.kind.value}
        if self.content is not None:
            data["content"] = base64.b64encode(self.content).decode("ascii")
        if self.mode is not None:
            data["mode"] = self.mode
        if self.target is not None:
            data["target"] = self.target
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotEntry:
        content = data.get("content")
        return cls(
            path=data["path"],
            kind=EntryKind(data["kind"]),
            content=base64.b64decode(content) if content is not None else None,
            mode=data.get("mode"),
            target=data.get("target"),
        )


class SnapshotStatus(Enum):
    CAPTURED = "captured"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    Ordered pre-execution state of every path a command might touch.

    Entries keep discovery order. The only permitted change after capture is
    the status transition to ``ROLLED_BACK``.
    """

    id: str
    command: str
    cwd: str
    created_at: float
    entries: tuple[SnapshotEntry, ...]
    status: SnapshotStatus = SnapshotStatus.CAPTURED
    skipped: tuple[str, ...] = ()
    restores: str | None = None
    """Id of the snapshot this one backs up, for pre-restore backups."""

    @property
    def paths(self) -> list[str]:
        return [entry.path for entry in self.entries]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "cwd": self.cwd,
            "created_at": self.created_at,
            "status": self.status.value,
            "restores": self.restores,
            "skipped": list(self.skipped),
            "entries": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        return cls(
            id=data["id"],
            command=data["command"],
            cwd=data["cwd"],
            created_at=float(data["created_at"]),
            entries=tuple(SnapshotEntry.from_dict(e) for e in data["entries"]),
            status=SnapshotStatus(data.get("status", SnapshotStatus.CAPTURED.value)),
            skipped=tuple(data.get("skipped", ())),
            restores=data.get("restores"),
        )


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    """How many snapshots to keep, and for how long (seconds)."""

    max_count: int = 50
    max_age: float = 24 * 60 * 60

    def __post_init__(self) -> None:
        if self.max_count < 1:
            raise ValueError(f"max_count must be at least 1, got {self.max_count}")


@dataclass(frozen=True, slots=True)
class RollbackResult:
    """Outcome of restoring a snapshot."""

    snapshot_id: str
    success: bool
    restored_count: int
    errors: tuple[str, ...] = ()
    backup_id: str | None = None


@dataclass(frozen=True, slots=True)
class SnapshotDiff:
    """Paths whose current state differs from a snapshot."""

    added: tuple[str, ...] = ()
    modified: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def unchanged(self) -> bool:
        return not (self.added or self.modified or self.removed)


@dataclass(frozen=True, slots=True)
class ConfirmationRequest:
    """Sent to the confirmation handler for commands that need a human."""

    command: str
    reason: str
    cwd: str = ""


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """
    What the coordinator returns for a submitted command.

    ``snapshot_id`` is None when the command never ran (blocked or denied).
    """

    request: CommandRequest
    verdict: Verdict
    result: ExecutionResult
    snapshot_id: str | None = None
    confirmed: bool | None = None

    @property
    def success(self) -> bool:
        return self.result.success


class ConfirmationHandler(Protocol):
    """Async approve/deny callback. Return True to approve."""

    async def __call__(self, request: ConfirmationRequest) -> bool: ...


class AfterExecuteHook(Protocol):
    """Hook called after a command has been executed (or blocked)."""

    def __call__(self, outcome: ExecutionOutcome) -> None: ...


class RollbackHook(Protocol):
    """Hook called after a snapshot restore."""

    def __call__(self, result: RollbackResult) -> None: ...


class ViolationHook(Protocol):
    """Hook called for every recorded violation."""

    def __call__(self, record: ViolationRecord) -> None: ...
