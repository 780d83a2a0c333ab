"""
Safety coordinator: classify, confirm, snapshot, execute.

One coordinator is built at startup and handed to every caller. Rollback is
always caller-initiated: a non-zero exit code does not mean the filesystem
state is unwanted.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import Iterable

from shellguard._types import (
    AfterExecuteHook,
    CommandRequest,
    ConfirmationHandler,
    ConfirmationRequest,
    ExecutionLimits,
    ExecutionOutcome,
    ExecutionResult,
    RollbackHook,
    RollbackResult,
    Severity,
    SnapshotDiff,
    Verdict,
)
from shellguard.errors import SpawnError
from shellguard.sandbox._base import Sandbox
from shellguard.sandbox.local import LocalSandbox
from shellguard.security.policy import SecurityPolicy
from shellguard.security.violations import ViolationLog
from shellguard.snapshots.store import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT = 60.0


class SafetyCoordinator:
    """
    Orchestrates the classifier, snapshot store and executor per command.

    Flow for ``execute``:

    1. Classify. Blocked commands get one violation record and a synthetic
       ``killed_reason=BLOCKED`` result; nothing is snapshotted or spawned.
    2. Commands needing confirmation await the confirmation handler. A
       missing handler, a timeout or a handler error count as a denial, which
       is returned like a block but without a violation.
    3. Capture a snapshot. If that fails, ``SnapshotError`` propagates and the
       command does not run.
    4. Execute in the sandbox and return the result with the snapshot id.

    Example:
        >>> coordinator = SafetyCoordinator(store=SnapshotStore("/tmp/snaps"))
        >>> outcome = await coordinator.execute("rm -rf ./build", "/proj")
        >>> await coordinator.restore(outcome.snapshot_id)
    """

    def __init__(
        self,
        *,
        store: SnapshotStore,
        sandbox: Sandbox | None = None,
        policy: SecurityPolicy | None = None,
        violations: ViolationLog | None = None,
        limits: ExecutionLimits | None = None,
        confirm: ConfirmationHandler | None = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        history_size: int = 1000,
    ) -> None:
        self._store = store
        self._sandbox = sandbox if sandbox is not None else LocalSandbox()
        self._policy = policy or SecurityPolicy.standard()
        self._violations = violations if violations is not None else ViolationLog()
        self._limits = limits or ExecutionLimits()
        self._confirm = confirm
        self._confirmation_timeout = confirmation_timeout
        self._history: deque[ExecutionOutcome] = deque(maxlen=history_size)
        self._after_execute_hooks: list[AfterExecuteHook] = []
        self._rollback_hooks: list[RollbackHook] = []

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def sandbox(self) -> Sandbox:
        return self._sandbox

    @property
    def policy(self) -> SecurityPolicy:
        return self._policy

    @property
    def violations(self) -> ViolationLog:
        return self._violations

    @property
    def limits(self) -> ExecutionLimits:
        return self._limits

    @property
    def history(self) -> list[ExecutionOutcome]:
        """Recent outcomes, oldest first."""
        return list(self._history)

    def add_after_execute_hook(self, hook: AfterExecuteHook) -> None:
        self._after_execute_hooks.append(hook)

    def add_rollback_hook(self, hook: RollbackHook) -> None:
        self._rollback_hooks.append(hook)

    def classify(self, command: str) -> Verdict:
        return self._policy.classify(command)

    async def execute(
        self,
        command: str,
        cwd: Path | str,
        *,
        explicit_paths: Iterable[str] = (),
        limits: ExecutionLimits | None = None,
    ) -> ExecutionOutcome:
        """
        Run a command through the full safety pipeline.

        Args:
            command: Shell command proposed by the agent.
            cwd: Working directory to run in.
            explicit_paths: Paths the caller already knows will be touched.
            limits: Per-call override of the coordinator's default limits.

        Returns:
            ExecutionOutcome. ``snapshot_id`` is set whenever the command ran.

        Raises:
            SnapshotError: The pre-execution snapshot could not be taken.
            SpawnError: The shell could not be started.
        """
        request = CommandRequest(command=command, cwd=str(cwd), explicit_paths=tuple(explicit_paths))
        verdict = self._policy.classify(command)

        if verdict.is_blocked:
            self._violations.record(command, verdict.reason, verdict.severity or Severity.ERROR)
            return self._finish(
                ExecutionOutcome(request, verdict, ExecutionResult.blocked(command, verdict.reason))
            )

        confirmed: bool | None = None
        if verdict.needs_confirmation:
            confirmed = await self._request_confirmation(request, verdict)
            if not confirmed:
                logger.info(f"Confirmation denied for {command!r}")
                result = ExecutionResult.blocked(command, f"Confirmation denied: {verdict.reason}")
                return self._finish(ExecutionOutcome(request, verdict, result, confirmed=False))

        # Capture must complete before the command starts. File I/O stays off the event loop.
        snapshot = await asyncio.to_thread(self._store.capture, command, request.cwd, request.explicit_paths)

        result = await self._sandbox.execute(command, cwd=request.cwd, limits=limits or self._limits)
        if result.spawn_error is not None:
            raise SpawnError(
                f"Cannot spawn shell for {command!r} in {request.cwd}: {result.spawn_error}",
                snapshot_id=snapshot.id,
            )

        if not result.success:
            logger.info(
                f"{command!r} finished with exit {result.exit_code}"
                f" ({result.killed_reason.value}); snapshot {snapshot.id} available for restore"
            )
        return self._finish(ExecutionOutcome(request, verdict, result, snapshot.id, confirmed))

    async def restore(self, snapshot_id: str) -> RollbackResult:
        """
        Roll the filesystem back to a snapshot.

        Raises:
            SnapshotNotFound: Unknown id.
            SnapshotError: The pre-restore backup could not be taken.
        """
        result = await asyncio.to_thread(self._store.restore, snapshot_id)
        for hook in self._rollback_hooks:
            hook(result)
        return result

    def diff(self, snapshot_id: str) -> SnapshotDiff:
        """What changed on disk since the snapshot was taken."""
        return self._store.diff(snapshot_id)

    def kill_all(self) -> int:
        """Kill every running command (application shutdown)."""
        return self._sandbox.kill_all()

    async def close(self) -> None:
        await self._sandbox.close()

    async def __aenter__(self) -> SafetyCoordinator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _request_confirmation(self, request: CommandRequest, verdict: Verdict) -> bool:
        if self._confirm is None:
            logger.warning(f"No confirmation handler registered, denying {request.command!r}")
            return False

        confirmation = ConfirmationRequest(command=request.command, reason=verdict.reason, cwd=request.cwd)
        try:
            approved = await asyncio.wait_for(self._confirm(confirmation), timeout=self._confirmation_timeout)
        except TimeoutError:
            logger.warning(f"No confirmation within {self._confirmation_timeout}s, denying {request.command!r}")
            return False
        except Exception:
            logger.exception(f"Confirmation handler failed, denying {request.command!r}")
            return False
        return bool(approved)

    def _finish(self, outcome: ExecutionOutcome) -> ExecutionOutcome:
        self._history.append(outcome)
        for hook in self._after_execute_hooks:
            hook(outcome)
        return outcome
