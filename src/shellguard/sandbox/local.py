"""
Local subprocess-based sandbox implementation.

This is the default executor. It uses asyncio.subprocess for non-blocking
execution under an ``ExecutionLimits`` envelope: scrubbed environment,
wall-clock timeout, per-stream output cap and a best-effort memory ceiling.
It is not kernel-level isolation.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Callable

from shellguard._types import ExecutionLimits, ExecutionResult, KilledReason
from shellguard.networking import proxy_env
from shellguard.sandbox._base import Sandbox

if sys.platform != "win32":
    import resource
else:
    resource = None

logger = logging.getLogger(__name__)

TRUSTED_PATH = "/usr/local/bin:/usr/bin:/bin"

# Dynamic-linker injection (LD_PRELOAD, DYLD_INSERT_LIBRARIES, ...)
_LINKER_PREFIXES = ("LD_", "DYLD_")

_READ_CHUNK = 64 * 1024

# How long to wait for pipes to close after a kill.
_KILL_GRACE = 5.0


def build_sandbox_env(limits: ExecutionLimits, base: dict[str, str] | None = None) -> dict[str, str]:
    """
    Build the child environment for one execution.

    Args:
        limits: Supplies the allow/deny lists, PATH restriction and network mode.
        base: Starting environment. Defaults to ``os.environ``.

    Returns:
        A new environment dict.
    """
    source = os.environ if base is None else base
    env = {name: value for name, value in source.items() if not name.startswith(_LINKER_PREFIXES)}

    if limits.env_allowlist is not None:
        env = {name: value for name, value in env.items() if name in limits.env_allowlist}
    for name in limits.env_denylist:
        env.pop(name, None)

    if limits.restricted_path:
        env["PATH"] = TRUSTED_PATH

    env = proxy_env(limits.network, env)
    env["SHELLGUARD_SANDBOX"] = "1"
    env["SHELLGUARD_SANDBOX_TIMEOUT"] = str(limits.timeout)
    return env


def _memory_limiter(max_bytes: int | None) -> Callable[[], None] | None:
    """Return a preexec_fn applying RLIMIT_AS, or None where unsupported."""
    if resource is None or max_bytes is None or not hasattr(resource, "RLIMIT_AS"):
        return None

    def apply() -> None:
        try:
            _, hard = resource.getrlimit(resource.RLIMIT_AS)
            limit = max_bytes if hard == resource.RLIM_INFINITY else min(max_bytes, hard)
            resource.setrlimit(resource.RLIMIT_AS, (limit, hard))
        except (ValueError, OSError):
            # Best-effort: some kernels (macOS) reject RLIMIT_AS; run without a ceiling
            pass

    return apply


class LocalSandbox(Sandbox):
    """
    Subprocess-based executor.

    Security features:
    - Dynamic-linker variables stripped, optional env allow/deny lists
    - Optional minimal PATH and proxy-based network block
    - Timeout enforcement (SIGKILL to the whole process group)
    - Output cap that kills the command instead of buffering without bound
    - Best-effort memory ceiling via RLIMIT_AS

    Example:
        >>> sandbox = LocalSandbox()
        >>> result = await sandbox.execute("ls -la", cwd="./my_project")
        >>> print(result.stdout)
    """

    def __init__(
        self,
        *,
        limits: ExecutionLimits | None = None,
        env: dict[str, str] | None = None,
        shell: str = "bash",
    ) -> None:
        """
        Initialize a local sandbox.

        Args:
            limits: Default limits when ``execute`` is called without any.
            env: Base environment for subprocesses. Defaults to ``os.environ``.
            shell: Shell used to run commands as ``<shell> -c <command>``.
        """
        self._limits = limits or ExecutionLimits()
        self._env = env
        self._shell = shutil.which(shell) or shell
        self._posix = os.name == "posix"
        self._active: dict[int, asyncio.subprocess.Process] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    @property
    def limits(self) -> ExecutionLimits:
        return self._limits

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    async def execute(
        self,
        command: str,
        *,
        cwd: Path | str,
        limits: ExecutionLimits | None = None,
    ) -> ExecutionResult:
        """
        Execute a shell command under limits.

        Args:
            command: The shell command to execute.
            cwd: Working directory for the child process.
            limits: Overrides the sandbox's default limits for this call.

        Returns:
            ExecutionResult. Spawn failures set ``spawn_error`` instead of raising.
        """
        limits = limits or self._limits
        started = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                self._shell,
                "-c",
                command,
                cwd=str(cwd),
                env=build_sandbox_env(limits, self._env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=self._posix,
                preexec_fn=_memory_limiter(limits.max_memory_bytes),
            )
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            logger.warning(f"Failed to spawn {self._shell!r} in {cwd}: {exc}")
            return ExecutionResult(
                command=command,
                stdout="",
                stderr=str(exc),
                exit_code=-1,
                duration=time.monotonic() - started,
                spawn_error=str(exc),
            )

        key = next(self._ids)
        with self._lock:
            self._active[key] = proc
        logger.debug(f"Spawned pid {proc.pid} for {command!r}")

        stdout = bytearray()
        stderr = bytearray()
        killed_reason = KilledReason.NONE

        async def pump(stream: asyncio.StreamReader, sink: bytearray) -> None:
            nonlocal killed_reason
            while True:
                chunk = await stream.read(_READ_CHUNK)
                if not chunk:
                    return
                room = limits.max_output_bytes - len(sink)
                if len(chunk) <= room:
                    sink.extend(chunk)
                    continue
                # Keep draining (and discarding) so the pipe reaches EOF once the group dies.
                sink.extend(chunk[: max(room, 0)])
                if killed_reason is KilledReason.NONE:
                    killed_reason = KilledReason.OUTPUT_OVERFLOW
                    logger.warning(f"Killed pid {proc.pid}: output exceeded {limits.max_output_bytes} bytes")
                    self._kill(proc)

        assert proc.stdout is not None and proc.stderr is not None
        task = asyncio.ensure_future(asyncio.gather(pump(proc.stdout, stdout), pump(proc.stderr, stderr), proc.wait()))
        try:
            done, _ = await asyncio.wait({task}, timeout=limits.timeout)
            if not done:
                if killed_reason is KilledReason.NONE:
                    killed_reason = KilledReason.TIMEOUT
                    logger.warning(f"Killed pid {proc.pid}: timeout ({limits.timeout}s)")
                self._kill(proc)
                try:
                    await asyncio.wait_for(task, timeout=_KILL_GRACE)
                except TimeoutError:
                    logger.warning(f"pid {proc.pid}: pipes still open {_KILL_GRACE}s after kill, abandoning")
            else:
                task.result()
        except asyncio.CancelledError:
            logger.warning(f"Killed pid {proc.pid}: execution of {command!r} was cancelled")
            self._kill(proc)
            task.cancel()
            raise
        finally:
            with self._lock:
                self._active.pop(key, None)

        returncode = proc.returncode
        if returncode is not None and returncode < 0 and killed_reason is KilledReason.NONE:
            killed_reason = KilledReason.SIGNAL

        err_text = stderr.decode("utf-8", errors="replace")
        if killed_reason is KilledReason.TIMEOUT:
            err_text += f"\nCommand timed out after {limits.timeout}s"
        elif killed_reason is KilledReason.OUTPUT_OVERFLOW:
            err_text += f"\nOutput exceeded {limits.max_output_bytes} bytes; command killed"

        return ExecutionResult(
            command=command,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=err_text,
            exit_code=returncode if returncode is not None else -1,
            duration=time.monotonic() - started,
            killed_reason=killed_reason,
            truncated=killed_reason is KilledReason.OUTPUT_OVERFLOW,
        )

    def kill_all(self) -> int:
        """
        Kill all active sandboxed processes.

        Used on application shutdown.
        """
        with self._lock:
            processes = list(self._active.values())
            self._active.clear()
        for proc in processes:
            self._kill(proc)
            logger.info(f"Killed sandbox process {proc.pid}")
        return len(processes)

    def _kill(self, proc: asyncio.subprocess.Process) -> None:
        try:
            if self._posix:
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            # Process may have already exited
            pass
