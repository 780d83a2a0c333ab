"""Pytest configuration and fixtures for shellguard tests."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from shellguard import (
    ExecutionLimits,
    ExecutionResult,
    LocalSandbox,
    SafetyCoordinator,
    Sandbox,
    SecurityPolicy,
    SnapshotStore,
    ViolationLog,
)


class SpySandbox(Sandbox):
    """Sandbox that records commands instead of spawning them."""

    def __init__(self, exit_code: int = 0, spawn_error: str | None = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self.exit_code = exit_code
        self.spawn_error = spawn_error
        self.on_execute = None

    async def execute(self, command, *, cwd, limits=None) -> ExecutionResult:
        self.calls.append((command, str(cwd)))
        if self.on_execute is not None:
            self.on_execute(command, cwd)
        return ExecutionResult(
            command=command,
            stdout="",
            stderr=self.spawn_error or "",
            exit_code=-1 if self.spawn_error else self.exit_code,
            spawn_error=self.spawn_error,
        )

    def kill_all(self) -> int:
        return 0

    @property
    def active_count(self) -> int:
        return 0


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(prefix="shellguard_test_") as tmp:
        yield Path(tmp).resolve()


@pytest.fixture
def workdir(temp_dir: Path) -> Path:
    """Project directory commands run in."""
    path = temp_dir / "proj"
    path.mkdir()
    (path / "test.txt").write_text("hello world")
    return path


@pytest.fixture
def store(temp_dir: Path) -> SnapshotStore:
    """Snapshot store kept outside the project directory."""
    return SnapshotStore(temp_dir / "snapshots")


@pytest_asyncio.fixture
async def sandbox() -> AsyncGenerator[LocalSandbox, None]:
    """Create a LocalSandbox for testing."""
    sandbox = LocalSandbox(limits=ExecutionLimits(timeout=10.0))
    try:
        yield sandbox
    finally:
        await sandbox.close()


@pytest.fixture
def spy() -> SpySandbox:
    return SpySandbox()


@pytest_asyncio.fixture
async def coordinator(store: SnapshotStore) -> AsyncGenerator[SafetyCoordinator, None]:
    """Coordinator wired to a real LocalSandbox."""
    coordinator = SafetyCoordinator(
        store=store,
        sandbox=LocalSandbox(),
        violations=ViolationLog(),
        limits=ExecutionLimits(timeout=10.0),
    )
    try:
        yield coordinator
    finally:
        await coordinator.close()


@pytest.fixture
def standard_policy() -> SecurityPolicy:
    """Create a standard security policy."""
    return SecurityPolicy.standard()
