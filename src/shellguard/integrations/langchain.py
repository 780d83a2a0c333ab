"""LangChain integration for shellguard."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from shellguard.errors import SnapshotNotFound
from shellguard.integrations._format import format_outcome, format_rollback

if TYPE_CHECKING:
    from shellguard.coordinator import SafetyCoordinator

HAS_LANGCHAIN = False
_StructuredTool: Any = None

try:
    import langchain_core.tools

    _StructuredTool = langchain_core.tools.StructuredTool
    HAS_LANGCHAIN = True
except ImportError:
    pass


def create_langchain_tools(coordinator: SafetyCoordinator, cwd: Path | str = ".") -> dict[str, Any]:
    """
    Create LangChain tools backed by a SafetyCoordinator.

    Args:
        coordinator: Coordinator that classifies, snapshots and runs commands.
        cwd: Working directory for every command.

    Returns:
        Dictionary with "bash" and "rollback" StructuredTool instances.

    Raises:
        ImportError: If langchain-core is not installed.

    Example:
        >>> coordinator = create_safety_coordinator()
        >>> tools = create_langchain_tools(coordinator, "./project")
        >>> agent = create_react_agent(llm, list(tools.values()))
    """
    if not HAS_LANGCHAIN:
        raise ImportError(
            "LangChain integration requires langchain-core. "
            "Install with: pip install shellguard[langchain]"
        )

    workdir = str(cwd)

    async def run_bash(command: str) -> str:
        """Execute a bash command. Its effects can be undone with the rollback tool."""
        outcome = await coordinator.execute(command, workdir)
        return format_outcome(outcome)

    async def rollback(snapshot_id: str) -> str:
        """Restore the files a previous command touched."""
        try:
            result = await coordinator.restore(snapshot_id)
        except SnapshotNotFound as exc:
            return str(exc)
        return format_rollback(result)

    bash_tool = _StructuredTool.from_function(
        coroutine=run_bash,
        name="bash",
        description=(
            "Execute bash commands. Destructive commands are blocked, risky ones "
            "need human approval. Output ends with a snapshot id usable with rollback."
        ),
    )

    rollback_tool = _StructuredTool.from_function(
        coroutine=rollback,
        name="rollback",
        description="Undo the filesystem effects of a command, given its snapshot id.",
    )

    return {
        "bash": bash_tool,
        "rollback": rollback_tool,
    }
