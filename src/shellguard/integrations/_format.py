"""Render outcomes as plain text for LLM tool responses."""

from __future__ import annotations

from shellguard._types import ExecutionOutcome, RollbackResult


def format_outcome(outcome: ExecutionOutcome) -> str:
    result = outcome.result
    if outcome.verdict.is_blocked or outcome.confirmed is False:
        return result.stderr

    lines = []
    if result.success:
        lines.append(result.stdout)
    else:
        lines.append(f"Error (exit {result.exit_code}):\n{result.stderr}")
        if result.stdout:
            lines.append(f"stdout:\n{result.stdout}")
    if outcome.snapshot_id:
        lines.append(f"[snapshot: {outcome.snapshot_id}]")
    return "\n".join(lines)


def format_rollback(result: RollbackResult) -> str:
    if result.success:
        return f"Restored {result.restored_count} path(s) from {result.snapshot_id}"
    errors = "\n".join(result.errors)
    return f"Partially restored {result.restored_count} path(s) from {result.snapshot_id}:\n{errors}"
