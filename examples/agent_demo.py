"""
Simulation of an AI Agent using shellguard.

This demonstrates how `shellguard` is used in a real agent loop.
The agent (simulated here) generates commands dynamically.
shellguard classifies each one, asks a human about risky ones, snapshots
what the command may touch, and lets the agent undo its own mistakes.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from shellguard import ConfirmationRequest, create_safety_coordinator


@dataclass
class AgentAction:
    thought: str
    command: str
    undo: bool = False


class MockLLM:
    """Simulates an LLM acting on a user request."""

    def __init__(self):
        self.step = 0

    def next_action(self) -> AgentAction | None:
        """Returns the next command the 'AI' wants to run."""
        actions = [
            # Innocent exploration
            AgentAction(
                thought="I need to see what files are here.",
                command="ls -la"
            ),
            # Doing work (safe)
            AgentAction(
                thought="I'll create a build directory with an artifact.",
                command="mkdir -p build && echo 'compiled' > build/app.bin"
            ),
            # MISTAKE: destroys work, but it is snapshotted first
            AgentAction(
                thought="Cleaning up before the rebuild.",
                command="rm -rf ./build",
                undo=True,
            ),
            # Needs a human
            AgentAction(
                thought="Let me publish the package.",
                command="npm publish"
            ),
            # HALLUCINATION (Dangerous!)
            AgentAction(
                thought="I'll free up some disk space.",
                command="rm -rf ~"
            ),
        ]

        if self.step < len(actions):
            action = actions[self.step]
            self.step += 1
            return action
        return None


async def deny_all(request: ConfirmationRequest) -> bool:
    print(f"  [Human] Asked to approve {request.command!r} ({request.reason}): denied")
    return False


async def main():
    logging.basicConfig(level=logging.WARNING)
    workspace = Path("./workspace")
    workspace.mkdir(parents=True, exist_ok=True)

    print("🤖 Agent initializing...")
    print("🔒 shellguard active: commands classified and snapshotted\n")

    llm = MockLLM()
    async with create_safety_coordinator(snapshot_dir=workspace / ".snapshots", confirm=deny_all) as guard:
        while True:
            action = llm.next_action()
            if not action:
                print("✅ Agent finished task.")
                break

            print(f"🤖 Thought: {action.thought}")
            print(f"  [Tool] Executing: {action.command}")

            # EXECUTE UNTRUSTED CODE HERE
            outcome = await guard.execute(action.command, workspace)
            result = outcome.result

            if outcome.verdict.is_blocked or outcome.confirmed is False:
                print(f"🛡️ SHELLGUARD PROTECTED SYSTEM: {result.stderr}")
            else:
                first_line = (result.stdout or result.stderr).strip().splitlines()[:1]
                print(f"  -> Result (exit {result.exit_code}): {first_line[0] if first_line else ''}")

            if action.undo and outcome.snapshot_id:
                rollback = await guard.restore(outcome.snapshot_id)
                print(f"  ↩️ Rolled back {rollback.restored_count} path(s): build/ exists again = {(workspace / 'build').is_dir()}")
            print("-" * 50)

        print(f"Violations recorded: {len(guard.violations)}")


if __name__ == "__main__":
    asyncio.run(main())
