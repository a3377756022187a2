from __future__ import annotations

from tddflow.events import BlockDecision, ToolCallEvent
from tddflow.states.base import FlowState
from tddflow.store.tasks import Task


class IdleState(FlowState):
    name = "idle"
    prompt = """
You are a developer and have to follow a strict flow. A state machine will guide you.
Your current state is: IDLE.
Pick your next open task autonomously by calling the list-tasks tool and select it
using the select-task tool without asking the user for permission.
""".strip()
    guidance = (
        "In IDLE state you have to select the next open task using the list-tasks tool "
        "and the select-task tool."
    )

    async def on_enter(self, task: Task | None, *, fresh: bool = True) -> str:
        _ = task, fresh
        self.host.notify("Flow: IDLE state", "info")
        return self.prompt

    async def on_tool_call(self, event: ToolCallEvent) -> BlockDecision | None:
        if self.is_write(event):
            return BlockDecision("You are not allowed to write or edit files in IDLE state.")
        return None
