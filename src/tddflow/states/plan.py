from __future__ import annotations

from tddflow.errors import FlowStateError, UserRejectionError
from tddflow.events import BlockDecision, ToolCallEvent
from tddflow.states.base import FlowState
from tddflow.store.session import Session
from tddflow.store.tasks import Task


class PlanState(FlowState):
    """Requirements analysis. No file may change until the plan is confirmed."""

    name = "plan"
    prompt = """
You are now in PLAN state to analyze the selected task.
Proceed autonomously without asking the user for permission.
IMPORTANT: You are NOT allowed to write or edit files in PLAN state. These tools are blocked.
Analyze the task requirements thoroughly:
- Understand what needs to be implemented
- Identify potential challenges
- Plan your approach
- Consider edge cases
When the analysis is complete, use the start-dev tool with your gathered requirements
to proceed to development.
""".strip()
    guidance = (
        "In PLAN state you have to analyze the task requirements. When the analysis is "
        "complete, use the start-dev tool with your gathered requirements to proceed to "
        "development."
    )

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.enabled = False

    async def on_enter(self, task: Task | None, *, fresh: bool = True) -> str:
        _ = fresh
        if task is None:
            raise FlowStateError("PLAN state requires a selected task.")
        self._persist_status(task, "planning")
        self.enabled = True
        self.host.notify(f"Flow: PLAN state - {task.name}", "info")
        return f'You selected task "{task.name}".\n{self.prompt}'

    async def on_exit(self) -> None:
        self.enabled = False
        await super().on_exit()

    async def on_tool_call(self, event: ToolCallEvent) -> BlockDecision | None:
        if not self.enabled or not self.is_write(event):
            return None
        return BlockDecision(
            f'Tool "{event.tool_name}" is blocked in PLAN state. Complete planning first '
            "by using the start-dev tool to proceed to development."
        )

    async def complete(self, requirements: str) -> Session:
        confirmed = await self.host.confirm(
            "Planning Complete",
            f"Has the task been properly analyzed?\n\nRequirements:\n{requirements}",
        )
        if not confirmed:
            raise UserRejectionError(
                "User rejected the planning. Continue analyzing the task requirements."
            )
        return self.sessions.save_requirements(requirements)
