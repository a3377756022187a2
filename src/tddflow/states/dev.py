from __future__ import annotations

from collections.abc import Iterable

from tddflow.errors import FlowStateError
from tddflow.events import BlockDecision, ToolCallEvent, ToolResultEvent
from tddflow.host import Host
from tddflow.states.base import FlowState
from tddflow.store.session import SessionStore
from tddflow.store.tasks import Task
from tddflow.tdd.gate import TddGate


class DevState(FlowState):
    name = "dev"
    prompt = """
You are now in DEV state to implement the selected task.
Proceed autonomously without asking the user for permission.
In DEV state you have to follow RED, GREEN, REFACTOR.
You are now in RED phase.
RED: write a failing test first.
GREEN: implement the minimum code to pass the test.
REFACTOR: refactor the code while keeping the tests passing.
When you have finished the task, use the review-task tool to let the user review it.
""".strip()

    def __init__(
        self,
        host: Host,
        sessions: SessionStore,
        gate: TddGate,
        *,
        write_tools: Iterable[str] = ("write", "edit"),
    ) -> None:
        super().__init__(host, sessions, write_tools=write_tools)
        self.gate = gate

    @property
    def guidance(self) -> str:
        return (
            f"In DEV state you have to implement your task (TDD phase: "
            f"{self.gate.phase.upper()}). When you are done, call the review-task tool "
            "to review your code."
        )

    async def on_enter(self, task: Task | None, *, fresh: bool = True) -> str:
        if task is None:
            raise FlowStateError("DEV state requires a selected task.")
        self._persist_status(task, "developing")
        if fresh:
            self.gate.reset()
            self.host.notify("Flow: DEV state (TDD: RED)", "info")
            return self.prompt
        self.host.notify(f"Flow: DEV state (TDD: {self.gate.phase.upper()})", "info")
        return (
            f"You are back in DEV state for task \"{task.name}\". "
            f"Your TDD phase is still {self.gate.phase.upper()}. Fix the issues raised in "
            "review, then use the review-task tool again."
        )

    async def on_tool_call(self, event: ToolCallEvent) -> BlockDecision | None:
        return self.gate.check_write(event.tool_name, event.path)

    async def on_tool_result(self, event: ToolResultEvent) -> str | None:
        _ = event
        if not self.gate.edit_pending or self.gate.awaiting_ack:
            return None
        self.host.notify("Running tests...", "info")
        return await self.gate.after_tool_result()
