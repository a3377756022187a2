from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Literal

from tddflow.errors import NoActiveSessionError
from tddflow.events import BlockDecision, ToolCallEvent, ToolResultEvent
from tddflow.host import Host
from tddflow.store.session import SessionStatus, SessionStore
from tddflow.store.tasks import Task

logger = logging.getLogger(__name__)

StateName = Literal["idle", "plan", "dev", "review"]


class FlowState:
    """One node of the workflow state machine.

    Subclasses override the hooks they care about; the defaults allow every
    tool call and ignore tool results.
    """

    name: StateName = "idle"
    prompt: str = ""
    guidance: str = ""

    def __init__(
        self,
        host: Host,
        sessions: SessionStore,
        *,
        write_tools: Iterable[str] = ("write", "edit"),
    ) -> None:
        self.host = host
        self.sessions = sessions
        self.write_tools = frozenset(write_tools)

    @property
    def label(self) -> str:
        return self.name.upper()

    def _persist_status(self, task: Task, status: SessionStatus) -> None:
        try:
            self.sessions.update_status(status)
        except NoActiveSessionError:
            logger.warning(
                "Session record for %r was missing on entering %s; recreating it",
                task.name,
                self.label,
            )
            self.sessions.start_session(task.name, task.description)
            self.sessions.update_status(status)

    def is_write(self, event: ToolCallEvent) -> bool:
        return event.tool_name in self.write_tools

    async def on_enter(self, task: Task | None, *, fresh: bool = True) -> str:
        _ = fresh
        self.host.notify(f"Flow: {self.label} state", "info")
        return self.prompt

    async def on_exit(self) -> None:
        self.host.notify(f"Flow: Leaving {self.label}", "info")

    async def on_tool_call(self, event: ToolCallEvent) -> BlockDecision | None:
        _ = event
        return None

    async def on_tool_result(self, event: ToolResultEvent) -> str | None:
        _ = event
        return None

    def nudge(self) -> str:
        return f"You are not done yet. Your current state is: {self.label}. {self.guidance}".strip()
