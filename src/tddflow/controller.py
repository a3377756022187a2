from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tddflow.config import FlowConfig
from tddflow.errors import (
    FlowError,
    GuardViolationError,
    InvalidInputError,
    UserRejectionError,
)
from tddflow.events import (
    AgentEndEvent,
    BlockDecision,
    FlowEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from tddflow.host import Host
from tddflow.states import (
    DevState,
    FlowState,
    IdleState,
    PlanState,
    ReviewState,
    StateName,
)
from tddflow.store.session import SessionStore
from tddflow.store.tasks import Task, TaskStore
from tddflow.tdd.classify import build_outcome_classifier, build_path_classifier
from tddflow.tdd.gate import TddGate, TddPhase, TestRunner
from tddflow.tdd.runner import TestCommandRunner

logger = logging.getLogger(__name__)

STATUS_TO_STATE: dict[str, StateName] = {
    "planning": "plan",
    "developing": "dev",
    "reviewing": "review",
}

TASK_FILE_HINT = '"- [ ] Task name - Description"'


@dataclass(slots=True)
class FlowTool:
    name: str
    label: str
    description: str
    handler: Callable[[dict[str, Any]], Awaitable[str]]
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def schema(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass(slots=True)
class FlowCommand:
    name: str
    description: str
    handler: Callable[[], Awaitable[Any]]


class FlowController:
    """Top-level workflow state machine: IDLE -> PLAN -> DEV -> REVIEW.

    One instance holds all workflow state for a host session. The host feeds
    it events one at a time; agent tools return ``SUCCESS:``/``FAILED:`` text
    and never raise for workflow violations.
    """

    def __init__(
        self,
        host: Host,
        tasks: TaskStore,
        sessions: SessionStore,
        gate: TddGate,
        *,
        write_tools: Iterable[str] = ("write", "edit"),
        blocked_commands: Iterable[str] = ("ls -R",),
        nudge_on_agent_end: bool = True,
    ) -> None:
        self.host = host
        self.tasks = tasks
        self.sessions = sessions
        self.gate = gate
        self.blocked_commands = [item for item in blocked_commands if item]
        self.nudge_on_agent_end = nudge_on_agent_end

        write_tools = tuple(write_tools)
        self.plan_state = PlanState(host, sessions, write_tools=write_tools)
        self.review_state = ReviewState(host, sessions, write_tools=write_tools)
        self.states: dict[StateName, FlowState] = {
            "idle": IdleState(host, sessions, write_tools=write_tools),
            "plan": self.plan_state,
            "dev": DevState(host, sessions, gate, write_tools=write_tools),
            "review": self.review_state,
        }
        self._state: StateName | None = None
        self._task: Task | None = None
        self._event_handlers: dict[type, Callable[[Any], Awaitable[BlockDecision | None]]] = {
            ToolCallEvent: self.on_tool_call,
            ToolResultEvent: self.on_tool_result,
            AgentEndEvent: self.on_agent_end,
        }

    @classmethod
    def from_config(
        cls,
        config: FlowConfig,
        host: Host,
        project_root: Path,
        *,
        runner: TestRunner | None = None,
    ) -> FlowController:
        project_root = project_root.resolve()
        test_runner = runner or TestCommandRunner(
            config.tdd.test_command,
            cwd=project_root,
            timeout_seconds=max(0.1, float(config.tdd.timeout_seconds)),
        )
        gate = TddGate(
            test_runner,
            path_classifier=build_path_classifier(config.tdd, root=str(project_root)),
            outcome_classifier=build_outcome_classifier(config.tdd),
            write_tools=config.flow.write_tools,
            pause_after_refactor=config.tdd.pause_after_refactor,
            done_marker=config.flow.done_marker,
            max_output_chars=config.tdd.max_output_chars,
        )
        return cls(
            host,
            TaskStore(config.resolve_path(project_root, config.paths.tasks_file)),
            SessionStore(config.resolve_path(project_root, config.paths.session_file)),
            gate,
            write_tools=config.flow.write_tools,
            blocked_commands=config.flow.blocked_commands,
            nudge_on_agent_end=config.flow.nudge_on_agent_end,
        )

    @property
    def state(self) -> StateName | None:
        return self._state

    @property
    def current_task(self) -> Task | None:
        return self._task

    @property
    def active(self) -> bool:
        return self._state is not None

    @property
    def phase(self) -> TddPhase | None:
        if self._state != "dev":
            return None
        return self.gate.phase

    def _state_label(self) -> str:
        return self._state.upper() if self._state else "INACTIVE"

    async def _transition(self, name: StateName, *, fresh: bool = True) -> str:
        previous = self._state
        if previous is not None:
            await self.states[previous].on_exit()
        self._state = name
        logger.info("Flow transition %s -> %s", previous or "inactive", name)
        return await self.states[name].on_enter(self._task, fresh=fresh)

    async def _guarded(self, operation: Callable[[], Awaitable[str]]) -> str:
        try:
            return await operation()
        except FlowError as exc:
            logger.info("Flow operation failed in %s state: %s", self._state_label(), exc)
            return f"FAILED: {exc}"

    def _require_state(self, expected: StateName, action: str) -> None:
        if self._state != expected:
            raise GuardViolationError(
                f"you are only allowed to {action} in {expected.upper()} state, "
                f"but you are currently in {self._state_label()} state",
                state=self._state,
            )

    # -- host commands -------------------------------------------------

    async def start(self) -> str:
        self.host.notify("start flow", "info")
        self._task = None
        prompt = await self._transition("idle")
        self.host.send_message(prompt)
        return prompt

    async def stop(self) -> None:
        self.host.notify("stop flow", "info")
        if self._state is not None:
            await self.states[self._state].on_exit()
            logger.info("Flow stopped in %s state", self._state_label())
        self._state = None
        self._task = None

    async def resume(self) -> bool:
        self.host.notify("resume flow", "info")
        session = self.sessions.read_session()
        if session is None:
            self.host.notify(
                "No active session found. Start a new session by selecting a task.", "error"
            )
            return False

        target = STATUS_TO_STATE.get(session.status)
        if target is None:
            self.host.notify(f"Unknown session status: {session.status}", "error")
            return False

        stored = self.tasks.find_open_task(session.task_name)
        self._task = Task(
            name=session.task_name,
            description=session.task_description or (stored.description if stored else ""),
        )
        self.host.notify(
            f"Resume {session.status} session for task: {session.task_name}", "info"
        )

        message = await self._transition(target)
        if target == "review":
            message = await self._settle_review(message)
        if session.task_description:
            message += f"\n\nTask Description: {session.task_description}"
        if session.requirements and target != "plan":
            message += f"\n\nRequirements:\n{session.requirements}"
        self.host.send_message(message)
        return True

    async def add_task_command(self) -> Task | None:
        name = await self.host.input("Task name")
        if not name or not name.strip():
            self.host.notify("Task name is required", "error")
            return None
        description = await self.host.input("Task description (optional)")
        try:
            task = self.tasks.add_task(name, description or "")
        except InvalidInputError as exc:
            self.host.notify(str(exc), "error")
            return None
        self.host.notify(f'Task "{task.name}" added successfully', "info")
        return task

    async def list_tasks_command(self) -> list[Task]:
        tasks = self.tasks.get_tasks()
        if not tasks:
            self.host.notify("No tasks found", "info")
            return tasks
        lines = [f"• [{'x' if task.is_done else ' '}] {task.name}" for task in tasks]
        self.host.notify("tasks:\n" + "\n".join(lines), "info")
        return tasks

    # -- agent tools ---------------------------------------------------

    async def list_tasks(self) -> str:
        open_tasks = self.tasks.open_tasks()
        if not open_tasks:
            return (
                "SUCCESS: no open tasks found. Create a tasks file in the project root with "
                f"tasks in the format: {TASK_FILE_HINT}"
            )
        names = ", ".join(task.name for task in open_tasks)
        return f"SUCCESS: your current open tasks are: {names}"

    async def select_task(self, name: str) -> str:
        return await self._guarded(lambda: self._select_task(name))

    async def _select_task(self, name: str) -> str:
        self._require_state("idle", "select a task")
        if name is None or not str(name).strip():
            raise InvalidInputError(
                "you need to provide a name as parameter that defines the task name"
            )

        task = self.tasks.find_open_task(name)
        if task is None:
            raise InvalidInputError(
                f'your selected task "{name}" does not exist. Use the list-tasks tool to see '
                "open tasks and then try the select-task tool again"
            )

        confirmed = await self.host.confirm("Confirm Task", f'selected task is "{task.name}"')
        if not confirmed:
            raise UserRejectionError(
                "user denied selecting this task. Wait for user input before proceeding."
            )

        description = await self.host.input(
            "Task Description", "Add context or description for this task (optional)"
        )
        if description and description.strip():
            task = Task(name=task.name, description=description.strip())

        self._task = task
        self.sessions.start_session(task.name, task.description)
        prompt = await self._transition("plan")
        return f"SUCCESS: {prompt}"

    async def start_dev(self, requirements: str) -> str:
        return await self._guarded(lambda: self._start_dev(requirements))

    async def _start_dev(self, requirements: str) -> str:
        self._require_state("plan", "start development")
        if self._task is None:
            raise GuardViolationError("no task selected. Use the select-task tool first.")

        await self.plan_state.complete(requirements or "")
        prompt = await self._transition("dev")
        return f"SUCCESS: {prompt}"

    async def review_task(self) -> str:
        return await self._guarded(self._review_task)

    async def _review_task(self) -> str:
        self._require_state("dev", "use the review-task tool")
        if self._task is None:
            raise GuardViolationError("no task selected. Use the select-task tool first.")
        verdict = await self._transition("review")
        return await self._settle_review(verdict)

    async def _settle_review(self, verdict: str) -> str:
        result = self.review_state.last_result
        task = self._task
        if result is not None and result.approved and task is not None:
            self.tasks.complete_task(task.name)
            self.sessions.complete_session()
            logger.info("Task %r approved and marked done", task.name)
            self._task = None
            prompt = await self._transition("idle")
            return f"{verdict}\n\n{prompt}"

        prompt = await self._transition("dev", fresh=False)
        return f"{verdict}\n\n{prompt}"

    # -- events --------------------------------------------------------

    async def handle(self, event: FlowEvent) -> BlockDecision | None:
        handler = self._event_handlers.get(type(event))
        if handler is None:
            raise InvalidInputError(f"Unsupported event type: {type(event).__name__}")
        return await handler(event)

    def _blocked_command(self, event: ToolCallEvent) -> BlockDecision | None:
        command = event.command
        if event.tool_name != "bash" or not command:
            return None
        for fragment in self.blocked_commands:
            if fragment in command:
                return BlockDecision(
                    f'You are not allowed to use the bash command "{fragment}". '
                    "Use a narrower command instead."
                )
        return None

    async def on_tool_call(self, event: ToolCallEvent) -> BlockDecision | None:
        decision = self._blocked_command(event)
        if decision is not None:
            return decision
        if self._state is None:
            return None
        return await self.states[self._state].on_tool_call(event)

    async def on_tool_result(self, event: ToolResultEvent) -> None:
        if self._state is None:
            return None
        feedback = await self.states[self._state].on_tool_result(event)
        if feedback:
            self.host.send_message(feedback)
        return None

    async def on_agent_end(self, event: AgentEndEvent) -> None:
        if self._state is None:
            return None
        if self._state == "dev" and self.gate.observe_agent_text(event.final_text):
            self.host.notify("Flow: TDD cycle complete, back to RED", "info")
        if not self.nudge_on_agent_end:
            return None
        if self._state == "idle" and not self.tasks.open_tasks():
            return None
        self.host.send_message(self.states[self._state].nudge())
        return None

    # -- registries ----------------------------------------------------

    def tools(self) -> list[FlowTool]:
        return [
            FlowTool(
                name="list-tasks",
                label="list tasks",
                description="list all open tasks",
                handler=lambda params: self.list_tasks(),
            ),
            FlowTool(
                name="select-task",
                label="select task",
                description=(
                    "select an open task to implement next (only available in IDLE state)"
                ),
                handler=lambda params: self.select_task(str(params.get("name") or "")),
                parameters={
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "the task name to select"}
                    },
                    "required": ["name"],
                },
            ),
            FlowTool(
                name="start-dev",
                label="start development",
                description=(
                    "complete the planning phase and start development "
                    "(only available in PLAN state)"
                ),
                handler=lambda params: self.start_dev(str(params.get("requirements") or "")),
                parameters={
                    "type": "object",
                    "properties": {
                        "requirements": {
                            "type": "string",
                            "description": "The requirements gathered during planning analysis",
                        }
                    },
                    "required": ["requirements"],
                },
            ),
            FlowTool(
                name="review-task",
                label="review task",
                description=(
                    "let the user review your task implementation to verify that it is "
                    "correct (only available in DEV state)"
                ),
                handler=lambda params: self.review_task(),
            ),
        ]

    def commands(self) -> list[FlowCommand]:
        return [
            FlowCommand("start-flow", "start agent flow", self.start),
            FlowCommand(
                "resume-flow", "resume the current flow from the session file", self.resume
            ),
            FlowCommand("stop-flow", "stop agent flow", self.stop),
            FlowCommand(
                "list-tasks", "list all open and closed tasks", self.list_tasks_command
            ),
            FlowCommand("add-task", "add a new task to the tasks file", self.add_task_command),
        ]

    async def call_tool(self, name: str, params: dict[str, Any] | None = None) -> str:
        for tool in self.tools():
            if tool.name == name:
                return await tool.handler(params or {})
        return f"FAILED: unknown tool: {name}"

    async def run_command(self, name: str) -> Any:
        for command in self.commands():
            if command.name == name:
                return await command.handler()
        raise InvalidInputError(f"Unknown command: {name}")
