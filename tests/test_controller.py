import asyncio
import json
from pathlib import Path

import pytest

from tddflow.config import FlowConfig
from tddflow.controller import FlowController
from tddflow.errors import InvalidInputError
from tddflow.events import AgentEndEvent, ToolCallEvent, ToolResultEvent
from tddflow.host import Host
from tddflow.store import SessionStore, TaskStore
from tddflow.tdd import TddGate, TestRun


class FakeHost(Host):
    def __init__(self, confirms: list[bool] | None = None, inputs: list[str | None] | None = None):
        self.confirms = list(confirms or [])
        self.inputs = list(inputs or [])
        self.notifications: list[tuple[str, str]] = []
        self.messages: list[str] = []
        self.confirm_titles: list[str] = []

    def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append((level, message))

    async def confirm(self, title: str, message: str) -> bool:
        _ = message
        self.confirm_titles.append(title)
        return self.confirms.pop(0)

    async def input(self, title: str, placeholder: str | None = None) -> str | None:
        _ = title, placeholder
        return self.inputs.pop(0) if self.inputs else None

    def send_message(self, message: str) -> None:
        self.messages.append(message)


class FakeRunner:
    def __init__(self, *runs: TestRun) -> None:
        self.runs = list(runs)
        self.calls = 0

    async def run(self) -> TestRun:
        self.calls += 1
        return self.runs.pop(0)


def _failing() -> TestRun:
    return TestRun(command="npm test", exit_code=1, stderr="FAIL test/t1.spec.ts")


def _passing() -> TestRun:
    return TestRun(command="npm test", exit_code=0, stdout="1 passing")


def _controller(
    tmp_path: Path,
    host: FakeHost,
    *runs: TestRun,
    tasks: str = "- [ ] T1 - first task\n- [ ] T2\n",
    **kwargs,
) -> FlowController:
    task_file = tmp_path / "tasks.md"
    task_file.write_text(tasks, encoding="utf-8")
    return FlowController(
        host,
        TaskStore(task_file),
        SessionStore(tmp_path / "session.json"),
        TddGate(FakeRunner(*runs)),
        **kwargs,
    )


def _write(path: str) -> ToolCallEvent:
    return ToolCallEvent(tool_name="write", input={"path": path})


def _session(tmp_path: Path) -> dict:
    return json.loads((tmp_path / "session.json").read_text(encoding="utf-8"))


def test_full_flow_from_selection_to_approved_review(tmp_path: Path) -> None:
    host = FakeHost(confirms=[True, True, True])
    controller = _controller(tmp_path, host, _failing(), _passing())

    async def _run() -> None:
        await controller.start()
        assert controller.state == "idle"
        assert "Your current state is: IDLE" in host.messages[-1]

        listing = await controller.list_tasks()
        assert listing == "SUCCESS: your current open tasks are: T1, T2"

        selected = await controller.select_task("T1")
        assert selected.startswith('SUCCESS: You selected task "T1".')
        assert controller.state == "plan"
        assert _session(tmp_path)["status"] == "planning"
        assert _session(tmp_path)["taskDescription"] == "first task"

        started = await controller.start_dev("R")
        assert started.startswith("SUCCESS: You are now in DEV state")
        assert controller.phase == "red"
        assert _session(tmp_path)["status"] == "developing"
        assert _session(tmp_path)["requirements"] == "R"

        blocked = await controller.handle(_write("src/t1.ts"))
        assert blocked is not None
        assert "RED" in blocked.reason

        assert await controller.handle(_write("test/t1.spec.ts")) is None
        await controller.handle(ToolResultEvent(tool_name="write"))
        assert controller.phase == "green"
        assert "TDD RED phase" in host.messages[-1]
        assert "✗ FAILED" in host.messages[-1]

        assert await controller.handle(_write("src/t1.ts")) is None
        await controller.handle(ToolResultEvent(tool_name="write"))
        assert controller.phase == "refactor"
        assert "✓ PASSED" in host.messages[-1]

        verdict = await controller.review_task()
        assert verdict.startswith("SUCCESS: User reviewed the code implementation and approved")
        assert "Task completed!" in verdict
        assert "Your current state is: IDLE" in verdict

    asyncio.run(_run())

    assert controller.state == "idle"
    assert controller.current_task is None
    assert host.confirm_titles == ["Confirm Task", "Planning Complete", "Review Task"]
    assert (tmp_path / "tasks.md").read_text(encoding="utf-8") == (
        "- [x] T1 - first task\n- [ ] T2\n"
    )
    assert (tmp_path / "session.json").read_text(encoding="utf-8") == ""


def test_tools_fail_with_text_outside_their_state(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host)

    inactive = asyncio.run(controller.review_task())
    assert inactive == (
        "FAILED: you are only allowed to use the review-task tool in DEV state, "
        "but you are currently in INACTIVE state"
    )

    asyncio.run(controller.start())
    early = asyncio.run(controller.start_dev("R"))
    assert early.startswith("FAILED: you are only allowed to start development in PLAN state")
    assert controller.state == "idle"


def test_select_task_is_rejected_outside_idle(tmp_path: Path) -> None:
    host = FakeHost(confirms=[True, True])
    controller = _controller(tmp_path, host)

    inactive = asyncio.run(controller.select_task("T1"))
    assert inactive == (
        "FAILED: you are only allowed to select a task in IDLE state, "
        "but you are currently in INACTIVE state"
    )

    async def _run() -> tuple[str, str]:
        await controller.start()
        await controller.select_task("T1")
        in_plan = await controller.select_task("T2")
        await controller.start_dev("R")
        in_dev = await controller.select_task("T2")
        return in_plan, in_dev

    in_plan, in_dev = asyncio.run(_run())

    assert in_plan.endswith("but you are currently in PLAN state")
    assert in_dev.endswith("but you are currently in DEV state")
    assert controller.state == "dev"
    assert controller.current_task is not None
    assert controller.current_task.name == "T1"
    assert host.confirm_titles == ["Confirm Task", "Planning Complete"]


def test_start_dev_requires_a_bound_task(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host)
    controller._state = "plan"

    result = asyncio.run(controller.start_dev("R"))

    assert result == "FAILED: no task selected. Use the select-task tool first."
    assert controller.state == "plan"
    assert host.confirm_titles == []
    assert not (tmp_path / "session.json").exists()


def test_select_task_validates_name(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host)
    asyncio.run(controller.start())

    blank = asyncio.run(controller.select_task("  "))
    unknown = asyncio.run(controller.select_task("T9"))

    assert blank.startswith("FAILED: you need to provide a name")
    assert unknown.startswith('FAILED: your selected task "T9" does not exist')
    assert controller.state == "idle"
    assert host.confirm_titles == []


def test_select_task_decline_keeps_idle(tmp_path: Path) -> None:
    host = FakeHost(confirms=[False])
    controller = _controller(tmp_path, host)
    asyncio.run(controller.start())

    result = asyncio.run(controller.select_task("T1"))

    assert result.startswith("FAILED: user denied selecting this task")
    assert controller.state == "idle"
    assert controller.current_task is None
    assert not (tmp_path / "session.json").exists()


def test_select_task_matches_case_insensitively_and_overrides_description(
    tmp_path: Path,
) -> None:
    host = FakeHost(confirms=[True], inputs=["extra context"])
    controller = _controller(tmp_path, host)
    asyncio.run(controller.start())

    result = asyncio.run(controller.select_task("  t1 "))

    assert result.startswith("SUCCESS:")
    assert controller.current_task is not None
    assert controller.current_task.name == "T1"
    assert _session(tmp_path)["taskName"] == "T1"
    assert _session(tmp_path)["taskDescription"] == "extra context"


def test_plan_rejection_stays_in_plan_and_blocks_writes(tmp_path: Path) -> None:
    host = FakeHost(confirms=[True, False])
    controller = _controller(tmp_path, host)

    async def _run() -> str:
        await controller.start()
        await controller.select_task("T1")
        return await controller.start_dev("half done")

    result = asyncio.run(_run())

    assert result == (
        "FAILED: User rejected the planning. Continue analyzing the task requirements."
    )
    assert controller.state == "plan"
    assert _session(tmp_path)["status"] == "planning"
    blocked = asyncio.run(controller.handle(_write("notes.md")))
    assert blocked is not None
    assert "PLAN" in blocked.reason


def test_idle_blocks_writes_but_inactive_allows_them(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host)

    assert asyncio.run(controller.handle(_write("src/a.ts"))) is None

    asyncio.run(controller.start())
    blocked = asyncio.run(controller.handle(_write("src/a.ts")))
    assert blocked is not None
    assert "IDLE" in blocked.reason

    asyncio.run(controller.stop())
    assert controller.active is False
    assert asyncio.run(controller.handle(_write("src/a.ts"))) is None


def test_recursive_listing_is_blocked_in_every_state(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host)
    event = ToolCallEvent(tool_name="bash", input={"command": "ls -R /"})

    inactive = asyncio.run(controller.handle(event))
    asyncio.run(controller.start())
    idle = asyncio.run(controller.handle(event))

    assert inactive is not None
    assert idle is not None
    assert "ls -R" in idle.reason
    assert asyncio.run(
        controller.handle(ToolCallEvent(tool_name="bash", input={"command": "ls src"}))
    ) is None


def test_review_rejection_returns_to_dev_with_phase_kept(tmp_path: Path) -> None:
    host = FakeHost(confirms=[True, True, False], inputs=[None, "missing edge case"])
    controller = _controller(tmp_path, host, _failing())

    async def _run() -> str:
        await controller.start()
        await controller.select_task("T1")
        await controller.start_dev("R")
        await controller.handle(_write("test/t1.spec.ts"))
        await controller.handle(ToolResultEvent(tool_name="write"))
        return await controller.review_task()

    verdict = asyncio.run(_run())

    assert verdict.startswith("FAILED: User reviewed the code implementation and denied it.")
    assert "Reviewer notes: missing edge case." in verdict
    assert "Review rejected. Return to DEV state to fix issues." in verdict
    assert "still GREEN" in verdict
    assert controller.state == "dev"
    assert controller.phase == "green"
    assert _session(tmp_path)["status"] == "developing"
    assert "- [ ] T1" in (tmp_path / "tasks.md").read_text(encoding="utf-8")


def test_done_marker_restarts_red_cycle(tmp_path: Path) -> None:
    host = FakeHost(confirms=[True, True])
    controller = _controller(tmp_path, host, _failing(), _passing(), _passing())

    async def _run() -> None:
        await controller.start()
        await controller.select_task("T1")
        await controller.start_dev("R")
        for path in ("test/t1.spec.ts", "src/t1.ts", "src/t1.ts"):
            await controller.handle(_write(path))
            await controller.handle(ToolResultEvent(tool_name="write"))
        assert "[DONE]" in host.messages[-1]
        assert controller.gate.awaiting_ack is True
        await controller.handle(AgentEndEvent(final_text="Cleanup finished [DONE]"))

    asyncio.run(_run())

    assert controller.phase == "red"
    assert ("info", "Flow: TDD cycle complete, back to RED") in host.notifications


def test_agent_end_nudges_with_state_guidance(tmp_path: Path) -> None:
    host = FakeHost(confirms=[True])
    controller = _controller(tmp_path, host)

    async def _run() -> None:
        await controller.start()
        await controller.select_task("T1")
        await controller.handle(AgentEndEvent())

    asyncio.run(_run())

    assert host.messages[-1].startswith("You are not done yet. Your current state is: PLAN.")
    assert "start-dev" in host.messages[-1]


def test_agent_end_stays_quiet_when_idle_without_open_tasks(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host, tasks="- [x] Done\n")
    asyncio.run(controller.start())
    sent = len(host.messages)

    asyncio.run(controller.handle(AgentEndEvent(final_text="bye")))

    assert len(host.messages) == sent


def test_nudge_can_be_disabled(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host, nudge_on_agent_end=False)
    asyncio.run(controller.start())
    sent = len(host.messages)

    asyncio.run(controller.handle(AgentEndEvent()))

    assert len(host.messages) == sent


def test_resume_developing_session(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host)
    SessionStore(tmp_path / "session.json").start_session("T1", "first task")
    SessionStore(tmp_path / "session.json").save_requirements("R1")

    resumed = asyncio.run(controller.resume())

    assert resumed is True
    assert controller.state == "dev"
    assert controller.phase == "red"
    assert controller.current_task is not None
    assert controller.current_task.name == "T1"
    assert "Task Description: first task" in host.messages[-1]
    assert "Requirements:\nR1" in host.messages[-1]


def test_resume_reviewing_session_settles_review(tmp_path: Path) -> None:
    host = FakeHost(confirms=[True])
    controller = _controller(tmp_path, host)
    sessions = SessionStore(tmp_path / "session.json")
    sessions.start_session("T2")
    sessions.update_status("reviewing")

    assert asyncio.run(controller.resume()) is True

    assert controller.state == "idle"
    assert "Task completed!" in host.messages[-1]
    assert "- [x] T2" in (tmp_path / "tasks.md").read_text(encoding="utf-8")
    assert sessions.read_session() is None


def test_resume_without_session_reports_error(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host)

    assert asyncio.run(controller.resume()) is False
    assert controller.state is None
    assert host.notifications[-1][0] == "error"


def test_resume_completed_session_is_rejected(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host)
    sessions = SessionStore(tmp_path / "session.json")
    sessions.start_session("T1")
    sessions.update_status("completed")

    assert asyncio.run(controller.resume()) is False
    assert host.notifications[-1] == ("error", "Unknown session status: completed")


def test_state_entry_recreates_missing_session(tmp_path: Path) -> None:
    host = FakeHost(confirms=[True])
    controller = _controller(tmp_path, host)

    async def _run() -> None:
        await controller.start()
        await controller.select_task("T1")
        (tmp_path / "session.json").write_text("", encoding="utf-8")
        await controller.plan_state.on_enter(controller.current_task)

    asyncio.run(_run())

    assert _session(tmp_path)["taskName"] == "T1"
    assert _session(tmp_path)["status"] == "planning"


def test_registries_expose_tools_and_commands(tmp_path: Path) -> None:
    host = FakeHost(inputs=["New task", "with details"])
    controller = _controller(tmp_path, host)

    tool_names = [tool.name for tool in controller.tools()]
    assert tool_names == ["list-tasks", "select-task", "start-dev", "review-task"]
    schema = controller.tools()[1].schema()
    assert schema["parameters"]["required"] == ["name"]
    assert [command.name for command in controller.commands()] == [
        "start-flow",
        "resume-flow",
        "stop-flow",
        "list-tasks",
        "add-task",
    ]

    assert asyncio.run(controller.call_tool("deploy")) == "FAILED: unknown tool: deploy"
    listing = asyncio.run(controller.call_tool("list-tasks"))
    assert listing == "SUCCESS: your current open tasks are: T1, T2"

    task = asyncio.run(controller.run_command("add-task"))
    assert task is not None
    assert "- [ ] New task - with details" in (tmp_path / "tasks.md").read_text(
        encoding="utf-8"
    )
    with pytest.raises(InvalidInputError):
        asyncio.run(controller.run_command("explode"))


def test_add_task_command_requires_name(tmp_path: Path) -> None:
    host = FakeHost(inputs=["   "])
    controller = _controller(tmp_path, host)

    assert asyncio.run(controller.add_task_command()) is None
    assert host.notifications[-1] == ("error", "Task name is required")


def test_list_tasks_tool_hints_at_file_format(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host, tasks="")

    result = asyncio.run(controller.list_tasks())

    assert result.startswith("SUCCESS: no open tasks found.")
    assert '"- [ ] Task name - Description"' in result


def test_from_config_wires_paths_and_runner(tmp_path: Path) -> None:
    config = FlowConfig.default()
    config.paths.tasks_file = "work/tasks.md"
    config.tdd.test_dirs = ["spec"]
    runner = FakeRunner()

    controller = FlowController.from_config(config, FakeHost(), tmp_path, runner=runner)

    assert controller.tasks.task_file == (tmp_path / "work" / "tasks.md").resolve()
    assert controller.gate.runner is runner
    assert controller.gate.path_classifier.classify("spec/a.spec.ts") == "test"


def test_list_tasks_command_notifies_every_task(tmp_path: Path) -> None:
    host = FakeHost()
    controller = _controller(tmp_path, host, tasks="- [x] A\n- [ ] B - later\n")

    tasks = asyncio.run(controller.run_command("list-tasks"))

    assert [task.name for task in tasks] == ["A", "B"]
    assert host.notifications[-1] == ("info", "tasks:\n• [x] A\n• [ ] B")


def test_add_task_command_reports_duplicate_open_name(tmp_path: Path) -> None:
    host = FakeHost(inputs=["t1", "again"])
    controller = _controller(tmp_path, host)

    assert asyncio.run(controller.run_command("add-task")) is None
    assert host.notifications[-1] == ("error", 'An open task named "t1" already exists.')
    assert (tmp_path / "tasks.md").read_text(encoding="utf-8") == (
        "- [ ] T1 - first task\n- [ ] T2\n"
    )
