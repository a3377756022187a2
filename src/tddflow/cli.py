from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import click

from tddflow.config import DEFAULT_CONFIG_FILE, FlowConfig, load_config, save_config
from tddflow.controller import FlowController
from tddflow.errors import FlowError
from tddflow.host import ConsoleHost
from tddflow.store import SessionStore, TaskStore
from tddflow.tdd.classify import build_outcome_classifier
from tddflow.tdd.runner import TestCommandRunner


@dataclass(slots=True)
class Runtime:
    project_root: Path
    config_path: Path
    config: FlowConfig
    tasks: TaskStore
    sessions: SessionStore


def _resolve_config_path(project_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = project_root / config_path
    return config_path.resolve()


def _load_runtime(config_value: str) -> Runtime:
    project_root = Path.cwd().resolve()
    config_path = _resolve_config_path(project_root, config_value)
    config = load_config(config_path)
    return Runtime(
        project_root=project_root,
        config_path=config_path,
        config=config,
        tasks=TaskStore(config.resolve_path(project_root, config.paths.tasks_file)),
        sessions=SessionStore(config.resolve_path(project_root, config.paths.session_file)),
    )


config_option = click.option(
    "--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True
)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """tddflow CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command("init")
@click.option("--test-command", default=None, help="Command run after every permitted edit.")
@config_option
def init_command(test_command: str | None, config_value: str) -> None:
    project_root = Path.cwd().resolve()
    config_path = _resolve_config_path(project_root, config_value)
    config = load_config(config_path)
    if test_command:
        config.tdd.test_command = test_command
    save_config(config_path, config)

    tasks_file = config.resolve_path(project_root, config.paths.tasks_file)
    if not tasks_file.exists():
        tasks_file.parent.mkdir(parents=True, exist_ok=True)
        tasks_file.write_text("", encoding="utf-8")

    click.echo(f"Initialized tddflow in {project_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Tasks: {tasks_file}")
    click.echo(f"Test command: {config.tdd.test_command}")


@cli.command("list-tasks")
@click.option("--open", "only_open", is_flag=True, default=False)
@config_option
def list_tasks_command(only_open: bool, config_value: str) -> None:
    runtime = _load_runtime(config_value)
    tasks = runtime.tasks.open_tasks() if only_open else runtime.tasks.get_tasks()
    if not tasks:
        click.echo("No tasks found.")
        return
    for task in tasks:
        line = f"[{'x' if task.is_done else ' '}] {task.name}"
        if task.description:
            line += f" - {task.description}"
        click.echo(line)


@cli.command("add-task")
@click.argument("name", required=False)
@click.option("--description", default="", show_default=False)
@config_option
def add_task_command(name: str | None, description: str, config_value: str) -> None:
    runtime = _load_runtime(config_value)
    if not name:
        controller = FlowController.from_config(
            runtime.config, ConsoleHost(), runtime.project_root
        )
        asyncio.run(controller.run_command("add-task"))
        return
    try:
        task = runtime.tasks.add_task(name, description)
    except FlowError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f'Task "{task.name}" added successfully')


@cli.command("session")
@config_option
def session_command(config_value: str) -> None:
    runtime = _load_runtime(config_value)
    session = runtime.sessions.read_session()
    if session is None:
        click.echo("No active session.")
        return
    click.echo(json.dumps(session.to_dict(), ensure_ascii=False, indent=2))


@cli.command("run-tests")
@config_option
def run_tests_command(config_value: str) -> None:
    runtime = _load_runtime(config_value)
    runner = TestCommandRunner(
        runtime.config.tdd.test_command,
        cwd=runtime.project_root,
        timeout_seconds=runtime.config.tdd.timeout_seconds,
    )
    run = asyncio.run(runner.run())
    try:
        run.raise_for_error()
    except FlowError as exc:
        raise click.ClickException(str(exc)) from exc
    passed = build_outcome_classifier(runtime.config.tdd).passed(run)
    click.echo(f"Command: {run.command}")
    click.echo(f"Status: {'PASSED' if passed else 'FAILED'}")
    if run.output:
        click.echo(run.output)
    if not passed:
        raise SystemExit(1)
