from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from tddflow.errors import InvalidInputError

logger = logging.getLogger(__name__)

TASK_LINE_PATTERN = re.compile(
    r"^[-*]\s+\[(?P<mark>[ xX])\]\s+(?P<name>.+?)(?:\s+-\s+(?P<description>.+))?$"
)
OPEN_MARKER_PATTERN = re.compile(r"\[ \]")


@dataclass(slots=True)
class Task:
    name: str
    description: str = ""
    is_done: bool = False

    def to_line(self) -> str:
        marker = "x" if self.is_done else " "
        line = f"- [{marker}] {self.name}"
        if self.description:
            line += f" - {self.description}"
        return line


def normalize_task_name(name: str) -> str:
    return name.strip().casefold()


def parse_task_line(line: str) -> Task | None:
    match = TASK_LINE_PATTERN.match(line.strip())
    if not match:
        return None
    return Task(
        name=match.group("name").strip(),
        description=(match.group("description") or "").strip(),
        is_done=match.group("mark") in {"x", "X"},
    )


class TaskStore:
    """Line-oriented markdown task list.

    Each task is one line of the form ``- [ ] name - description``; done tasks
    carry ``[x]``. Hand-edited files may also use ``*`` bullets or ``[X]``; both
    are read as tasks. Lines that do not look like tasks are kept untouched on
    every rewrite, and file order is the only ordering. Open task names are
    unique, so ``complete_task`` always targets the one open line for a name.
    """

    def __init__(self, task_file: Path) -> None:
        self.task_file = task_file

    def _read_text(self) -> str | None:
        try:
            return self.task_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Task file %s is unreadable: %s", self.task_file, exc)
            return None

    def get_tasks(self) -> list[Task]:
        content = self._read_text()
        if content is None:
            return []
        tasks: list[Task] = []
        for line in content.splitlines():
            task = parse_task_line(line)
            if task is not None:
                tasks.append(task)
        return tasks

    def open_tasks(self) -> list[Task]:
        return [task for task in self.get_tasks() if not task.is_done]

    def find_open_task(self, name: str) -> Task | None:
        wanted = normalize_task_name(name)
        if not wanted:
            return None
        for task in self.open_tasks():
            if normalize_task_name(task.name) == wanted:
                return task
        return None

    def add_task(self, name: str, description: str = "") -> Task:
        task = Task(name=name.strip(), description=description.strip())
        if not task.name:
            raise InvalidInputError("Task name is required.")
        if self.find_open_task(task.name) is not None:
            raise InvalidInputError(f'An open task named "{task.name}" already exists.')

        content = self._read_text()
        if content is None or not content.strip():
            new_content = task.to_line() + "\n"
        else:
            new_content = content.rstrip() + "\n" + task.to_line() + "\n"
        self.task_file.parent.mkdir(parents=True, exist_ok=True)
        self.task_file.write_text(new_content, encoding="utf-8")
        logger.info("Added task %r to %s", task.name, self.task_file)
        return task

    def complete_task(self, name: str) -> bool:
        content = self._read_text()
        if content is None:
            return False
        wanted = normalize_task_name(name)
        if not wanted:
            return False

        lines = content.splitlines(keepends=True)
        for index, line in enumerate(lines):
            task = parse_task_line(line)
            if task is None or task.is_done:
                continue
            if normalize_task_name(task.name) != wanted:
                continue
            lines[index] = OPEN_MARKER_PATTERN.sub("[x]", line, count=1)
            self.task_file.write_text("".join(lines), encoding="utf-8")
            logger.info("Marked task %r done in %s", task.name, self.task_file)
            return True
        return False
