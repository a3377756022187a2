from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

OutcomeMode = Literal["markers", "exit_code"]

DEFAULT_CONFIG_FILE = "tddflow.toml"


@dataclass(slots=True)
class PathsConfig:
    tasks_file: str = "tasks.md"
    session_file: str = "session.json"


@dataclass(slots=True)
class TddConfig:
    test_command: str = "npm test"
    timeout_seconds: float = 5.0
    outcome: OutcomeMode = "markers"
    failure_markers: list[str] = field(default_factory=lambda: ["FAIL", "failed"])
    src_marker: str = "src"
    test_marker: str = "test"
    src_dirs: list[str] = field(default_factory=list)
    test_dirs: list[str] = field(default_factory=list)
    pause_after_refactor: bool = True
    max_output_chars: int = 4000


@dataclass(slots=True)
class FlowSettings:
    write_tools: list[str] = field(default_factory=lambda: ["write", "edit"])
    blocked_commands: list[str] = field(default_factory=lambda: ["ls -R"])
    nudge_on_agent_end: bool = True
    done_marker: str = "[DONE]"


@dataclass(slots=True)
class FlowConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    tdd: TddConfig = field(default_factory=TddConfig)
    flow: FlowSettings = field(default_factory=FlowSettings)

    @classmethod
    def default(cls) -> FlowConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> FlowConfig:
        return cls(
            paths=PathsConfig(**data.get("paths", {})),
            tdd=TddConfig(**data.get("tdd", {})),
            flow=FlowSettings(**data.get("flow", {})),
        )

    def to_dict(self) -> dict:
        return {
            "paths": {
                "tasks_file": self.paths.tasks_file,
                "session_file": self.paths.session_file,
            },
            "tdd": {
                "test_command": self.tdd.test_command,
                "timeout_seconds": self.tdd.timeout_seconds,
                "outcome": self.tdd.outcome,
                "failure_markers": list(self.tdd.failure_markers),
                "src_marker": self.tdd.src_marker,
                "test_marker": self.tdd.test_marker,
                "src_dirs": list(self.tdd.src_dirs),
                "test_dirs": list(self.tdd.test_dirs),
                "pause_after_refactor": self.tdd.pause_after_refactor,
                "max_output_chars": self.tdd.max_output_chars,
            },
            "flow": {
                "write_tools": list(self.flow.write_tools),
                "blocked_commands": list(self.flow.blocked_commands),
                "nudge_on_agent_end": self.flow.nudge_on_agent_end,
                "done_marker": self.flow.done_marker,
            },
        }

    def resolve_path(self, project_root: Path, value: str) -> Path:
        path = Path(value)
        if not path.is_absolute():
            path = project_root / path
        return path.resolve()


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: FlowConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("paths", "tdd", "flow"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> FlowConfig:
    if not path.exists():
        return FlowConfig.default()
    return FlowConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: FlowConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_toml(config), encoding="utf-8")
