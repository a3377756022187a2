from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, get_args

from tddflow.errors import InvalidInputError, NoActiveSessionError

logger = logging.getLogger(__name__)

SessionStatus = Literal["planning", "developing", "reviewing", "completed"]
SESSION_STATUSES: frozenset[str] = frozenset(get_args(SessionStatus))


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


@dataclass(slots=True)
class Session:
    task_name: str
    task_description: str = ""
    requirements: str = ""
    status: SessionStatus = "planning"
    started_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskName": self.task_name,
            "taskDescription": self.task_description,
            "requirements": self.requirements,
            "status": self.status,
            "startedAt": self.started_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Session | None:
        task_name = payload.get("taskName")
        status = payload.get("status")
        if not isinstance(task_name, str) or not task_name.strip():
            return None
        if status not in SESSION_STATUSES:
            return None
        description = payload.get("taskDescription", payload.get("description", ""))
        started_at = payload.get("startedAt")
        return cls(
            task_name=task_name,
            task_description=str(description or ""),
            requirements=str(payload.get("requirements") or ""),
            status=status,
            started_at=str(started_at) if started_at else _utcnow_iso(),
        )


class SessionStore:
    """Single-slot JSON record of the in-progress workflow.

    An empty or missing file means there is no session; ``read_session`` never
    raises, so a corrupted file is treated the same as an absent one.
    """

    def __init__(self, session_file: Path) -> None:
        self.session_file = session_file

    def _write(self, session: Session) -> None:
        self.session_file.parent.mkdir(parents=True, exist_ok=True)
        self.session_file.write_text(
            json.dumps(session.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8"
        )

    def _require_session(self) -> Session:
        session = self.read_session()
        if session is None:
            raise NoActiveSessionError()
        return session

    def start_session(self, task_name: str, task_description: str = "") -> Session:
        session = Session(task_name=task_name, task_description=task_description)
        self._write(session)
        logger.info("Started session for task %r", task_name)
        return session

    def save_requirements(self, requirements: str) -> Session:
        session = self._require_session()
        session.requirements = requirements
        session.status = "developing"
        self._write(session)
        return session

    def update_status(self, status: SessionStatus) -> Session:
        if status not in SESSION_STATUSES:
            raise InvalidInputError(f"Unsupported session status: {status}")
        session = self._require_session()
        session.status = status
        self._write(session)
        return session

    def complete_session(self) -> None:
        try:
            self.session_file.write_text("", encoding="utf-8")
        except FileNotFoundError:
            return
        logger.info("Cleared session file %s", self.session_file)

    def read_session(self) -> Session | None:
        try:
            content = self.session_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Session file %s is unreadable: %s", self.session_file, exc)
            return None
        if not content.strip():
            return None
        try:
            payload = json.loads(content)
        except json.JSONDecodeError:
            logger.warning("Session file %s is not valid JSON; ignoring it", self.session_file)
            return None
        if not isinstance(payload, dict):
            return None
        return Session.from_dict(payload)

    def has_active_session(self) -> bool:
        session = self.read_session()
        return session is not None and session.status != "completed"
