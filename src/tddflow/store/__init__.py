from tddflow.store.session import Session, SessionStatus, SessionStore
from tddflow.store.tasks import Task, TaskStore

__all__ = ["Session", "SessionStatus", "SessionStore", "Task", "TaskStore"]
