from __future__ import annotations

from dataclasses import dataclass

from tddflow.errors import FlowStateError
from tddflow.states.base import FlowState
from tddflow.store.tasks import Task


@dataclass(slots=True)
class ReviewResult:
    approved: bool
    feedback: str


class ReviewState(FlowState):
    name = "review"
    prompt = """
You are now in REVIEW state.
Your implementation is being reviewed for correctness and quality.
Wait for the review results before proceeding.
""".strip()
    guidance = "In REVIEW state you have to wait for the review result."

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.last_result: ReviewResult | None = None

    async def on_enter(self, task: Task | None, *, fresh: bool = True) -> str:
        _ = fresh
        if task is None:
            raise FlowStateError("REVIEW state requires a selected task.")
        self._persist_status(task, "reviewing")
        self.host.notify(f"Flow: REVIEW state - {task.name}", "info")

        result = await self.review()
        self.last_result = result
        if result.approved:
            return f"SUCCESS: {result.feedback} Task completed!"
        return f"FAILED: {result.feedback} Review rejected. Return to DEV state to fix issues."

    async def review(self) -> ReviewResult:
        confirmed = await self.host.confirm(
            "Review Task", "Did the agent implement the task successfully?"
        )
        if confirmed:
            return ReviewResult(
                approved=True,
                feedback="User reviewed the code implementation and approved it.",
            )

        feedback = "User reviewed the code implementation and denied it."
        notes = await self.host.input("Review Feedback", "What needs to be fixed? (optional)")
        if notes and notes.strip():
            feedback += f" Reviewer notes: {notes.strip()}."
        return ReviewResult(approved=False, feedback=feedback + " Fix the issues and submit again.")
