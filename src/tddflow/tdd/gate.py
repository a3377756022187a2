"""Red-Green-Refactor enforcement for the Dev state.

The gate vetoes writes that break test-first ordering and, after a permitted
edit, runs the test command and advances the phase from the outcome:

========  ========  =====================================
Phase     Outcome   Result
========  ========  =====================================
red       pass      stay red, the test is not failing yet
red       fail      advance to green
green     fail      stay green, keep implementing
green     pass      advance to refactor
refactor  fail      stay refactor, fix the regression
refactor  pass      cycle complete
========  ========  =====================================

The phase can only move through ``after_tool_result`` (test outcomes) and
``acknowledge_cycle`` (the agent finishing a completed cycle).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal, Protocol

from tddflow.events import BlockDecision
from tddflow.tdd.classify import (
    MarkerOutcomeClassifier,
    OutcomeClassifier,
    PathClassifier,
    SubstringPathClassifier,
)
from tddflow.tdd.runner import TestRun

logger = logging.getLogger(__name__)

TddPhase = Literal["red", "green", "refactor"]


class TestRunner(Protocol):
    async def run(self) -> TestRun: ...


@dataclass(slots=True)
class PhaseStep:
    phase: TddPhase
    passed: bool
    next_phase: TddPhase
    cycle_complete: bool
    guidance: str


def next_phase(phase: TddPhase, passed: bool) -> PhaseStep:
    if phase == "red":
        if passed:
            return PhaseStep(
                phase, passed, "red", False,
                "Tests should fail in RED phase. If they're not failing for the right "
                "reasons, adjust your test.",
            )
        return PhaseStep(
            phase, passed, "green", False,
            "✓ Tests are now failing as expected. Phase advances to GREEN - implement the "
            "minimum code to make tests pass.",
        )
    if phase == "green":
        if passed:
            return PhaseStep(
                phase, passed, "refactor", False,
                "✓ Tests are passing! Phase advances to REFACTOR - improve code quality "
                "without breaking tests.",
            )
        return PhaseStep(
            phase, passed, "green", False,
            "⚠ Tests are failing. Continue implementing until all tests pass.",
        )
    if passed:
        return PhaseStep(
            phase, passed, "refactor", True,
            "✓ Tests still passing after refactor! Ready for the next RED cycle.",
        )
    return PhaseStep(
        phase, passed, "refactor", False,
        "⚠ Tests broke during refactor! Fix the code to restore green tests.",
    )


def format_feedback(step: PhaseStep, run: TestRun, *, max_output_chars: int = 4000) -> str:
    output = run.output.strip()
    if max_output_chars > 0 and len(output) > max_output_chars:
        output = "...\n" + output[-max_output_chars:]
    status = "✓ PASSED" if step.passed else "✗ FAILED"
    lines = [
        f"## Test Results (TDD {step.phase.upper()} phase)",
        f"**Status:** {status}",
        step.guidance,
        "```",
        output,
        "```",
    ]
    return "\n".join(lines)


class TddGate:
    def __init__(
        self,
        runner: TestRunner,
        *,
        path_classifier: PathClassifier | None = None,
        outcome_classifier: OutcomeClassifier | None = None,
        write_tools: Iterable[str] = ("write", "edit"),
        pause_after_refactor: bool = True,
        done_marker: str = "[DONE]",
        max_output_chars: int = 4000,
    ) -> None:
        self.runner = runner
        self.path_classifier = path_classifier or SubstringPathClassifier()
        self.outcome_classifier = outcome_classifier or MarkerOutcomeClassifier()
        self.write_tools = frozenset(write_tools)
        self.pause_after_refactor = pause_after_refactor
        self.done_marker = done_marker
        self.max_output_chars = max_output_chars
        self._phase: TddPhase = "red"
        self._edit_pending = False
        self._awaiting_ack = False
        self.last_run: TestRun | None = None

    @property
    def phase(self) -> TddPhase:
        return self._phase

    @property
    def edit_pending(self) -> bool:
        return self._edit_pending

    @property
    def awaiting_ack(self) -> bool:
        return self._awaiting_ack

    def reset(self) -> None:
        self._phase = "red"
        self._edit_pending = False
        self._awaiting_ack = False

    def check_write(self, tool_name: str, path: str | None) -> BlockDecision | None:
        if tool_name not in self.write_tools:
            return None
        if path is None:
            return None

        if self._phase == "red" and self.path_classifier.is_src(path):
            logger.info("Blocked %s to %s in RED phase", tool_name, path)
            return BlockDecision(
                "In RED TDD phase, you are only allowed to edit the test folder and not "
                "the src folder. Write a failing test first."
            )
        if self._phase in {"green", "refactor"} and self.path_classifier.is_test(path):
            logger.info("Blocked %s to %s in %s phase", tool_name, path, self._phase.upper())
            return BlockDecision(
                f"In {self._phase.upper()} TDD phase, you are only allowed to edit the src "
                "folder and not the test folder."
            )

        self._edit_pending = True
        return None

    def acknowledge_cycle(self) -> bool:
        if not self._awaiting_ack:
            return False
        logger.info("TDD cycle acknowledged; starting a new RED cycle")
        self.reset()
        return True

    def observe_agent_text(self, text: str) -> bool:
        if self.done_marker and self.done_marker in text:
            return self.acknowledge_cycle()
        return False

    async def after_tool_result(self) -> str | None:
        if self._awaiting_ack or not self._edit_pending:
            return None
        self._edit_pending = False

        run = await self.runner.run()
        self.last_run = run
        passed = self.outcome_classifier.passed(run)
        step = next_phase(self._phase, passed)
        logger.info(
            "Test run in %s phase %s; next phase %s",
            step.phase.upper(),
            "passed" if passed else "failed",
            step.next_phase.upper(),
        )
        self._phase = step.next_phase

        guidance = step.guidance
        if step.cycle_complete and self.pause_after_refactor:
            self._awaiting_ack = True
            guidance += (
                f" If you are DONE with refactoring reply with {self.done_marker}; "
                "automatic test runs are paused until then."
            )
            step = PhaseStep(step.phase, step.passed, step.next_phase, True, guidance)
        return format_feedback(step, run, max_output_chars=self.max_output_chars)
