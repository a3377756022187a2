from tddflow.tdd.classify import (
    ExitCodeOutcomeClassifier,
    FolderPathClassifier,
    MarkerOutcomeClassifier,
    OutcomeClassifier,
    PathClassifier,
    SubstringPathClassifier,
    build_outcome_classifier,
    build_path_classifier,
)
from tddflow.tdd.gate import TddGate, TddPhase, format_feedback, next_phase
from tddflow.tdd.runner import TestCommandRunner, TestRun

__all__ = [
    "ExitCodeOutcomeClassifier",
    "FolderPathClassifier",
    "MarkerOutcomeClassifier",
    "OutcomeClassifier",
    "PathClassifier",
    "SubstringPathClassifier",
    "TddGate",
    "TddPhase",
    "TestCommandRunner",
    "TestRun",
    "build_outcome_classifier",
    "build_path_classifier",
    "format_feedback",
    "next_phase",
]
