"""Path and test-outcome classifiers used by the TDD gate.

Both are small strategy objects so a project can swap the heuristic without
touching the gate. The defaults reproduce the plain substring checks:

* ``SubstringPathClassifier`` calls any path containing ``test`` a test path
  and any other path containing ``src`` a source path. This misfires on paths
  such as ``src/test-utils.ts`` (treated as a test) or ``contest/src/a.ts``.
  Configure explicit folders to get ``FolderPathClassifier`` instead.
* ``MarkerOutcomeClassifier`` looks for ``FAIL``/``failed`` in stderr, which
  depends on the test framework's wording.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import PurePosixPath
from typing import Literal

from tddflow.config import TddConfig
from tddflow.tdd.runner import TestRun

PathKind = Literal["src", "test", "other"]


class PathClassifier(ABC):
    @abstractmethod
    def classify(self, path: str) -> PathKind:
        """Return which side of the TDD split a path belongs to."""

    def is_test(self, path: str) -> bool:
        return self.classify(path) == "test"

    def is_src(self, path: str) -> bool:
        return self.classify(path) == "src"


class SubstringPathClassifier(PathClassifier):
    def __init__(self, src_marker: str = "src", test_marker: str = "test") -> None:
        self.src_marker = src_marker
        self.test_marker = test_marker

    def classify(self, path: str) -> PathKind:
        if self.test_marker in path:
            return "test"
        if self.src_marker in path:
            return "src"
        return "other"


def _normalize_dir(value: str) -> str:
    normalized = value.replace("\\", "/").strip().strip("/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


class FolderPathClassifier(PathClassifier):
    """Classifies by root-relative folder prefixes, e.g. ``src`` and ``tests``."""

    def __init__(
        self,
        src_dirs: Iterable[str],
        test_dirs: Iterable[str],
        *,
        root: str | None = None,
    ) -> None:
        self.src_dirs = [item for item in (_normalize_dir(d) for d in src_dirs) if item]
        self.test_dirs = [item for item in (_normalize_dir(d) for d in test_dirs) if item]
        self.root = _normalize_dir(root) if root else None

    def _relative(self, path: str) -> str:
        normalized = path.replace("\\", "/")
        if self.root:
            root_prefix = "/" + self.root + "/"
            if normalized.startswith(root_prefix):
                normalized = normalized[len(root_prefix):]
        return _normalize_dir(normalized)

    @staticmethod
    def _under(path: str, folders: list[str]) -> bool:
        parts = PurePosixPath(path).parts
        for folder in folders:
            folder_parts = PurePosixPath(folder).parts
            if parts[: len(folder_parts)] == folder_parts:
                return True
        return False

    def classify(self, path: str) -> PathKind:
        relative = self._relative(path)
        if self._under(relative, self.test_dirs):
            return "test"
        if self._under(relative, self.src_dirs):
            return "src"
        return "other"


class OutcomeClassifier(ABC):
    @abstractmethod
    def passed(self, run: TestRun) -> bool:
        """Decide whether a test run counts as passing."""


class ExitCodeOutcomeClassifier(OutcomeClassifier):
    def passed(self, run: TestRun) -> bool:
        return run.completed and run.exit_code == 0


class MarkerOutcomeClassifier(OutcomeClassifier):
    def __init__(self, markers: Iterable[str] = ("FAIL", "failed")) -> None:
        self.markers = tuple(marker for marker in markers if marker)

    def passed(self, run: TestRun) -> bool:
        if not run.completed or run.exit_code != 0:
            return False
        return not any(marker in run.stderr for marker in self.markers)


def build_path_classifier(config: TddConfig, *, root: str | None = None) -> PathClassifier:
    if config.test_dirs:
        return FolderPathClassifier(config.src_dirs, config.test_dirs, root=root)
    return SubstringPathClassifier(config.src_marker, config.test_marker)


def build_outcome_classifier(config: TddConfig) -> OutcomeClassifier:
    if config.outcome == "exit_code":
        return ExitCodeOutcomeClassifier()
    return MarkerOutcomeClassifier(config.failure_markers)
