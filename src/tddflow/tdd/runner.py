from __future__ import annotations

import asyncio
import logging
import re
import shlex
import time
from dataclasses import dataclass
from pathlib import Path

from tddflow.errors import ExternalCommandError

logger = logging.getLogger(__name__)

SHELL_REQUIRED_PATTERN = re.compile(r"(?:\|\||&&|[|;<>`]|[$]\()")


@dataclass(slots=True)
class TestRun:
    """Captured result of one test command invocation."""

    __test__ = False

    command: str
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def completed(self) -> bool:
        return not self.timed_out and self.error is None

    @property
    def output(self) -> str:
        parts = [self.stdout.strip(), self.stderr.strip()]
        if self.error:
            parts.append(self.error)
        return "\n".join(part for part in parts if part)

    def raise_for_error(self) -> None:
        if self.timed_out:
            raise ExternalCommandError(
                f"Test command timed out: {self.command}",
                command=self.command,
                timed_out=True,
            )
        if self.error is not None:
            raise ExternalCommandError(
                self.error, command=self.command, exit_code=self.exit_code
            )


class TestCommandRunner:
    """Runs the project test command with a hard timeout."""

    __test__ = False

    def __init__(
        self,
        command: str,
        *,
        cwd: Path | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    async def _spawn(self, command_text: str) -> asyncio.subprocess.Process:
        cwd = str(self.cwd) if self.cwd else None
        if not SHELL_REQUIRED_PATTERN.search(command_text):
            try:
                argv = shlex.split(command_text)
            except ValueError:
                argv = []
            if argv:
                return await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=cwd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
        return await asyncio.create_subprocess_shell(
            command_text,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def run(self) -> TestRun:
        command_text = self.command.strip()
        if not command_text:
            return TestRun(command=self.command, exit_code=None, error="Test command is empty.")

        start = time.monotonic()
        try:
            process = await self._spawn(command_text)
        except (FileNotFoundError, PermissionError) as exc:
            logger.warning("Test command could not start: %s", exc)
            return TestRun(
                command=command_text,
                exit_code=None,
                error=f"Test command could not start: {exc}",
                duration_ms=(time.monotonic() - start) * 1000,
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(
                "Test command timed out after %.1fs: %s", self.timeout_seconds, command_text
            )
            return TestRun(
                command=command_text,
                exit_code=None,
                timed_out=True,
                error=f"Test command timed out after {self.timeout_seconds:.1f}s",
                duration_ms=(time.monotonic() - start) * 1000,
            )

        return TestRun(
            command=command_text,
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=(time.monotonic() - start) * 1000,
        )
