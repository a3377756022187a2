from __future__ import annotations


class FlowError(RuntimeError):
    """Base class for workflow failures reported back to the agent as text."""


class GuardViolationError(FlowError):
    """Raised when an operation is requested in the wrong workflow state."""

    def __init__(self, message: str, *, state: str | None = None) -> None:
        super().__init__(message)
        self.state = state


class InvalidInputError(FlowError):
    """Raised for blank or unknown names and malformed parameters."""


class UserRejectionError(FlowError):
    """Raised when the human declines a confirmation."""


class FlowStateError(FlowError):
    """Raised when persisted workflow state cannot be used."""


class NoActiveSessionError(FlowStateError):
    """Raised when a session update is attempted without a started session."""

    def __init__(self, message: str = "No active session found. Start a session first.") -> None:
        super().__init__(message)


class ExternalCommandError(FlowError):
    """Raised when the external test command could not run to completion."""

    def __init__(
        self,
        message: str,
        *,
        command: str | None = None,
        exit_code: int | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.timed_out = timed_out
