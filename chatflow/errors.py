"""Error taxonomy for chatflow workflows."""

from __future__ import annotations

from typing import Optional


class ChatflowError(Exception):
    """Base class for all chatflow errors."""


class StepValidationError(ChatflowError):
    """Raised by a step validator when the user's answer is not acceptable.

    The message is shown to the user verbatim, followed by the same step prompt.
    """


class PersistenceError(ChatflowError):
    """Raised when a state store or entity repository operation fails."""


class CollaboratorError(ChatflowError):
    """Raised when an external collaborator (render, deliver, quote, execute) fails.

    Args:
        stage: Name of the completion stage that failed.
        detail: Human readable description of the failure.
    """

    def __init__(self, stage: str, detail: str) -> None:
        super().__init__(f"{stage} failed: {detail}")
        self.stage = stage
        self.detail = detail


class PreconditionError(ChatflowError):
    """Raised when a workflow cannot start because a required resource is missing."""

    def __init__(self, message: str, setup_hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.setup_hint = setup_hint


class CommandDecodeError(ChatflowError):
    """Raised when structured callback data cannot be decoded into a command."""
