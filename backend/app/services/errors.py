"""Domain error taxonomy shared by services and routes."""
from __future__ import annotations


class OrbitError(Exception):
    """Base class for expected, user-facing domain failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class HabitValidationError(OrbitError):
    """A domain rule was violated; `field` names the offending input when known."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(OrbitError):
    """The entity does not exist or belongs to someone else (never distinguished)."""


class InterpreterError(OrbitError):
    """The intent interpreter or fact extractor could not produce a usable answer."""


class InterpreterUnavailableError(InterpreterError):
    """No LLM provider is configured."""


class ChatTurnCancelled(OrbitError):
    """The inbound request went away before the chat turn committed."""

    def __init__(self, message: str = "Chat turn cancelled by client") -> None:
        super().__init__(message)
