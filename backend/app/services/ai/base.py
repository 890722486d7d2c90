"""Interfaces for the LLM collaborators: the intent interpreter and the fact extractor."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple
from uuid import UUID

from app.services.ai.plan import ActionPlan
from app.services.errors import InterpreterUnavailableError


@dataclass(frozen=True)
class HabitSnapshot:
    id: UUID
    title: str
    frequency_unit: Optional[str]
    frequency_quantity: Optional[int]
    weekdays: Tuple[str, ...]
    is_bad_habit: bool
    unit: Optional[str]
    due_date: date
    is_completed: bool
    parent_habit_id: Optional[UUID] = None


@dataclass(frozen=True)
class TagSnapshot:
    id: UUID
    name: str
    color: str


@dataclass(frozen=True)
class FactSnapshot:
    text: str
    category: Optional[str] = None


@dataclass(frozen=True)
class InterpretationContext:
    """Read-only view of the user's state handed to the interpreter for one turn."""

    today: date
    habits: Tuple[HabitSnapshot, ...] = ()
    tags: Tuple[TagSnapshot, ...] = ()
    facts: Tuple[FactSnapshot, ...] = ()


@dataclass(frozen=True)
class ImageInput:
    data: bytes
    mime_type: str


@dataclass
class FactCandidate:
    text: str
    category: Optional[str] = None


@dataclass
class ExtractedFacts:
    facts: List[FactCandidate] = field(default_factory=list)


class IntentInterpreter:
    """Turns a chat message into an ActionPlan. Implementations raise InterpreterError."""

    def interpret(
        self,
        message: str,
        *,
        context: InterpretationContext,
        image: Optional[ImageInput] = None,
        request_id: Optional[str] = None,
    ) -> ActionPlan:
        raise NotImplementedError


class FactExtractor:
    """Derives durable facts about the user from one exchange."""

    def extract(self, message: str, reply: str, *, request_id: Optional[str] = None) -> List[FactCandidate]:
        raise NotImplementedError


class UnconfiguredInterpreter(IntentInterpreter):
    def interpret(
        self,
        message: str,
        *,
        context: InterpretationContext,
        image: Optional[ImageInput] = None,
        request_id: Optional[str] = None,
    ) -> ActionPlan:
        raise InterpreterUnavailableError("AI chat is not configured on this server.")


class NoopFactExtractor(FactExtractor):
    def extract(self, message: str, reply: str, *, request_id: Optional[str] = None) -> List[FactCandidate]:
        return []
