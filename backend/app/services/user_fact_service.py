"""Durable user facts: screening factory, updates and soft deletion."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import asc
from sqlalchemy.orm import Session

from app.api.schemas.user_fact import UserFactResponse
from app.db.models.user_fact import UserFact
from app.services.errors import HabitValidationError, NotFoundError

MAX_FACT_LENGTH = 500
FACT_CATEGORIES = ("preference", "routine", "context")
# Phrases that read like instructions to the model rather than facts about the user.
INJECTION_MARKERS = ("ignore", "system:", "you must", "instruction:")


def normalize_category(category: Optional[str]) -> Optional[str]:
    cleaned = (category or "").strip().lower()
    return cleaned if cleaned in FACT_CATEGORIES else None


def screen_fact_text(fact_text: Optional[str]) -> str:
    cleaned = (fact_text or "").strip()
    if not cleaned:
        raise HabitValidationError("Fact text is required.", field="fact_text")
    if len(cleaned) > MAX_FACT_LENGTH:
        raise HabitValidationError(
            f"Fact text must not exceed {MAX_FACT_LENGTH} characters.", field="fact_text"
        )
    lowered = cleaned.lower()
    if any(marker in lowered for marker in INJECTION_MARKERS):
        raise HabitValidationError("Fact text contains disallowed content.", field="fact_text")
    return cleaned


def build_user_fact(*, user_id: UUID, fact_text: Optional[str], category: Optional[str] = None) -> UserFact:
    return UserFact(
        id=uuid4(),
        user_id=user_id,
        fact_text=screen_fact_text(fact_text),
        category=normalize_category(category),
        extracted_at=datetime.now(timezone.utc),
        is_deleted=False,
    )


def update_user_fact(fact: UserFact, fact_text: Optional[str]) -> UserFact:
    fact.fact_text = screen_fact_text(fact_text)
    fact.updated_at = datetime.now(timezone.utc)
    return fact


def soft_delete_user_fact(fact: UserFact) -> None:
    fact.is_deleted = True
    fact.deleted_at = datetime.now(timezone.utc)


def list_user_facts(db: Session, user_id: UUID) -> List[UserFact]:
    return (
        db.query(UserFact)
        .filter(UserFact.user_id == user_id)
        .order_by(asc(UserFact.extracted_at))
        .all()
    )


def get_owned_fact(db: Session, user_id: UUID, fact_id: UUID) -> UserFact:
    fact = db.get(UserFact, fact_id)
    if fact is None or fact.user_id != user_id or fact.is_deleted:
        raise NotFoundError("Fact not found.")
    return fact


def serialize_fact(fact: UserFact) -> UserFactResponse:
    return UserFactResponse(
        id=fact.id,
        fact_text=fact.fact_text,
        category=fact.category,
        extracted_at=fact.extracted_at,
        updated_at=fact.updated_at,
    )
