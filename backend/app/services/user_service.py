"""Helpers for working with users."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models.user import User
from app.services.errors import HabitValidationError
from app.services.habit_scheduling import local_today


def get_or_create_user(db: Session, user_id: UUID) -> User:
    """Fetch an existing user or create a new row safely."""
    user = db.get(User, user_id)
    if user:
        return user

    user = User(id=user_id)
    db.add(user)
    try:
        db.flush()
        return user
    except IntegrityError:
        db.rollback()
        existing = db.get(User, user_id)
        if existing:
            return existing
        raise


def user_today(user: Optional[User], now: Optional[datetime] = None) -> date:
    """Today's calendar date in the user's timezone (UTC when unset)."""
    return local_today(user.timezone if user else None, now)


def set_timezone(user: User, timezone_name: str) -> None:
    cleaned = (timezone_name or "").strip()
    if not cleaned or len(cleaned) > 100:
        raise HabitValidationError("Timezone is required.", field="timezone")
    try:
        ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise HabitValidationError(f"Unknown timezone '{cleaned}'.", field="timezone") from exc
    user.timezone = cleaned
