"""Habit lifecycle: validating factory, updates, logging, re-parenting and metrics."""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy import asc, nulls_last
from sqlalchemy.orm import Session, selectinload

from app.api.schemas.habit import HabitLogSummary, HabitResponse
from app.api.schemas.tag import TagSummary
from app.db.models.habit import Habit
from app.db.models.habit_log import HabitLog
from app.db.models.user import User
from app.services import habit_scheduling as scheduling
from app.services.errors import HabitValidationError, NotFoundError

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_UNIT_LENGTH = 50
MAX_NOTE_LENGTH = 500

FREQUENCY_ALIASES = {
    "daily": "day",
    "days": "day",
    "weekly": "week",
    "weeks": "week",
    "monthly": "month",
    "months": "month",
    "yearly": "year",
    "annually": "year",
    "years": "year",
}


def normalize_title(title: Optional[str], *, field: str = "title") -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise HabitValidationError("Title is required.", field=field)
    if len(cleaned) > MAX_TITLE_LENGTH:
        raise HabitValidationError(f"Title must not exceed {MAX_TITLE_LENGTH} characters.", field=field)
    return cleaned


def normalize_frequency(
    frequency_unit: Optional[str],
    frequency_quantity: Optional[int],
) -> Tuple[Optional[str], Optional[int]]:
    """Return a canonical (unit, quantity) pair; (None, None) means a one-time habit."""
    if frequency_unit is None and frequency_quantity is None:
        return None, None
    if frequency_unit is None or not str(frequency_unit).strip():
        raise HabitValidationError(
            "Frequency unit is required when a frequency quantity is given.",
            field="frequency_unit",
        )
    unit = str(frequency_unit).strip().lower()
    unit = FREQUENCY_ALIASES.get(unit, unit)
    if unit not in scheduling.FREQUENCY_UNITS:
        raise HabitValidationError(
            f"Unknown frequency unit '{frequency_unit}'. Use one of: day, week, month, year.",
            field="frequency_unit",
        )
    quantity = 1 if frequency_quantity is None else frequency_quantity
    if quantity < 1:
        raise HabitValidationError("Frequency quantity must be greater than 0.", field="frequency_quantity")
    return unit, quantity


def normalize_weekdays(
    weekdays: Optional[Iterable[str]],
    frequency_unit: Optional[str],
    frequency_quantity: Optional[int],
) -> List[str]:
    if not weekdays:
        return []
    indexes = set()
    for raw in weekdays:
        name = (raw or "").strip().lower()
        match = next((day for day in scheduling.WEEKDAY_NAMES if len(name) >= 3 and day.startswith(name)), None)
        if match is None:
            raise HabitValidationError(f"Unknown weekday '{raw}'.", field="weekdays")
        indexes.add(scheduling.WEEKDAY_NAMES.index(match))
    if frequency_unit is None:
        raise HabitValidationError("Weekdays can only be set on recurring habits.", field="weekdays")
    if frequency_quantity != 1:
        raise HabitValidationError(
            "Weekdays can only be specified when frequency quantity is 1.",
            field="weekdays",
        )
    return [scheduling.WEEKDAY_NAMES[index] for index in sorted(indexes)]


def _clean_optional(value: Optional[str], *, limit: Optional[int] = None, field: str) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if limit is not None and len(cleaned) > limit:
        raise HabitValidationError(f"{field.replace('_', ' ').capitalize()} must not exceed {limit} characters.", field=field)
    return cleaned


def build_habit(
    *,
    user_id: UUID,
    title: Optional[str],
    today: date,
    description: Optional[str] = None,
    frequency_unit: Optional[str] = None,
    frequency_quantity: Optional[int] = None,
    weekdays: Optional[Sequence[str]] = None,
    is_bad_habit: bool = False,
    due_date: Optional[date] = None,
    unit: Optional[str] = None,
    parent_habit_id: Optional[UUID] = None,
    position: Optional[int] = None,
) -> Habit:
    """Validate inputs and return a new, not yet persisted Habit.

    Raises HabitValidationError (with a field name) on any rule violation. The id and
    timestamps are assigned eagerly so callers can reference the habit before flush.
    """
    clean_title = normalize_title(title)
    freq_unit, freq_quantity = normalize_frequency(frequency_unit, frequency_quantity)
    clean_weekdays = normalize_weekdays(weekdays, freq_unit, freq_quantity)
    now = datetime.now(timezone.utc)
    return Habit(
        id=uuid4(),
        user_id=user_id,
        parent_habit_id=parent_habit_id,
        title=clean_title,
        description=_clean_optional(description, field="description"),
        frequency_unit=freq_unit,
        frequency_quantity=freq_quantity,
        weekdays=clean_weekdays,
        is_bad_habit=bool(is_bad_habit),
        unit=_clean_optional(unit, limit=MAX_UNIT_LENGTH, field="unit"),
        due_date=due_date or today,
        is_completed=False,
        is_active=True,
        position=position,
        created_at=now,
        updated_at=now,
    )


def update_habit(habit: Habit, changes: Dict[str, Any]) -> Habit:
    """Apply a partial update; everything is validated before the habit changes."""
    updates: Dict[str, Any] = {}
    if "title" in changes:
        updates["title"] = normalize_title(changes["title"])
    if "description" in changes:
        updates["description"] = _clean_optional(changes["description"], field="description")
    if "unit" in changes:
        updates["unit"] = _clean_optional(changes["unit"], limit=MAX_UNIT_LENGTH, field="unit")
    if changes.get("is_bad_habit") is not None:
        updates["is_bad_habit"] = bool(changes["is_bad_habit"])
    if changes.get("due_date") is not None:
        updates["due_date"] = changes["due_date"]

    if {"frequency_unit", "frequency_quantity", "weekdays"} & changes.keys():
        unit = changes["frequency_unit"] if "frequency_unit" in changes else habit.frequency_unit
        quantity = changes["frequency_quantity"] if "frequency_quantity" in changes else habit.frequency_quantity
        weekdays = changes["weekdays"] if "weekdays" in changes else habit.weekdays
        freq_unit, freq_quantity = normalize_frequency(unit, quantity)
        updates["weekdays"] = normalize_weekdays(weekdays, freq_unit, freq_quantity)
        updates["frequency_unit"] = freq_unit
        updates["frequency_quantity"] = freq_quantity

    for name, value in updates.items():
        setattr(habit, name, value)
    habit.updated_at = datetime.now(timezone.utc)
    return habit


def log_habit(
    habit: Habit,
    *,
    log_date: date,
    value: Optional[float] = None,
    note: Optional[str] = None,
) -> HabitLog:
    """Append a completion (or a lapse, for bad habits) and advance the schedule."""
    if not habit.is_active:
        raise HabitValidationError("Cannot log an inactive habit.")
    if not habit.is_recurring and habit.is_completed:
        raise HabitValidationError("This habit is already completed.")
    if habit.is_quantifiable and value is None:
        raise HabitValidationError("A value is required for quantifiable habits.", field="value")
    # Bad habits record every lapse, so repeated same-day logs are allowed for them.
    if not habit.is_bad_habit and any(existing.date == log_date for existing in habit.logs):
        raise HabitValidationError("This habit has already been logged for this date.")

    log = HabitLog(
        id=uuid4(),
        habit_id=habit.id,
        date=log_date,
        value=value,
        note=_clean_optional(note, limit=MAX_NOTE_LENGTH, field="note"),
        created_at=datetime.now(timezone.utc),
    )
    habit.logs.append(log)

    if not habit.is_bad_habit:
        if habit.is_recurring:
            habit.due_date = scheduling.next_due_date(
                frequency_unit=habit.frequency_unit,
                frequency_quantity=habit.frequency_quantity,
                weekdays=habit.weekdays,
                due_date=habit.due_date,
                logged_on=log_date,
            )
        else:
            habit.is_completed = True
    habit.updated_at = datetime.now(timezone.utc)
    return log


def get_owned_habit(db: Session, user_id: UUID, habit_id: UUID, *, message: str = "Habit not found.") -> Habit:
    """Fetch an active habit owned by the user; missing and foreign look the same."""
    habit = db.get(Habit, habit_id)
    if habit is None or habit.user_id != user_id or not habit.is_active:
        raise NotFoundError(message)
    return habit


def list_active_habits(db: Session, user_id: UUID, tag_ids: Optional[Sequence[UUID]] = None) -> List[Habit]:
    query = (
        db.query(Habit)
        .options(selectinload(Habit.tags), selectinload(Habit.children))
        .filter(Habit.user_id == user_id, Habit.is_active.is_(True))
    )
    habits = query.order_by(nulls_last(asc(Habit.position)), asc(Habit.created_at)).all()
    if tag_ids:
        wanted = set(tag_ids)
        habits = [habit for habit in habits if wanted.intersection(tag.id for tag in habit.tags)]
    return habits


def move_habit_parent(db: Session, *, user_id: UUID, habit_id: UUID, parent_id: Optional[UUID]) -> Habit:
    habit = get_owned_habit(db, user_id, habit_id)
    if parent_id is None:
        habit.parent_habit_id = None
        return habit
    if parent_id == habit_id:
        raise HabitValidationError("A habit cannot be its own parent.", field="parent_id")

    parent = get_owned_habit(db, user_id, parent_id, message="Target parent habit not found.")
    if _would_create_cycle(db, habit_id=habit_id, target_parent=parent):
        raise HabitValidationError("Cannot move a habit under its own descendant.", field="parent_id")
    habit.parent_habit_id = parent_id
    habit.updated_at = datetime.now(timezone.utc)
    return habit


def _would_create_cycle(db: Session, *, habit_id: UUID, target_parent: Habit) -> bool:
    seen = {target_parent.id}
    current = target_parent
    while current.parent_habit_id is not None:
        if current.parent_habit_id == habit_id:
            return True
        if current.parent_habit_id in seen:
            logger.warning("Existing parent cycle detected at habit %s", current.id)
            return True
        seen.add(current.parent_habit_id)
        current = db.get(Habit, current.parent_habit_id)
        if current is None:
            return False
    return False


def deactivate_habit(habit: Habit) -> None:
    """Soft-remove a habit together with its sub-habits."""
    habit.is_active = False
    habit.updated_at = datetime.now(timezone.utc)
    for child in habit.children:
        deactivate_habit(child)


def habit_metrics(habit: Habit, user: Optional[User], today: date) -> scheduling.HabitMetrics:
    timezone_name = user.timezone if user else None
    return scheduling.compute_metrics(
        frequency_unit=habit.frequency_unit,
        frequency_quantity=habit.frequency_quantity,
        weekdays=habit.weekdays,
        is_bad_habit=habit.is_bad_habit,
        start=scheduling.local_date_of(habit.created_at, timezone_name),
        today=today,
        log_dates=(log.date for log in habit.logs),
    )


def habit_trend(habit: Habit, today: date) -> scheduling.HabitTrend:
    if not habit.is_quantifiable:
        raise HabitValidationError("Trends are only available for quantifiable habits.", field="unit")
    return scheduling.compute_trend(((log.date, log.value) for log in habit.logs), today)


def serialize_habit(habit: Habit, *, include_children: bool = True) -> HabitResponse:
    children = [child for child in habit.children if child.is_active] if include_children else []
    return HabitResponse(
        id=habit.id,
        title=habit.title,
        description=habit.description,
        frequency_unit=habit.frequency_unit,
        frequency_quantity=habit.frequency_quantity,
        weekdays=list(habit.weekdays or []),
        is_bad_habit=habit.is_bad_habit,
        unit=habit.unit,
        due_date=habit.due_date,
        is_completed=habit.is_completed,
        position=habit.position,
        parent_habit_id=habit.parent_habit_id,
        tags=[TagSummary(id=tag.id, name=tag.name, color=tag.color) for tag in habit.tags],
        children=[serialize_habit(child) for child in children],
        created_at=habit.created_at,
    )


def serialize_log(log: HabitLog) -> HabitLogSummary:
    return HabitLogSummary(id=log.id, date=log.date, value=log.value, note=log.note, created_at=log.created_at)
