"""Batch habit creation and deletion with per-item partial success."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.schemas.bulk import BulkHabitItem
from app.db.models.habit import Habit
from app.observability.metrics import log_metric
from app.services.errors import HabitValidationError
from app.services.habit_service import build_habit
from app.services.user_service import get_or_create_user

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
COMMIT_FAILED_MESSAGE = "Changes could not be saved."
NOT_FOUND_MESSAGE = "Habit not found"
DUPLICATE_MESSAGE = "Habit listed more than once in this request"
UNEXPECTED_DELETE_MESSAGE = "Unexpected error while deleting this habit."
SUB_HABITS_FIELD = "sub_habits"


@dataclass
class BulkCreateItemResult:
    index: int
    status: str
    habit_id: Optional[UUID] = None
    title: Optional[str] = None
    error: Optional[str] = None
    field: Optional[str] = None


@dataclass
class BulkDeleteItemResult:
    index: int
    status: str
    habit_id: UUID
    error: Optional[str] = None


def _build_tree(
    user_id: UUID,
    item: BulkHabitItem,
    today: date,
    *,
    parent: Optional[Habit] = None,
    position: Optional[int] = None,
) -> Habit:
    """Build a habit and all of its descendants without touching the session."""
    habit = build_habit(
        user_id=user_id,
        title=item.title,
        today=today,
        description=item.description,
        frequency_unit=item.frequency_unit,
        frequency_quantity=item.frequency_quantity,
        weekdays=item.weekdays,
        is_bad_habit=item.is_bad_habit,
        due_date=item.due_date,
        unit=item.unit,
        parent_habit_id=parent.id if parent is not None else None,
        position=position,
    )
    for child_position, child_item in enumerate(item.sub_habits):
        try:
            child = _build_tree(user_id, child_item, today, parent=habit, position=child_position)
        except HabitValidationError as exc:
            if exc.field == SUB_HABITS_FIELD:
                raise
            raise HabitValidationError(
                f"Sub-habit '{child_item.title}' failed: {exc.message}", field=SUB_HABITS_FIELD
            ) from exc
        habit.children.append(child)
    return habit


def bulk_create_habits(
    db: Session,
    *,
    user_id: UUID,
    items: Sequence[BulkHabitItem],
    today: date,
) -> List[BulkCreateItemResult]:
    """Create every item whose whole subtree validates; one commit for the batch."""
    get_or_create_user(db, user_id)
    results: List[BulkCreateItemResult] = []
    for index, item in enumerate(items):
        try:
            root = _build_tree(user_id, item, today)
        except HabitValidationError as exc:
            results.append(
                BulkCreateItemResult(
                    index=index,
                    status=STATUS_FAILED,
                    title=item.title or None,
                    error=exc.message,
                    field=exc.field,
                )
            )
            continue
        except Exception:
            logger.exception("Unexpected failure building bulk item %d", index)
            results.append(
                BulkCreateItemResult(
                    index=index,
                    status=STATUS_FAILED,
                    title=item.title or None,
                    error="Unexpected error while creating this habit.",
                )
            )
            continue
        db.add(root)
        results.append(BulkCreateItemResult(index=index, status=STATUS_SUCCESS, habit_id=root.id, title=root.title))

    if any(result.status == STATUS_SUCCESS for result in results):
        try:
            db.commit()
        except SQLAlchemyError:
            logger.exception("Commit failed for bulk create")
            db.rollback()
            results = [
                BulkCreateItemResult(
                    index=result.index,
                    status=STATUS_FAILED,
                    title=result.title,
                    error=COMMIT_FAILED_MESSAGE,
                )
                if result.status == STATUS_SUCCESS
                else result
                for result in results
            ]
    else:
        db.commit()

    created = sum(1 for result in results if result.status == STATUS_SUCCESS)
    log_metric("habits.bulk_create.created", created, {"user_id": str(user_id), "requested": len(items)})
    return results


def bulk_delete_habits(db: Session, *, user_id: UUID, habit_ids: Sequence[UUID]) -> List[BulkDeleteItemResult]:
    """Hard-delete each owned habit (children and logs cascade); one commit for the batch."""
    results: List[BulkDeleteItemResult] = []
    seen = set()
    for index, habit_id in enumerate(habit_ids):
        if habit_id in seen:
            results.append(
                BulkDeleteItemResult(index=index, status=STATUS_FAILED, habit_id=habit_id, error=DUPLICATE_MESSAGE)
            )
            continue
        seen.add(habit_id)

        try:
            habit = db.get(Habit, habit_id)
            if habit is None or habit.user_id != user_id:
                results.append(
                    BulkDeleteItemResult(index=index, status=STATUS_FAILED, habit_id=habit_id, error=NOT_FOUND_MESSAGE)
                )
                continue
            db.delete(habit)
        except Exception:
            logger.exception("Unexpected failure deleting bulk item %d", index)
            results.append(
                BulkDeleteItemResult(
                    index=index,
                    status=STATUS_FAILED,
                    habit_id=habit_id,
                    error=UNEXPECTED_DELETE_MESSAGE,
                )
            )
            continue
        results.append(BulkDeleteItemResult(index=index, status=STATUS_SUCCESS, habit_id=habit_id))

    if any(result.status == STATUS_SUCCESS for result in results):
        try:
            db.commit()
        except SQLAlchemyError:
            logger.exception("Commit failed for bulk delete")
            db.rollback()
            results = [
                BulkDeleteItemResult(
                    index=result.index,
                    status=STATUS_FAILED,
                    habit_id=result.habit_id,
                    error=COMMIT_FAILED_MESSAGE,
                )
                if result.status == STATUS_SUCCESS
                else result
                for result in results
            ]

    deleted = sum(1 for result in results if result.status == STATUS_SUCCESS)
    log_metric("habits.bulk_delete.deleted", deleted, {"user_id": str(user_id), "requested": len(habit_ids)})
    return results
