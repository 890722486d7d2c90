"""Habit CRUD, logging, metrics and trend routes."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id
from app.api.schemas.habit import (
    HabitCreateRequest,
    HabitLogRequest,
    HabitLogResponse,
    HabitLogSummary,
    HabitMetricsResponse,
    HabitParentRequest,
    HabitResponse,
    HabitTrendResponse,
    HabitUpdateRequest,
    TrendPointPayload,
)
from app.api.schemas.tag import TagAssignRequest
from app.db.deps import get_db
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services import habit_service, tag_service
from app.services.user_service import get_or_create_user, user_today

router = APIRouter()


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


@router.get("/habits", response_model=List[HabitResponse], tags=["habits"])
def list_habits(
    tag_id: Optional[List[UUID]] = Query(default=None, description="Only habits carrying one of these tags"),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> List[HabitResponse]:
    """List top-level active habits with their sub-habits nested."""
    habits = habit_service.list_active_habits(db, user_id, tag_ids=tag_id)
    if tag_id:
        return [habit_service.serialize_habit(habit) for habit in habits]
    return [habit_service.serialize_habit(habit) for habit in habits if habit.parent_habit_id is None]


@router.post("/habits", response_model=HabitResponse, status_code=status.HTTP_201_CREATED, tags=["habits"])
def create_habit(
    payload: HabitCreateRequest,
    http_request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitResponse:
    request_id = getattr(http_request.state, "request_id", None)
    user = get_or_create_user(db, user_id)
    if payload.parent_habit_id is not None:
        habit_service.get_owned_habit(db, user_id, payload.parent_habit_id, message="Parent habit not found.")

    with trace("habit.create", metadata={"route": "/habits"}, user_id=str(user_id), request_id=request_id):
        habit = habit_service.build_habit(
            user_id=user_id,
            title=payload.title,
            today=user_today(user),
            description=payload.description,
            frequency_unit=payload.frequency_unit,
            frequency_quantity=payload.frequency_quantity,
            weekdays=payload.weekdays,
            is_bad_habit=payload.is_bad_habit,
            due_date=payload.due_date,
            unit=payload.unit,
            parent_habit_id=payload.parent_habit_id,
        )
        db.add(habit)
        if payload.tag_ids:
            tags = tag_service.resolve_tag_references(tag_service.list_tags(db, user_id), tag_ids=payload.tag_ids)
            tag_service.assign_tags(habit, tags)
        _commit(db)
        db.refresh(habit)

    log_metric("habit.create.success", 1, metadata={"user_id": str(user_id)})
    return habit_service.serialize_habit(habit)


@router.get("/habits/{habit_id}", response_model=HabitResponse, tags=["habits"])
def get_habit(
    habit_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitResponse:
    return habit_service.serialize_habit(habit_service.get_owned_habit(db, user_id, habit_id))


@router.patch("/habits/{habit_id}", response_model=HabitResponse, tags=["habits"])
def update_habit(
    habit_id: UUID,
    payload: HabitUpdateRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitResponse:
    habit = habit_service.get_owned_habit(db, user_id, habit_id)
    habit_service.update_habit(habit, payload.model_dump(exclude_unset=True))
    _commit(db)
    db.refresh(habit)
    return habit_service.serialize_habit(habit)


@router.delete("/habits/{habit_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["habits"])
def delete_habit(
    habit_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Response:
    """Soft delete: the habit and its sub-habits are deactivated, history is kept."""
    habit = habit_service.get_owned_habit(db, user_id, habit_id)
    habit_service.deactivate_habit(habit)
    _commit(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/habits/{habit_id}/log", response_model=HabitLogResponse, tags=["habits"])
def log_habit(
    habit_id: UUID,
    payload: HabitLogRequest,
    http_request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitLogResponse:
    request_id = getattr(http_request.state, "request_id", None)
    user = get_or_create_user(db, user_id)
    habit = habit_service.get_owned_habit(db, user_id, habit_id)
    log_date = payload.logged_on or user_today(user)

    metadata: Dict[str, Any] = {
        "route": f"/habits/{habit_id}/log",
        "habit_id": str(habit_id),
        "is_bad_habit": habit.is_bad_habit,
    }
    start_time = datetime.now(timezone.utc)
    with trace("habit.log", metadata=metadata, user_id=str(user_id), request_id=request_id):
        log = habit_service.log_habit(habit, log_date=log_date, value=payload.value, note=payload.note)
        _commit(db)

    latency_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    log_metric("habit.log.success", 1, metadata={"user_id": str(user_id), "habit_id": str(habit_id)})
    log_metric("habit.log.latency_ms", latency_ms, metadata={"habit_id": str(habit_id)})
    return HabitLogResponse(
        habit_id=habit.id,
        log=habit_service.serialize_log(log),
        due_date=habit.due_date,
        is_completed=habit.is_completed,
        request_id=request_id or "",
    )


@router.get("/habits/{habit_id}/logs", response_model=List[HabitLogSummary], tags=["habits"])
def list_habit_logs(
    habit_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> List[HabitLogSummary]:
    habit = habit_service.get_owned_habit(db, user_id, habit_id)
    return [habit_service.serialize_log(log) for log in sorted(habit.logs, key=lambda log: log.date, reverse=True)]


@router.get("/habits/{habit_id}/metrics", response_model=HabitMetricsResponse, tags=["habits"])
def habit_metrics(
    habit_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitMetricsResponse:
    user = get_or_create_user(db, user_id)
    habit = habit_service.get_owned_habit(db, user_id, habit_id)
    metrics = habit_service.habit_metrics(habit, user, user_today(user))
    return HabitMetricsResponse(
        habit_id=habit.id,
        current_streak=metrics.current_streak,
        longest_streak=metrics.longest_streak,
        weekly_completion_rate=metrics.weekly_completion_rate,
        monthly_completion_rate=metrics.monthly_completion_rate,
        total_completions=metrics.total_completions,
        last_completed_date=metrics.last_completed_date,
    )


@router.get("/habits/{habit_id}/trends", response_model=HabitTrendResponse, tags=["habits"])
def habit_trends(
    habit_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitTrendResponse:
    user = get_or_create_user(db, user_id)
    habit = habit_service.get_owned_habit(db, user_id, habit_id)
    trend = habit_service.habit_trend(habit, user_today(user))
    return HabitTrendResponse(
        habit_id=habit.id,
        unit=habit.unit,
        weekly=[TrendPointPayload(**vars(point)) for point in trend.weekly],
        monthly=[TrendPointPayload(**vars(point)) for point in trend.monthly],
    )


@router.put("/habits/{habit_id}/parent", response_model=HabitResponse, tags=["habits"])
def move_habit(
    habit_id: UUID,
    payload: HabitParentRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitResponse:
    habit = habit_service.move_habit_parent(db, user_id=user_id, habit_id=habit_id, parent_id=payload.parent_id)
    _commit(db)
    db.refresh(habit)
    return habit_service.serialize_habit(habit)


@router.post("/habits/{habit_id}/tags", response_model=HabitResponse, tags=["habits"])
def assign_habit_tags(
    habit_id: UUID,
    payload: TagAssignRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitResponse:
    """Attach tags by id; unknown or foreign tag ids are ignored."""
    habit = habit_service.get_owned_habit(db, user_id, habit_id)
    tags = tag_service.resolve_tag_references(tag_service.list_tags(db, user_id), tag_ids=payload.tag_ids)
    tag_service.assign_tags(habit, tags)
    _commit(db)
    db.refresh(habit)
    return habit_service.serialize_habit(habit)


@router.delete("/habits/{habit_id}/tags/{tag_id}", response_model=HabitResponse, tags=["habits"])
def unassign_habit_tag(
    habit_id: UUID,
    tag_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> HabitResponse:
    habit = habit_service.get_owned_habit(db, user_id, habit_id)
    tag = tag_service.get_owned_tag(db, user_id, tag_id)
    tag_service.unassign_tag(habit, tag)
    _commit(db)
    db.refresh(habit)
    return habit_service.serialize_habit(habit)
