"""Bulk habit create/delete routes."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id
from app.api.schemas.bulk import (
    BulkCreateRequest,
    BulkCreateResponse,
    BulkCreateResult,
    BulkDeleteRequest,
    BulkDeleteResponse,
    BulkDeleteResult,
)
from app.db.deps import get_db
from app.observability.tracing import trace
from app.services.bulk_operations import STATUS_SUCCESS, bulk_create_habits, bulk_delete_habits
from app.services.user_service import get_or_create_user, user_today

router = APIRouter()


@router.post("/habits/bulk", response_model=BulkCreateResponse, tags=["habits"])
def bulk_create(
    payload: BulkCreateRequest,
    http_request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> BulkCreateResponse:
    """Create up to 100 habits (with nested sub-habits); each item succeeds or fails alone."""
    request_id = getattr(http_request.state, "request_id", None)
    today = user_today(get_or_create_user(db, user_id))
    metadata: Dict[str, Any] = {"route": "/habits/bulk", "item_count": len(payload.habits)}
    with trace("habit.bulk_create", metadata=metadata, user_id=str(user_id), request_id=request_id):
        results = bulk_create_habits(db, user_id=user_id, items=payload.habits, today=today)

    created = sum(1 for result in results if result.status == STATUS_SUCCESS)
    return BulkCreateResponse(
        results=[BulkCreateResult(**asdict(result)) for result in results],
        created=created,
        failed=len(results) - created,
        request_id=request_id or "",
    )


@router.post("/habits/bulk-delete", response_model=BulkDeleteResponse, tags=["habits"])
def bulk_delete(
    payload: BulkDeleteRequest,
    http_request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> BulkDeleteResponse:
    """Permanently delete habits; sub-habits and logs go with them."""
    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {"route": "/habits/bulk-delete", "item_count": len(payload.habit_ids)}
    with trace("habit.bulk_delete", metadata=metadata, user_id=str(user_id), request_id=request_id):
        results = bulk_delete_habits(db, user_id=user_id, habit_ids=payload.habit_ids)

    deleted = sum(1 for result in results if result.status == STATUS_SUCCESS)
    return BulkDeleteResponse(
        results=[BulkDeleteResult(**asdict(result)) for result in results],
        deleted=deleted,
        failed=len(results) - deleted,
        request_id=request_id or "",
    )
