"""Profile routes (timezone drives every "today" calculation)."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id
from app.api.schemas.profile import ProfileResponse, TimezoneUpdateRequest
from app.db.deps import get_db
from app.db.models.user import User
from app.services.user_service import get_or_create_user, set_timezone, user_today

router = APIRouter()


def _serialize_profile(user: User) -> ProfileResponse:
    return ProfileResponse(
        user_id=user.id,
        timezone=user.timezone,
        today=user_today(user),
        created_at=user.created_at,
    )


@router.get("/profile", response_model=ProfileResponse, tags=["profile"])
def get_profile(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    user = get_or_create_user(db, user_id)
    db.commit()
    db.refresh(user)
    return _serialize_profile(user)


@router.put("/profile/timezone", response_model=ProfileResponse, tags=["profile"])
def update_timezone(
    payload: TimezoneUpdateRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    user = get_or_create_user(db, user_id)
    set_timezone(user, payload.timezone)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    return _serialize_profile(user)
