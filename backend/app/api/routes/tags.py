"""Tag management routes."""
from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id
from app.api.schemas.tag import TagCreateRequest, TagResponse
from app.db.deps import get_db
from app.services import tag_service
from app.services.user_service import get_or_create_user

router = APIRouter()


@router.get("/tags", response_model=List[TagResponse], tags=["tags"])
def list_tags(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> List[TagResponse]:
    return [tag_service.serialize_tag(tag) for tag in tag_service.list_tags(db, user_id)]


@router.post("/tags", response_model=TagResponse, status_code=status.HTTP_201_CREATED, tags=["tags"])
def create_tag(
    payload: TagCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> TagResponse:
    get_or_create_user(db, user_id)
    tag = tag_service.create_tag(db, user_id=user_id, name=payload.name, color=payload.color)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(tag)
    return tag_service.serialize_tag(tag)


@router.delete("/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["tags"])
def delete_tag(
    tag_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Response:
    """Delete a tag; habits keep existing, only the associations go."""
    tag = tag_service.get_owned_tag(db, user_id, tag_id)
    db.delete(tag)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
