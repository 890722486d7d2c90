"""User fact management routes."""
from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id
from app.api.schemas.user_fact import UserFactCreateRequest, UserFactResponse, UserFactUpdateRequest
from app.db.deps import get_db
from app.services import user_fact_service
from app.services.errors import HabitValidationError
from app.services.user_service import get_or_create_user

router = APIRouter()


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


@router.get("/user-facts", response_model=List[UserFactResponse], tags=["user-facts"])
def list_facts(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> List[UserFactResponse]:
    return [user_fact_service.serialize_fact(fact) for fact in user_fact_service.list_user_facts(db, user_id)]


@router.post("/user-facts", response_model=UserFactResponse, status_code=status.HTTP_201_CREATED, tags=["user-facts"])
def create_fact(
    payload: UserFactCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> UserFactResponse:
    get_or_create_user(db, user_id)
    fact = user_fact_service.build_user_fact(user_id=user_id, fact_text=payload.fact_text, category=payload.category)
    existing = {item.fact_text.lower() for item in user_fact_service.list_user_facts(db, user_id)}
    if fact.fact_text.lower() in existing:
        raise HabitValidationError("This fact is already stored.", field="fact_text")
    db.add(fact)
    _commit(db)
    db.refresh(fact)
    return user_fact_service.serialize_fact(fact)


@router.put("/user-facts/{fact_id}", response_model=UserFactResponse, tags=["user-facts"])
def update_fact(
    fact_id: UUID,
    payload: UserFactUpdateRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> UserFactResponse:
    fact = user_fact_service.get_owned_fact(db, user_id, fact_id)
    user_fact_service.update_user_fact(fact, payload.fact_text)
    _commit(db)
    db.refresh(fact)
    return user_fact_service.serialize_fact(fact)


@router.delete("/user-facts/{fact_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["user-facts"])
def delete_fact(
    fact_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Response:
    fact = user_fact_service.get_owned_fact(db, user_id, fact_id)
    user_fact_service.soft_delete_user_fact(fact)
    _commit(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
