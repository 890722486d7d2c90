"""Tag management and lenient tag resolution."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy import asc
from sqlalchemy.orm import Session

from app.api.schemas.tag import TagResponse
from app.db.models.habit import Habit
from app.db.models.tag import Tag
from app.services.errors import HabitValidationError, NotFoundError

HEX_COLOR_RE = re.compile(r"^#?([0-9A-Fa-f]{6})$")
MAX_TAG_NAME_LENGTH = 50


def normalize_color(color: Optional[str]) -> str:
    match = HEX_COLOR_RE.match((color or "").strip())
    if not match:
        raise HabitValidationError("Color must be a hex value like #RRGGBB.", field="color")
    return f"#{match.group(1).upper()}"


def list_tags(db: Session, user_id: UUID) -> List[Tag]:
    return db.query(Tag).filter(Tag.user_id == user_id).order_by(asc(Tag.name)).all()


def create_tag(db: Session, *, user_id: UUID, name: str, color: str) -> Tag:
    cleaned = (name or "").strip()
    if not cleaned:
        raise HabitValidationError("Tag name is required.", field="name")
    if len(cleaned) > MAX_TAG_NAME_LENGTH:
        raise HabitValidationError(
            f"Tag name must not exceed {MAX_TAG_NAME_LENGTH} characters.", field="name"
        )
    normalized_color = normalize_color(color)
    if any(tag.name.lower() == cleaned.lower() for tag in list_tags(db, user_id)):
        raise HabitValidationError(f"A tag named '{cleaned}' already exists.", field="name")

    tag = Tag(
        id=uuid4(),
        user_id=user_id,
        name=cleaned,
        color=normalized_color,
        created_at=datetime.now(timezone.utc),
    )
    db.add(tag)
    return tag


def get_owned_tag(db: Session, user_id: UUID, tag_id: UUID) -> Tag:
    tag = db.get(Tag, tag_id)
    if tag is None or tag.user_id != user_id:
        raise NotFoundError("Tag not found.")
    return tag


def resolve_tag_references(
    available: Sequence[Tag],
    *,
    tag_ids: Optional[Iterable[UUID]] = None,
    tag_names: Optional[Iterable[str]] = None,
) -> List[Tag]:
    """Match ids and names against the user's tags; anything unknown is skipped."""
    by_id = {tag.id: tag for tag in available}
    by_name = {tag.name.lower(): tag for tag in available}
    resolved: List[Tag] = []
    for tag_id in tag_ids or []:
        tag = by_id.get(tag_id)
        if tag is not None and tag not in resolved:
            resolved.append(tag)
    for name in tag_names or []:
        tag = by_name.get((name or "").strip().lower())
        if tag is not None and tag not in resolved:
            resolved.append(tag)
    return resolved


def assign_tags(habit: Habit, tags: Iterable[Tag]) -> int:
    """Attach tags not already on the habit; returns how many were added."""
    added = 0
    for tag in tags:
        if tag not in habit.tags:
            habit.tags.append(tag)
            added += 1
    return added


def unassign_tag(habit: Habit, tag: Tag) -> bool:
    if tag not in habit.tags:
        return False
    habit.tags.remove(tag)
    return True


def serialize_tag(tag: Tag) -> TagResponse:
    return TagResponse(id=tag.id, name=tag.name, color=tag.color, created_at=tag.created_at)
