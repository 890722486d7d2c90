"""Schemas for bulk habit create/delete."""
from __future__ import annotations

from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

MAX_BULK_ITEMS = 100


class BulkHabitItem(BaseModel):
    """One habit to create; fields are loose so domain checks can report per item."""

    title: str = ""
    description: Optional[str] = None
    frequency_unit: Optional[str] = None
    frequency_quantity: Optional[int] = None
    weekdays: List[str] = Field(default_factory=list)
    is_bad_habit: bool = False
    due_date: Optional[date] = None
    unit: Optional[str] = None
    sub_habits: List["BulkHabitItem"] = Field(default_factory=list)


class BulkCreateRequest(BaseModel):
    habits: List[BulkHabitItem] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)


class BulkCreateResult(BaseModel):
    index: int
    status: str
    habit_id: Optional[UUID] = None
    title: Optional[str] = None
    error: Optional[str] = None
    field: Optional[str] = None


class BulkCreateResponse(BaseModel):
    results: List[BulkCreateResult]
    created: int
    failed: int
    request_id: str


class BulkDeleteRequest(BaseModel):
    habit_ids: List[UUID] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)


class BulkDeleteResult(BaseModel):
    index: int
    status: str
    habit_id: UUID
    error: Optional[str] = None


class BulkDeleteResponse(BaseModel):
    results: List[BulkDeleteResult]
    deleted: int
    failed: int
    request_id: str


BulkHabitItem.model_rebuild()
