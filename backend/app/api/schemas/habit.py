"""Schemas for habit CRUD, logging, metrics and trends."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.api.schemas.tag import TagSummary


class HabitCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    frequency_unit: Optional[str] = None
    frequency_quantity: Optional[int] = None
    weekdays: List[str] = Field(default_factory=list)
    is_bad_habit: bool = False
    due_date: Optional[date] = None
    unit: Optional[str] = None
    parent_habit_id: Optional[UUID] = None
    tag_ids: List[UUID] = Field(default_factory=list)


class HabitUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    frequency_unit: Optional[str] = None
    frequency_quantity: Optional[int] = None
    weekdays: Optional[List[str]] = None
    is_bad_habit: Optional[bool] = None
    due_date: Optional[date] = None
    unit: Optional[str] = None


class HabitResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str]
    frequency_unit: Optional[str]
    frequency_quantity: Optional[int]
    weekdays: List[str]
    is_bad_habit: bool
    unit: Optional[str]
    due_date: date
    is_completed: bool
    position: Optional[int]
    parent_habit_id: Optional[UUID]
    tags: List[TagSummary]
    children: List["HabitResponse"]
    created_at: datetime


class HabitLogRequest(BaseModel):
    logged_on: Optional[date] = Field(default=None, description="Defaults to today in the user's timezone")
    value: Optional[float] = None
    note: Optional[str] = Field(default=None, max_length=500)


class HabitLogSummary(BaseModel):
    id: UUID
    date: date
    value: Optional[float]
    note: Optional[str]
    created_at: datetime


class HabitLogResponse(BaseModel):
    habit_id: UUID
    log: HabitLogSummary
    due_date: date
    is_completed: bool
    request_id: str


class HabitMetricsResponse(BaseModel):
    habit_id: UUID
    current_streak: int
    longest_streak: int
    weekly_completion_rate: float
    monthly_completion_rate: float
    total_completions: int
    last_completed_date: Optional[date]


class TrendPointPayload(BaseModel):
    period: str
    average: float
    minimum: float
    maximum: float
    count: int


class HabitTrendResponse(BaseModel):
    habit_id: UUID
    unit: str
    weekly: List[TrendPointPayload]
    monthly: List[TrendPointPayload]


class HabitParentRequest(BaseModel):
    parent_id: Optional[UUID] = None


HabitResponse.model_rebuild()
