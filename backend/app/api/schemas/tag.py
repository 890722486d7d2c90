"""Schemas for tag management."""
from __future__ import annotations

from datetime import datetime
from typing import List
from uuid import UUID

from pydantic import BaseModel, Field


class TagSummary(BaseModel):
    id: UUID
    name: str
    color: str


class TagCreateRequest(BaseModel):
    name: str = Field(..., max_length=50)
    color: str = Field(..., description="Hex color, e.g. #3FA7D6")


class TagResponse(TagSummary):
    created_at: datetime


class TagAssignRequest(BaseModel):
    tag_ids: List[UUID] = Field(default_factory=list)
