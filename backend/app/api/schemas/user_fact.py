"""Schemas for user fact management."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class UserFactCreateRequest(BaseModel):
    fact_text: str
    category: Optional[str] = None


class UserFactUpdateRequest(BaseModel):
    fact_text: str


class UserFactResponse(BaseModel):
    id: UUID
    fact_text: str
    category: Optional[str]
    extracted_at: datetime
    updated_at: Optional[datetime] = Field(default=None)
