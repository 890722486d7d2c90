"""Schemas for the profile endpoints."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ProfileResponse(BaseModel):
    user_id: UUID
    timezone: Optional[str]
    today: date
    created_at: datetime


class TimezoneUpdateRequest(BaseModel):
    timezone: str
