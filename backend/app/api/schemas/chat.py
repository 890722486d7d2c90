"""Schemas for the chat endpoint."""
from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

ALLOWED_IMAGE_TYPES = ("image/png", "image/jpeg", "image/webp", "image/gif")


class ChatImage(BaseModel):
    data: str = Field(..., min_length=1, description="Base64-encoded image bytes")
    mime_type: str = "image/jpeg"


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    image: Optional[ChatImage] = None


class SuggestedSubHabitPayload(BaseModel):
    title: str
    description: Optional[str] = None
    frequency_unit: Optional[str] = None
    frequency_quantity: Optional[int] = None


class ActionResultPayload(BaseModel):
    type: str
    status: str
    entity_id: Optional[UUID] = None
    entity_name: Optional[str] = None
    error: Optional[str] = None
    field: Optional[str] = None
    suggested_sub_habits: Optional[List[SuggestedSubHabitPayload]] = None


class ChatResponse(BaseModel):
    ai_message: str
    actions: List[ActionResultPayload]
    request_id: str
