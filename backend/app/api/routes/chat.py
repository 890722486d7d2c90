"""Chat endpoint: interpret a message, execute its actions, extract facts afterwards."""
from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from app.api.cancellation import run_cancellable
from app.api.deps import get_current_user_id
from app.api.schemas.chat import (
    ALLOWED_IMAGE_TYPES,
    ActionResultPayload,
    ChatImage,
    ChatRequest,
    ChatResponse,
    SuggestedSubHabitPayload,
)
from app.core.config import settings
from app.db.deps import get_db, get_session_factory
from app.observability.metrics import log_metric
from app.services.ai.base import FactExtractor, ImageInput, IntentInterpreter
from app.services.ai.factory import get_fact_extractor, get_intent_interpreter
from app.services.chat_executor import ActionResult, execute_chat_turn
from app.services.errors import HabitValidationError
from app.services.fact_extraction import run_fact_extraction

router = APIRouter()


def _decode_image(image: Optional[ChatImage]) -> Optional[ImageInput]:
    if image is None:
        return None
    mime_type = image.mime_type.strip().lower()
    if mime_type not in ALLOWED_IMAGE_TYPES:
        raise HabitValidationError(f"Unsupported image type '{image.mime_type}'.", field="image")
    data = image.data
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HabitValidationError("Image data is not valid base64.", field="image") from exc
    if not raw:
        raise HabitValidationError("Image data is empty.", field="image")
    if len(raw) > settings.max_image_bytes:
        limit_mb = settings.max_image_bytes / (1024 * 1024)
        raise HabitValidationError(f"Image exceeds the {limit_mb:g} MB limit.", field="image")
    return ImageInput(data=raw, mime_type=mime_type)


def _serialize_result(result: ActionResult) -> ActionResultPayload:
    suggestions = None
    if result.suggested_sub_habits is not None:
        suggestions = [SuggestedSubHabitPayload(**item.model_dump()) for item in result.suggested_sub_habits]
    return ActionResultPayload(
        type=result.type,
        status=result.status,
        entity_id=result.entity_id,
        entity_name=result.entity_name,
        error=result.error,
        field=result.field,
        suggested_sub_habits=suggestions,
    )


@router.post("/chat", response_model=ChatResponse, tags=["chat"])
async def chat(
    payload: ChatRequest,
    http_request: Request,
    background_tasks: BackgroundTasks,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    interpreter: IntentInterpreter = Depends(get_intent_interpreter),
    extractor: FactExtractor = Depends(get_fact_extractor),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> ChatResponse:
    """Run one chat turn and schedule fact extraction once the response is sent."""
    request_id = getattr(http_request.state, "request_id", None)
    image = _decode_image(payload.image)

    outcome = await run_cancellable(
        http_request,
        execute_chat_turn,
        db,
        user_id=user_id,
        message=payload.message,
        interpreter=interpreter,
        image=image,
        request_id=request_id,
    )

    if settings.fact_extraction_enabled:
        background_tasks.add_task(
            run_fact_extraction,
            session_factory,
            user_id=user_id,
            message=payload.message,
            reply=outcome.ai_message,
            extractor=extractor,
            request_id=request_id,
        )

    metadata: Dict[str, Any] = {"user_id": str(user_id), "has_image": image is not None}
    log_metric("chat.turn.success", 1, metadata=metadata)
    return ChatResponse(
        ai_message=outcome.ai_message,
        actions=[_serialize_result(result) for result in outcome.results],
        request_id=request_id or "",
    )
