"""Best-effort extraction of durable user facts after a chat turn."""
from __future__ import annotations

import logging
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.context import request_id_ctx_var, user_id_ctx_var
from app.db.models.user_fact import UserFact
from app.observability.metrics import log_metric
from app.services.ai.base import FactExtractor
from app.services.errors import HabitValidationError
from app.services.user_fact_service import build_user_fact, list_user_facts
from app.services.user_service import get_or_create_user

logger = logging.getLogger(__name__)


def extract_and_store_facts(
    db: Session,
    *,
    user_id: UUID,
    message: str,
    reply: str,
    extractor: FactExtractor,
    request_id: Optional[str] = None,
) -> List[UserFact]:
    """Extract, screen, de-duplicate and persist facts. Never raises."""
    try:
        candidates = extractor.extract(message, reply, request_id=request_id)
    except Exception as exc:
        logger.warning("Fact extraction failed for user %s: %s", user_id, exc)
        log_metric("facts.extract.error", 1, {"user_id": str(user_id)})
        return []
    if not candidates:
        return []

    stored: List[UserFact] = []
    try:
        get_or_create_user(db, user_id)
        known = {fact.fact_text.strip().lower() for fact in list_user_facts(db, user_id)}
        for candidate in candidates:
            try:
                fact = build_user_fact(user_id=user_id, fact_text=candidate.text, category=candidate.category)
            except HabitValidationError as exc:
                logger.warning("Rejected fact candidate for user %s: %s", user_id, exc.message)
                continue
            key = fact.fact_text.lower()
            if key in known:
                continue
            known.add(key)
            db.add(fact)
            stored.append(fact)
        if stored:
            db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("Storing extracted facts failed for user %s: %s", user_id, exc)
        log_metric("facts.extract.error", 1, {"user_id": str(user_id)})
        return []

    log_metric(
        "facts.extract.stored",
        len(stored),
        {"user_id": str(user_id), "candidates": len(candidates)},
    )
    return stored


def run_fact_extraction(
    session_factory: Callable[[], Session],
    *,
    user_id: UUID,
    message: str,
    reply: str,
    extractor: FactExtractor,
    request_id: Optional[str] = None,
) -> None:
    """Background-task entry point: owns its session and restores the log context."""
    request_token = request_id_ctx_var.set(request_id)
    user_token = user_id_ctx_var.set(str(user_id))
    db = session_factory()
    try:
        extract_and_store_facts(
            db,
            user_id=user_id,
            message=message,
            reply=reply,
            extractor=extractor,
            request_id=request_id,
        )
    finally:
        db.close()
        user_id_ctx_var.reset(user_token)
        request_id_ctx_var.reset(request_token)
