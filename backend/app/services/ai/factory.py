"""Provider selection for the intent interpreter and the fact extractor."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional, Tuple

import openai

from app.core.config import settings
from app.services.ai.base import FactExtractor, IntentInterpreter, NoopFactExtractor, UnconfiguredInterpreter
from app.services.ai.openai_provider import OpenAIFactExtractor, OpenAIIntentInterpreter

logger = logging.getLogger(__name__)


def _build_client(provider: str) -> Optional[openai.OpenAI]:
    if provider == "ollama":
        # Ollama serves an OpenAI-compatible API and ignores the key.
        return openai.OpenAI(
            api_key="ollama",
            base_url=settings.ollama_base_url,
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
    if provider == "openai":
        if not settings.openai_api_key:
            return None
        return openai.OpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
    logger.warning("Unknown LLM provider '%s'", provider)
    return None


def _provider_and_model(provider: str, openai_model: str) -> Tuple[str, str]:
    normalized = (provider or "").strip().lower()
    if normalized == "ollama":
        return normalized, settings.ollama_model
    return normalized, openai_model


@lru_cache
def get_intent_interpreter() -> IntentInterpreter:
    provider, model = _provider_and_model(settings.intent_provider, settings.intent_model)
    client = _build_client(provider)
    if client is None:
        logger.warning("No intent interpreter configured; chat turns will be rejected.")
        return UnconfiguredInterpreter()
    return OpenAIIntentInterpreter(client, model, provider=provider)


@lru_cache
def get_fact_extractor() -> FactExtractor:
    """Fact extraction always uses the structured-output provider, whatever serves chat."""
    if not settings.fact_extraction_enabled:
        return NoopFactExtractor()
    provider, model = _provider_and_model(settings.structured_output_provider, settings.fact_extraction_model)
    client = _build_client(provider)
    if client is None:
        logger.info("Fact extraction provider '%s' not configured; skipping extraction.", provider)
        return NoopFactExtractor()
    return OpenAIFactExtractor(client, model, provider=provider)
