"""OpenAI-compatible chat-completions implementations of the LLM collaborators."""
from __future__ import annotations

import base64
import logging
import re
import time
from typing import Any, Dict, List, Optional

import openai
from pydantic import BaseModel, Field, ValidationError

from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.ai.base import (
    FactCandidate,
    FactExtractor,
    ImageInput,
    IntentInterpreter,
    InterpretationContext,
)
from app.services.ai.plan import ActionPlan
from app.services.ai.prompts import build_fact_extraction_prompt, build_intent_system_prompt
from app.services.errors import InterpreterError

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _strip_code_fences(content: str) -> str:
    # Local models sometimes wrap JSON mode output in markdown fences.
    return _CODE_FENCE_RE.sub("", content.strip())


def _completion_text(completion: Any) -> str:
    if not completion.choices:
        return ""
    return _strip_code_fences(completion.choices[0].message.content or "")


class OpenAIIntentInterpreter(IntentInterpreter):
    def __init__(self, client: openai.OpenAI, model: str, provider: str = "openai") -> None:
        self._client = client
        self._model = model
        self._provider = provider

    def _user_content(self, message: str, image: Optional[ImageInput]) -> Any:
        if image is None:
            return message
        encoded = base64.b64encode(image.data).decode("ascii")
        return [
            {"type": "text", "text": message},
            {"type": "image_url", "image_url": {"url": f"data:{image.mime_type};base64,{encoded}"}},
        ]

    def interpret(
        self,
        message: str,
        *,
        context: InterpretationContext,
        image: Optional[ImageInput] = None,
        request_id: Optional[str] = None,
    ) -> ActionPlan:
        system_prompt = build_intent_system_prompt(context, has_image=image is not None)
        metadata: Dict[str, Any] = {
            "provider": self._provider,
            "model": self._model,
            "has_image": image is not None,
            "habit_count": len(context.habits),
        }
        started = time.perf_counter()
        try:
            with trace("chat.interpret", metadata=metadata, request_id=request_id):
                completion = self._client.chat.completions.create(
                    model=self._model,
                    response_format={"type": "json_object"},
                    temperature=0.2,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": self._user_content(message, image)},
                    ],
                )
        except openai.OpenAIError as exc:
            logger.warning("Intent interpreter call failed (%s): %s", self._provider, exc)
            log_metric("chat.interpret.error", 1, {"provider": self._provider})
            raise InterpreterError("The assistant is unavailable right now. Please try again.") from exc

        content = _completion_text(completion)
        try:
            plan = ActionPlan.model_validate_json(content or "{}")
        except ValidationError as exc:
            logger.warning("Intent interpreter returned an unparseable plan: %s", exc)
            log_metric("chat.interpret.invalid_plan", 1, {"provider": self._provider})
            raise InterpreterError("The assistant returned a response that could not be understood.") from exc

        latency_ms = int((time.perf_counter() - started) * 1000)
        log_metric(
            "chat.interpret.latency_ms",
            latency_ms,
            {"provider": self._provider, "action_count": len(plan.actions)},
        )
        return plan


class _FactPayload(BaseModel):
    fact_text: str = ""
    category: Optional[str] = None


class _FactExtractionPayload(BaseModel):
    facts: List[_FactPayload] = Field(default_factory=list)


class OpenAIFactExtractor(FactExtractor):
    def __init__(self, client: openai.OpenAI, model: str, provider: str = "openai") -> None:
        self._client = client
        self._model = model
        self._provider = provider

    def extract(self, message: str, reply: str, *, request_id: Optional[str] = None) -> List[FactCandidate]:
        prompt = build_fact_extraction_prompt(message, reply)
        try:
            with trace(
                "facts.extract",
                metadata={"provider": self._provider, "model": self._model},
                request_id=request_id,
            ):
                completion = self._client.chat.completions.create(
                    model=self._model,
                    response_format={"type": "json_object"},
                    temperature=0.1,
                    messages=[{"role": "user", "content": prompt}],
                )
        except openai.OpenAIError as exc:
            raise InterpreterError(f"Fact extraction call failed: {exc}") from exc

        content = _completion_text(completion)
        if not content:
            return []
        try:
            payload = _FactExtractionPayload.model_validate_json(content)
        except ValidationError as exc:
            raise InterpreterError("Fact extraction returned malformed JSON.") from exc
        return [FactCandidate(text=fact.fact_text, category=fact.category) for fact in payload.facts]
