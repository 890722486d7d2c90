"""Tests for the OpenAI-compatible interpreter, extractor and provider factory."""
from __future__ import annotations

import json
from datetime import date
from types import SimpleNamespace
from typing import Any, Dict, List
from uuid import uuid4

import openai
import pytest

from app.services.ai import factory
from app.services.ai.base import (
    FactSnapshot,
    HabitSnapshot,
    ImageInput,
    InterpretationContext,
    NoopFactExtractor,
    UnconfiguredInterpreter,
)
from app.services.ai.openai_provider import OpenAIFactExtractor, OpenAIIntentInterpreter
from app.services.ai.plan import ActionType
from app.services.errors import InterpreterError

CONTEXT = InterpretationContext(
    today=date(2025, 3, 13),
    habits=(
        HabitSnapshot(
            id=uuid4(),
            title="Read",
            frequency_unit="day",
            frequency_quantity=1,
            weekdays=(),
            is_bad_habit=False,
            unit=None,
            due_date=date(2025, 3, 13),
            is_completed=False,
        ),
    ),
    facts=(FactSnapshot(text="Works night shifts", category="routine"), FactSnapshot(text="Has a dog")),
)


class _FakeCompletions:
    def __init__(self, content: str | None = None, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(completions: _FakeCompletions) -> Any:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_interpreter_parses_camel_case_plan() -> None:
    content = json.dumps(
        {
            "aiMessage": "Logged it!",
            "actions": [
                {"type": "LogHabit", "habitId": str(CONTEXT.habits[0].id), "value": None},
                {"type": "CreateHabit", "title": "Stretch", "frequencyUnit": "Day", "isBadHabit": False},
            ],
        }
    )
    completions = _FakeCompletions(content)
    interpreter = OpenAIIntentInterpreter(_client(completions), "gpt-test")

    plan = interpreter.interpret("I read today, add stretching", context=CONTEXT)

    assert plan.ai_message == "Logged it!"
    assert [action.action_type for action in plan.actions] == [ActionType.LOG_HABIT, ActionType.CREATE_HABIT]
    call = completions.calls[0]
    assert call["model"] == "gpt-test"
    assert call["response_format"] == {"type": "json_object"}
    system_prompt = call["messages"][0]["content"]
    assert "Read" in system_prompt
    assert "- Works night shifts (routine)" in system_prompt
    assert "- Has a dog\n" in system_prompt
    assert "2025-03-13" in system_prompt


def test_interpreter_tolerates_null_flags_and_missing_type() -> None:
    content = json.dumps(
        {
            "aiMessage": "Done",
            "actions": [
                {"type": "CreateHabit", "title": "Smoke", "frequencyUnit": "Day", "isBadHabit": None},
                {"type": "SuggestBreakdown", "habitTitle": "Read", "suggestedSubHabits": [{"title": None}]},
                {"title": "No type here"},
            ],
        }
    )
    interpreter = OpenAIIntentInterpreter(_client(_FakeCompletions(content)), "gpt-test")

    plan = interpreter.interpret("quit smoking", context=CONTEXT)

    assert len(plan.actions) == 3
    assert plan.actions[0].is_bad_habit is False
    assert plan.actions[1].suggested_sub_habits[0].title == ""
    assert plan.actions[2].type is None
    assert plan.actions[2].action_type is None


def test_interpreter_strips_code_fences() -> None:
    content = '```json\n{"ai_message": "Hi", "actions": []}\n```'
    interpreter = OpenAIIntentInterpreter(_client(_FakeCompletions(content)), "gpt-test")

    plan = interpreter.interpret("hello", context=CONTEXT)

    assert plan.ai_message == "Hi"
    assert plan.actions == []


def test_malformed_plan_raises_interpreter_error() -> None:
    interpreter = OpenAIIntentInterpreter(_client(_FakeCompletions("not json at all")), "gpt-test")

    with pytest.raises(InterpreterError, match="could not be understood"):
        interpreter.interpret("hello", context=CONTEXT)


def test_provider_failure_raises_interpreter_error() -> None:
    completions = _FakeCompletions(error=openai.OpenAIError("connection reset"))
    interpreter = OpenAIIntentInterpreter(_client(completions), "gpt-test")

    with pytest.raises(InterpreterError, match="unavailable"):
        interpreter.interpret("hello", context=CONTEXT)


def test_image_is_sent_as_data_url_with_image_rules() -> None:
    completions = _FakeCompletions('{"ai_message": "Looks like a workout plan", "actions": []}')
    interpreter = OpenAIIntentInterpreter(_client(completions), "gpt-test")

    interpreter.interpret(
        "what should I do?",
        context=CONTEXT,
        image=ImageInput(data=b"\x89PNG", mime_type="image/png"),
    )

    messages = completions.calls[0]["messages"]
    assert "Do NOT emit create_habit" in messages[0]["content"]
    user_content = messages[1]["content"]
    assert user_content[0] == {"type": "text", "text": "what should I do?"}
    assert user_content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw=="


def test_fact_extractor_parses_facts() -> None:
    content = json.dumps({"facts": [{"fact_text": "Has two kids", "category": "context"}]})
    completions = _FakeCompletions(content)
    extractor = OpenAIFactExtractor(_client(completions), "gpt-test")

    facts = extractor.extract("My two kids keep me busy", "Sounds hectic!")

    assert [(fact.text, fact.category) for fact in facts] == [("Has two kids", "context")]
    prompt = completions.calls[0]["messages"][0]["content"]
    assert "My two kids keep me busy" in prompt


def test_fact_extractor_rejects_malformed_payload() -> None:
    extractor = OpenAIFactExtractor(_client(_FakeCompletions('{"facts": "nope"}')), "gpt-test")

    with pytest.raises(InterpreterError):
        extractor.extract("hi", "hello")


def test_fact_extractor_tolerates_empty_content() -> None:
    extractor = OpenAIFactExtractor(_client(_FakeCompletions(None)), "gpt-test")

    assert extractor.extract("hi", "hello") == []


@pytest.fixture()
def fresh_factory(monkeypatch):
    factory.get_intent_interpreter.cache_clear()
    factory.get_fact_extractor.cache_clear()
    yield monkeypatch
    factory.get_intent_interpreter.cache_clear()
    factory.get_fact_extractor.cache_clear()


def test_factory_without_api_key_is_unconfigured(fresh_factory) -> None:
    fresh_factory.setattr(factory.settings, "intent_provider", "openai")
    fresh_factory.setattr(factory.settings, "structured_output_provider", "openai")
    fresh_factory.setattr(factory.settings, "openai_api_key", None)

    assert isinstance(factory.get_intent_interpreter(), UnconfiguredInterpreter)
    assert isinstance(factory.get_fact_extractor(), NoopFactExtractor)


def test_factory_routes_fact_extraction_to_structured_provider(fresh_factory) -> None:
    fresh_factory.setattr(factory.settings, "intent_provider", "ollama")
    fresh_factory.setattr(factory.settings, "structured_output_provider", "openai")
    fresh_factory.setattr(factory.settings, "openai_api_key", "sk-test")
    fresh_factory.setattr(factory.settings, "fact_extraction_enabled", True)

    assert isinstance(factory.get_intent_interpreter(), OpenAIIntentInterpreter)
    assert isinstance(factory.get_fact_extractor(), OpenAIFactExtractor)


def test_factory_respects_disabled_fact_extraction(fresh_factory) -> None:
    fresh_factory.setattr(factory.settings, "fact_extraction_enabled", False)
    fresh_factory.setattr(factory.settings, "openai_api_key", "sk-test")

    assert isinstance(factory.get_fact_extractor(), NoopFactExtractor)
