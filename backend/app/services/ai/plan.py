"""Typed Action Plan returned by the intent interpreter."""
from __future__ import annotations

import re
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ActionType(str, Enum):
    LOG_HABIT = "log_habit"
    CREATE_HABIT = "create_habit"
    ASSIGN_TAG = "assign_tag"
    SUGGEST_BREAKDOWN = "suggest_breakdown"


_ACTION_TYPE_KEYS = {
    "loghabit": ActionType.LOG_HABIT,
    "log": ActionType.LOG_HABIT,
    "createhabit": ActionType.CREATE_HABIT,
    "create": ActionType.CREATE_HABIT,
    "assigntag": ActionType.ASSIGN_TAG,
    "assigntags": ActionType.ASSIGN_TAG,
    "suggestbreakdown": ActionType.SUGGEST_BREAKDOWN,
    "breakdown": ActionType.SUGGEST_BREAKDOWN,
}


def normalize_action_type(raw: Optional[str]) -> Optional[ActionType]:
    """Map `LogHabit`, `log_habit`, `log-habit` and friends onto ActionType; None if unknown."""
    key = re.sub(r"[^a-z0-9]", "", (raw or "").lower())
    return _ACTION_TYPE_KEYS.get(key)


class _PlanModel(BaseModel):
    # Models emit camelCase as often as snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SuggestedSubHabit(_PlanModel):
    title: str = ""
    description: Optional[str] = None
    frequency_unit: Optional[str] = None
    frequency_quantity: Optional[int] = None

    @field_validator("title", mode="before")
    @classmethod
    def _none_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


def _coerce_titles(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, list):
        return [item.get("title", "") if isinstance(item, dict) else item for item in value]
    return value


class AiAction(_PlanModel):
    type: Optional[str] = None
    habit_id: Optional[str] = None
    habit_title: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    frequency_unit: Optional[str] = None
    frequency_quantity: Optional[int] = None
    weekdays: List[str] = Field(default_factory=list, validation_alias=AliasChoices("weekdays", "days"))
    is_bad_habit: Optional[bool] = Field(
        default=False,
        validation_alias=AliasChoices("is_bad_habit", "isBadHabit", "isNegative"),
    )
    due_date: Optional[str] = None
    unit: Optional[str] = None
    log_date: Optional[str] = Field(default=None, validation_alias=AliasChoices("log_date", "logDate", "date"))
    value: Optional[float] = None
    note: Optional[str] = None
    sub_habits: List[str] = Field(default_factory=list)
    tag_ids: List[str] = Field(default_factory=list)
    tag_names: List[str] = Field(default_factory=list)
    suggested_sub_habits: List[SuggestedSubHabit] = Field(default_factory=list)

    @field_validator("weekdays", "tag_ids", "tag_names", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("is_bad_habit", mode="before")
    @classmethod
    def _none_as_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("sub_habits", mode="before")
    @classmethod
    def _sub_habit_titles(cls, value: Any) -> Any:
        return _coerce_titles(value)

    @field_validator("suggested_sub_habits", mode="before")
    @classmethod
    def _suggestions_from_strings(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [{"title": item} if isinstance(item, str) else item for item in value]
        return value

    @property
    def action_type(self) -> Optional[ActionType]:
        return normalize_action_type(self.type)


class ActionPlan(_PlanModel):
    actions: List[AiAction] = Field(default_factory=list)
    ai_message: str = Field(
        default="",
        validation_alias=AliasChoices("ai_message", "aiMessage", "reply", "message"),
    )

    @field_validator("actions", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value
