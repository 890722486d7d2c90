"""Execute an interpreter Action Plan against the habit model for one chat turn.

Actions run in plan order and each one is isolated: a handler validates and builds
everything it needs before touching the session, so a failing action leaves no trace.
Successful actions are kept and persisted together with the audit record in a single
commit at the end of the turn.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models.agent_action_log import AgentActionLog
from app.db.models.habit import Habit
from app.db.models.tag import Tag
from app.db.models.user_fact import UserFact
from app.observability.metrics import log_metric
from app.observability.tracing import annotate, trace
from app.services import habit_service, tag_service, user_fact_service
from app.services.ai.base import (
    FactSnapshot,
    HabitSnapshot,
    ImageInput,
    IntentInterpreter,
    InterpretationContext,
    TagSnapshot,
)
from app.services.ai.plan import ActionType, AiAction, SuggestedSubHabit
from app.services.errors import ChatTurnCancelled, HabitValidationError, NotFoundError, OrbitError
from app.services.user_service import get_or_create_user, user_today

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_SUGGESTION = "suggestion"

CHAT_TURN_ACTION = "chat_turn"
COMMIT_FAILED_MESSAGE = "Changes could not be saved."
UNEXPECTED_FAILURE_MESSAGE = "Something went wrong while running this action."
MESSAGE_PREVIEW_CHARS = 200


@dataclass
class ActionResult:
    type: str
    status: str
    entity_id: Optional[UUID] = None
    entity_name: Optional[str] = None
    error: Optional[str] = None
    field: Optional[str] = None
    suggested_sub_habits: Optional[List[SuggestedSubHabit]] = None


@dataclass
class ChatTurnOutcome:
    ai_message: str
    results: List[ActionResult]

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.status == STATUS_SUCCESS)


class _TurnState:
    """Habits and tags visible to this turn, including habits created earlier in the plan."""

    def __init__(self, user_id: UUID, today: date, habits: Iterable[Habit], tags: Iterable[Tag]) -> None:
        self.user_id = user_id
        self.today = today
        self.habits: Dict[UUID, Habit] = {habit.id: habit for habit in habits}
        self.tags: List[Tag] = list(tags)

    def register(self, habit: Habit) -> None:
        self.habits[habit.id] = habit

    def find_habit(self, action: AiAction) -> Habit:
        habit_id = _parse_uuid(action.habit_id)
        if habit_id is not None:
            habit = self.habits.get(habit_id)
            if habit is not None and habit.is_active:
                return habit
        title = (action.habit_title or (action.title if action.habit_id is None else None) or "").strip().lower()
        if title:
            for habit in self.habits.values():
                if habit.is_active and habit.title.lower() == title:
                    return habit
        raise NotFoundError("Habit not found.")

    def resolve_tags(self, action: AiAction) -> List[Tag]:
        tag_ids = [tag_id for tag_id in (_parse_uuid(raw) for raw in action.tag_ids) if tag_id is not None]
        return tag_service.resolve_tag_references(self.tags, tag_ids=tag_ids, tag_names=action.tag_names)


def _parse_uuid(raw: Optional[str]) -> Optional[UUID]:
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        return None


def _parse_date(raw: Optional[str], *, field: str) -> Optional[date]:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError as exc:
        raise HabitValidationError(f"Invalid date '{raw}'.", field=field) from exc


def build_context(
    today: date,
    habits: Sequence[Habit],
    tags: Sequence[Tag],
    facts: Sequence[UserFact],
) -> InterpretationContext:
    return InterpretationContext(
        today=today,
        habits=tuple(
            HabitSnapshot(
                id=habit.id,
                title=habit.title,
                frequency_unit=habit.frequency_unit,
                frequency_quantity=habit.frequency_quantity,
                weekdays=tuple(habit.weekdays or ()),
                is_bad_habit=habit.is_bad_habit,
                unit=habit.unit,
                due_date=habit.due_date,
                is_completed=habit.is_completed,
                parent_habit_id=habit.parent_habit_id,
            )
            for habit in habits
        ),
        tags=tuple(TagSnapshot(id=tag.id, name=tag.name, color=tag.color) for tag in tags),
        facts=tuple(FactSnapshot(text=fact.fact_text, category=fact.category) for fact in facts),
    )


def _execute_log(db: Session, state: _TurnState, action: AiAction) -> ActionResult:
    habit = state.find_habit(action)
    log_date = _parse_date(action.log_date, field="date") or state.today
    habit_service.log_habit(habit, log_date=log_date, value=action.value, note=action.note)
    return ActionResult(
        type=ActionType.LOG_HABIT.value,
        status=STATUS_SUCCESS,
        entity_id=habit.id,
        entity_name=habit.title,
    )


def _execute_create(db: Session, state: _TurnState, action: AiAction) -> ActionResult:
    due_date = _parse_date(action.due_date, field="due_date")
    habit = habit_service.build_habit(
        user_id=state.user_id,
        title=action.title,
        today=state.today,
        description=action.description,
        frequency_unit=action.frequency_unit,
        frequency_quantity=action.frequency_quantity,
        weekdays=action.weekdays,
        is_bad_habit=action.is_bad_habit,
        due_date=due_date,
        unit=action.unit,
    )
    children: List[Habit] = []
    for position, sub_title in enumerate(action.sub_habits):
        try:
            children.append(
                habit_service.build_habit(
                    user_id=state.user_id,
                    title=sub_title,
                    today=state.today,
                    frequency_unit=habit.frequency_unit,
                    frequency_quantity=habit.frequency_quantity,
                    weekdays=habit.weekdays,
                    due_date=habit.due_date,
                    parent_habit_id=habit.id,
                    position=position,
                )
            )
        except HabitValidationError as exc:
            raise HabitValidationError(
                f"Sub-habit '{sub_title}' failed: {exc.message}", field="sub_habits"
            ) from exc
    tags = state.resolve_tags(action)

    # Everything validated; only now does the session see the new rows.
    db.add(habit)
    for child in children:
        habit.children.append(child)
        state.register(child)
    tag_service.assign_tags(habit, tags)
    state.register(habit)
    return ActionResult(
        type=ActionType.CREATE_HABIT.value,
        status=STATUS_SUCCESS,
        entity_id=habit.id,
        entity_name=habit.title,
    )


def _execute_assign_tag(db: Session, state: _TurnState, action: AiAction) -> ActionResult:
    habit = state.find_habit(action)
    tag_service.assign_tags(habit, state.resolve_tags(action))
    return ActionResult(
        type=ActionType.ASSIGN_TAG.value,
        status=STATUS_SUCCESS,
        entity_id=habit.id,
        entity_name=habit.title,
    )


def _execute_suggest_breakdown(db: Session, state: _TurnState, action: AiAction) -> ActionResult:
    existing = state.habits.get(_parse_uuid(action.habit_id)) if action.habit_id else None
    return ActionResult(
        type=ActionType.SUGGEST_BREAKDOWN.value,
        status=STATUS_SUGGESTION,
        entity_id=existing.id if existing else None,
        entity_name=action.title or action.habit_title or (existing.title if existing else None),
        suggested_sub_habits=list(action.suggested_sub_habits),
    )


_HANDLERS: Dict[ActionType, Callable[[Session, _TurnState, AiAction], ActionResult]] = {
    ActionType.LOG_HABIT: _execute_log,
    ActionType.CREATE_HABIT: _execute_create,
    ActionType.ASSIGN_TAG: _execute_assign_tag,
    ActionType.SUGGEST_BREAKDOWN: _execute_suggest_breakdown,
}


def execute_action(db: Session, state: _TurnState, action: AiAction) -> ActionResult:
    action_type = action.action_type
    if action_type is None:
        return ActionResult(
            type=action.type or "unknown",
            status=STATUS_FAILED,
            error=f"Unrecognized action type: {action.type}",
        )
    try:
        return _HANDLERS[action_type](db, state, action)
    except HabitValidationError as exc:
        return ActionResult(type=action_type.value, status=STATUS_FAILED, error=exc.message, field=exc.field)
    except OrbitError as exc:
        return ActionResult(type=action_type.value, status=STATUS_FAILED, error=exc.message)
    except Exception:
        logger.exception("Unexpected failure executing %s action", action_type.value)
        return ActionResult(type=action_type.value, status=STATUS_FAILED, error=UNEXPECTED_FAILURE_MESSAGE)


def _result_payload(result: ActionResult) -> Dict[str, Any]:
    return {
        "type": result.type,
        "status": result.status,
        "entity_id": str(result.entity_id) if result.entity_id else None,
        "entity_name": result.entity_name,
        "error": result.error,
        "field": result.field,
        "suggested_sub_habits": (
            [item.model_dump() for item in result.suggested_sub_habits]
            if result.suggested_sub_habits is not None
            else None
        ),
    }


def reconcile_failed_commit(results: List[ActionResult]) -> List[ActionResult]:
    """Successes reported before a failed commit did not persist; report them as failures."""
    reconciled: List[ActionResult] = []
    for result in results:
        if result.status == STATUS_SUCCESS:
            reconciled.append(
                ActionResult(
                    type=result.type,
                    status=STATUS_FAILED,
                    entity_name=result.entity_name,
                    error=COMMIT_FAILED_MESSAGE,
                )
            )
        else:
            reconciled.append(result)
    return reconciled


def _check_cancelled(db: Session, cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        db.rollback()
        raise ChatTurnCancelled()


def execute_chat_turn(
    db: Session,
    *,
    user_id: UUID,
    message: str,
    interpreter: IntentInterpreter,
    image: Optional[ImageInput] = None,
    cancel_event: Optional[threading.Event] = None,
    request_id: Optional[str] = None,
) -> ChatTurnOutcome:
    """Interpret one chat message, run its actions and commit the successes.

    Raises InterpreterError when no plan could be obtained (nothing is executed) and
    ChatTurnCancelled when the caller went away before the commit.
    """
    user = get_or_create_user(db, user_id)
    today = user_today(user)
    habits = habit_service.list_active_habits(db, user_id)
    tags = tag_service.list_tags(db, user_id)
    context = build_context(today, habits, tags, user_fact_service.list_user_facts(db, user_id))
    state = _TurnState(user_id, today, habits, tags)

    metadata: Dict[str, Any] = {
        "route": "/chat",
        "has_image": image is not None,
        "habit_count": len(context.habits),
    }
    with trace("chat.turn", metadata=metadata, user_id=str(user_id), request_id=request_id) as span:
        plan = interpreter.interpret(message, context=context, image=image, request_id=request_id)

        results: List[ActionResult] = []
        for action in plan.actions:
            _check_cancelled(db, cancel_event)
            results.append(execute_action(db, state, action))

        _check_cancelled(db, cancel_event)
        db.add(
            AgentActionLog(
                id=uuid4(),
                user_id=user_id,
                action_type=CHAT_TURN_ACTION,
                action_payload={
                    "message_preview": message[:MESSAGE_PREVIEW_CHARS],
                    "has_image": image is not None,
                    "request_id": request_id,
                    "results": [_result_payload(result) for result in results],
                },
                reason=plan.ai_message[:MESSAGE_PREVIEW_CHARS] or None,
                undo_available=False,
                created_at=datetime.now(timezone.utc),
            )
        )
        try:
            db.commit()
        except SQLAlchemyError:
            logger.exception("Commit failed for chat turn; reporting all actions as failed")
            db.rollback()
            results = reconcile_failed_commit(results)
            log_metric("chat.turn.commit_failed", 1, {"user_id": str(user_id)})

        outcome = ChatTurnOutcome(ai_message=plan.ai_message, results=results)
        annotate(
            span,
            {
                "action_count": len(results),
                "success_count": outcome.success_count,
                "failed_count": sum(1 for result in results if result.status == STATUS_FAILED),
            },
        )

    log_metric("chat.turn.actions", len(results), {"user_id": str(user_id)})
    log_metric("chat.turn.success_count", outcome.success_count, {"user_id": str(user_id)})
    logger.info(
        "Chat turn executed %d action(s), %d succeeded",
        len(results),
        outcome.success_count,
    )
    return outcome
