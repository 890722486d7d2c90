from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.models.agent_action_log import AgentActionLog
from app.db.models.habit import Habit
from app.db.models.habit_log import HabitLog
from app.db.models.tag import Tag
from app.db.models.user import User
from app.db.models.user_fact import UserFact
from app.services.ai.base import FactSnapshot, IntentInterpreter
from app.services.ai.plan import ActionPlan
from app.services.chat_executor import execute_chat_turn
from app.services.errors import ChatTurnCancelled, InterpreterError
from app.services.habit_scheduling import local_today
from app.services.habit_service import build_habit


class _FakeInterpreter(IntentInterpreter):
    def __init__(self, plan: Optional[ActionPlan] = None, error: Optional[Exception] = None) -> None:
        self.plan = plan
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def interpret(self, message, *, context, image=None, request_id=None):
        self.calls.append({"message": message, "context": context, "image": image})
        if self.error:
            raise self.error
        return self.plan


def _plan(*actions: Dict[str, Any], message: str = "On it!") -> ActionPlan:
    return ActionPlan.model_validate({"aiMessage": message, "actions": list(actions)})


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - sqlite setup
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def seeded(db_session):
    user = User(id=uuid4())
    db_session.add(user)
    db_session.commit()
    habit = build_habit(
        user_id=user.id,
        title="Read",
        today=local_today(None),
        frequency_unit="day",
        frequency_quantity=1,
    )
    tag = Tag(id=uuid4(), user_id=user.id, name="Health", color="#00FF00")
    db_session.add_all([habit, tag])
    db_session.commit()
    return {"user_id": user.id, "habit_id": habit.id, "tag_id": tag.id}


def _run(db_session, seeded, plan: ActionPlan, **kwargs):
    interpreter = kwargs.pop("interpreter", None) or _FakeInterpreter(plan)
    return execute_chat_turn(
        db_session,
        user_id=seeded["user_id"],
        message="log my reading and add meditation",
        interpreter=interpreter,
        **kwargs,
    )


def test_keep_successes_reports_every_action(db_session, seeded) -> None:
    plan = _plan(
        {"type": "LogHabit", "habitId": str(seeded["habit_id"])},
        {"type": "LogHabit", "habitId": str(uuid4())},
        {"type": "CreateHabit", "title": "Meditate", "frequencyUnit": "Day", "frequencyQuantity": 1},
        {"type": "create_habit", "title": ""},
    )

    outcome = _run(db_session, seeded, plan)

    statuses = [result.status for result in outcome.results]
    assert statuses == ["success", "failed", "success", "failed"]
    assert outcome.ai_message == "On it!"
    assert outcome.results[1].error == "Habit not found."
    assert outcome.results[3].field == "title"

    titles = sorted(habit.title for habit in db_session.query(Habit).all())
    assert titles == ["Meditate", "Read"]
    assert db_session.query(HabitLog).count() == 1

    audit = db_session.query(AgentActionLog).one()
    assert audit.action_type == "chat_turn"
    assert len(audit.action_payload["results"]) == 4


def test_unknown_action_type_fails_without_blocking_others(db_session, seeded) -> None:
    plan = _plan(
        {"type": "DeleteEverything"},
        {"type": "log-habit", "habitTitle": "read"},
    )

    outcome = _run(db_session, seeded, plan)

    assert outcome.results[0].status == "failed"
    assert outcome.results[0].error == "Unrecognized action type: DeleteEverything"
    assert outcome.results[1].status == "success"
    assert outcome.results[1].entity_name == "Read"


def test_action_without_type_fails_without_blocking_others(db_session, seeded) -> None:
    plan = _plan(
        {"title": "x"},
        {"type": "create_habit", "title": "Run", "frequencyUnit": "Day", "isBadHabit": None},
    )

    outcome = _run(db_session, seeded, plan)

    assert [result.status for result in outcome.results] == ["failed", "success"]
    assert outcome.results[0].type == "unknown"
    assert outcome.results[0].error == "Unrecognized action type: None"
    created = db_session.query(Habit).filter(Habit.title == "Run").one()
    assert created.is_bad_habit is False


def test_assign_tag_ignores_stale_reference(db_session, seeded) -> None:
    plan = _plan(
        {
            "type": "AssignTag",
            "habitId": str(seeded["habit_id"]),
            "tagIds": [str(seeded["tag_id"]), str(uuid4()), "not-a-uuid"],
        }
    )

    outcome = _run(db_session, seeded, plan)

    assert outcome.results[0].status == "success"
    habit = db_session.get(Habit, seeded["habit_id"])
    assert [tag.id for tag in habit.tags] == [seeded["tag_id"]]


def test_create_with_bad_sub_habit_persists_nothing(db_session, seeded) -> None:
    plan = _plan(
        {
            "type": "CreateHabit",
            "title": "Morning routine",
            "frequencyUnit": "Day",
            "subHabits": ["Stretch", "   "],
        }
    )

    outcome = _run(db_session, seeded, plan)

    result = outcome.results[0]
    assert result.status == "failed"
    assert result.field == "sub_habits"
    assert result.error.startswith("Sub-habit '   ' failed:")
    assert db_session.query(Habit).count() == 1


def test_created_children_inherit_parent_schedule(db_session, seeded) -> None:
    plan = _plan(
        {
            "type": "CreateHabit",
            "title": "Morning routine",
            "frequencyUnit": "Day",
            "frequencyQuantity": 1,
            "days": ["Monday", "Friday"],
            "subHabits": ["Stretch", {"title": "Journal"}],
            "tagNames": ["health", "unknown"],
        }
    )

    outcome = _run(db_session, seeded, plan)

    assert outcome.results[0].status == "success"
    parent = db_session.get(Habit, outcome.results[0].entity_id)
    assert [child.title for child in parent.children] == ["Stretch", "Journal"]
    assert all(child.weekdays == ["monday", "friday"] for child in parent.children)
    assert [tag.name for tag in parent.tags] == ["Health"]


def test_habit_created_earlier_in_plan_can_be_logged(db_session, seeded) -> None:
    plan = _plan(
        {"type": "CreateHabit", "title": "Drink water", "unit": "glasses", "frequencyUnit": "Day"},
        {"type": "LogHabit", "habitTitle": "drink water", "value": 3},
    )

    outcome = _run(db_session, seeded, plan)

    assert [result.status for result in outcome.results] == ["success", "success"]
    log = db_session.query(HabitLog).one()
    assert log.value == 3.0


def test_suggest_breakdown_changes_nothing(db_session, seeded) -> None:
    plan = _plan(
        {
            "type": "SuggestBreakdown",
            "title": "Fitness plan",
            "suggestedSubHabits": ["Run", {"title": "Lift", "frequencyUnit": "Week"}],
        }
    )

    outcome = _run(db_session, seeded, plan)

    result = outcome.results[0]
    assert result.status == "suggestion"
    assert result.entity_name == "Fitness plan"
    assert [item.title for item in result.suggested_sub_habits] == ["Run", "Lift"]
    assert db_session.query(Habit).count() == 1


def test_interpreter_receives_context_snapshot(db_session, seeded) -> None:
    db_session.add_all(
        [
            UserFact(
                id=uuid4(),
                user_id=seeded["user_id"],
                fact_text="Works night shifts",
                category="routine",
            ),
            UserFact(
                id=uuid4(),
                user_id=seeded["user_id"],
                fact_text="Old fact",
                is_deleted=True,
                deleted_at=datetime.now(timezone.utc),
            ),
        ]
    )
    db_session.commit()
    interpreter = _FakeInterpreter(_plan())

    _run(db_session, seeded, None, interpreter=interpreter)

    context = interpreter.calls[0]["context"]
    assert [habit.title for habit in context.habits] == ["Read"]
    assert [tag.name for tag in context.tags] == ["Health"]
    assert context.facts == (FactSnapshot(text="Works night shifts", category="routine"),)


def test_interpreter_failure_executes_nothing(db_session, seeded) -> None:
    interpreter = _FakeInterpreter(error=InterpreterError("bad json"))

    with pytest.raises(InterpreterError):
        _run(db_session, seeded, None, interpreter=interpreter)

    assert db_session.query(AgentActionLog).count() == 0


def test_cancelled_turn_rolls_back(db_session, seeded) -> None:
    cancel_event = threading.Event()
    cancel_event.set()
    plan = _plan({"type": "CreateHabit", "title": "Meditate", "frequencyUnit": "Day"})

    with pytest.raises(ChatTurnCancelled):
        _run(db_session, seeded, plan, cancel_event=cancel_event)

    assert db_session.query(Habit).count() == 1
    assert db_session.query(AgentActionLog).count() == 0


def test_commit_failure_rewrites_successes(db_session, seeded, monkeypatch) -> None:
    def failing_commit():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    plan = _plan(
        {"type": "CreateHabit", "title": "Meditate", "frequencyUnit": "Day"},
        {"type": "LogHabit", "habitId": str(uuid4())},
    )

    outcome = _run(db_session, seeded, plan)

    assert [result.status for result in outcome.results] == ["failed", "failed"]
    assert outcome.results[0].error == "Changes could not be saved."
    assert outcome.results[1].error == "Habit not found."
    monkeypatch.undo()
    assert db_session.query(Habit).count() == 1
