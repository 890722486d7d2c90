from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.models.user import User
from app.services import habit_service
from app.services.errors import HabitValidationError, NotFoundError

TODAY = date(2025, 3, 13)


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


def _habit(**overrides):
    params = dict(user_id=uuid4(), title="Run", today=TODAY, frequency_unit="day", frequency_quantity=1)
    params.update(overrides)
    return habit_service.build_habit(**params)


def test_factory_normalizes_inputs() -> None:
    habit = _habit(
        title="  Meditate  ",
        frequency_unit="Daily",
        frequency_quantity=None,
        weekdays=["Friday", "mon", "Monday"],
        unit=" ",
    )

    assert habit.title == "Meditate"
    assert habit.frequency_unit == "day"
    assert habit.frequency_quantity == 1
    assert habit.weekdays == ["monday", "friday"]
    assert habit.unit is None
    assert habit.due_date == TODAY
    assert habit.id is not None


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"title": "   "}, "title"),
        ({"title": "x" * 201}, "title"),
        ({"frequency_unit": None, "frequency_quantity": 2}, "frequency_unit"),
        ({"frequency_unit": "fortnight"}, "frequency_unit"),
        ({"frequency_quantity": 0}, "frequency_quantity"),
        ({"weekdays": ["funday"]}, "weekdays"),
        ({"frequency_quantity": 2, "weekdays": ["monday"]}, "weekdays"),
        ({"frequency_unit": None, "frequency_quantity": None, "weekdays": ["monday"]}, "weekdays"),
    ],
)
def test_factory_rejects_invalid_habits(overrides, field) -> None:
    with pytest.raises(HabitValidationError) as excinfo:
        _habit(**overrides)

    assert excinfo.value.field == field


def test_update_revalidates_weekday_rule() -> None:
    habit = _habit(weekdays=["monday"])

    with pytest.raises(HabitValidationError) as excinfo:
        habit_service.update_habit(habit, {"frequency_quantity": 3})

    assert excinfo.value.field == "weekdays"
    assert habit.frequency_quantity == 1

    habit_service.update_habit(habit, {"frequency_quantity": 3, "weekdays": []})
    assert habit.frequency_quantity == 3
    assert habit.weekdays == []


def test_update_can_turn_habit_into_one_time() -> None:
    habit = _habit()

    habit_service.update_habit(habit, {"frequency_unit": None, "frequency_quantity": None, "title": "Run once"})

    assert habit.is_recurring is False
    assert habit.title == "Run once"


def test_log_advances_due_date_for_recurring_habit() -> None:
    habit = _habit(due_date=TODAY)

    log = habit_service.log_habit(habit, log_date=TODAY, note="  felt great ")

    assert log.note == "felt great"
    assert habit.due_date == TODAY + timedelta(days=1)
    assert habit.is_completed is False


def test_log_completes_one_time_habit_once() -> None:
    habit = _habit(frequency_unit=None, frequency_quantity=None)

    habit_service.log_habit(habit, log_date=TODAY)
    assert habit.is_completed is True

    with pytest.raises(HabitValidationError, match="already completed"):
        habit_service.log_habit(habit, log_date=TODAY)


def test_log_rejects_duplicate_day_for_normal_habit() -> None:
    habit = _habit()
    habit_service.log_habit(habit, log_date=TODAY)

    with pytest.raises(HabitValidationError, match="already been logged"):
        habit_service.log_habit(habit, log_date=TODAY)
    assert len(habit.logs) == 1


def test_bad_habit_allows_several_lapses_and_keeps_due_date() -> None:
    habit = _habit(is_bad_habit=True, due_date=TODAY)

    habit_service.log_habit(habit, log_date=TODAY)
    habit_service.log_habit(habit, log_date=TODAY)

    assert len(habit.logs) == 2
    assert habit.due_date == TODAY


def test_quantifiable_habit_requires_value() -> None:
    habit = _habit(unit="km")

    with pytest.raises(HabitValidationError) as excinfo:
        habit_service.log_habit(habit, log_date=TODAY)

    assert excinfo.value.field == "value"
    assert habit.logs == []


def test_inactive_habit_cannot_be_logged() -> None:
    habit = _habit()
    habit.is_active = False

    with pytest.raises(HabitValidationError):
        habit_service.log_habit(habit, log_date=TODAY)


def test_trend_requires_quantifiable_habit() -> None:
    with pytest.raises(HabitValidationError):
        habit_service.habit_trend(_habit(), TODAY)


def test_metrics_use_creation_date_in_user_timezone(db_session) -> None:
    user = User(id=uuid4(), timezone="UTC")
    db_session.add(user)
    db_session.commit()
    habit = _habit(user_id=user.id, due_date=TODAY - timedelta(days=2))
    habit.created_at = datetime(2025, 3, 11, 8, 0, tzinfo=timezone.utc)
    db_session.add(habit)
    for offset in range(3):
        habit_service.log_habit(habit, log_date=TODAY - timedelta(days=2 - offset))
    db_session.commit()

    metrics = habit_service.habit_metrics(habit, user, TODAY)

    assert metrics.current_streak == 3
    assert metrics.weekly_completion_rate == 100.0
    assert metrics.total_completions == 3


def test_move_parent_rejects_self_and_descendants(db_session) -> None:
    user = User(id=uuid4())
    db_session.add(user)
    db_session.commit()
    root = _habit(user_id=user.id, title="Root")
    child = _habit(user_id=user.id, title="Child", parent_habit_id=root.id)
    grandchild = _habit(user_id=user.id, title="Grandchild", parent_habit_id=child.id)
    db_session.add_all([root])
    db_session.flush()
    db_session.add_all([child])
    db_session.flush()
    db_session.add_all([grandchild])
    db_session.commit()

    with pytest.raises(HabitValidationError, match="own parent"):
        habit_service.move_habit_parent(db_session, user_id=user.id, habit_id=root.id, parent_id=root.id)
    with pytest.raises(HabitValidationError, match="descendant"):
        habit_service.move_habit_parent(db_session, user_id=user.id, habit_id=root.id, parent_id=grandchild.id)

    moved = habit_service.move_habit_parent(db_session, user_id=user.id, habit_id=grandchild.id, parent_id=None)
    assert moved.parent_habit_id is None
    moved = habit_service.move_habit_parent(db_session, user_id=user.id, habit_id=grandchild.id, parent_id=root.id)
    assert moved.parent_habit_id == root.id


def test_owned_lookup_hides_foreign_and_inactive_habits(db_session) -> None:
    owner = User(id=uuid4())
    stranger = User(id=uuid4())
    db_session.add_all([owner, stranger])
    db_session.commit()
    habit = _habit(user_id=owner.id)
    db_session.add(habit)
    db_session.commit()

    with pytest.raises(NotFoundError):
        habit_service.get_owned_habit(db_session, stranger.id, habit.id)

    habit_service.deactivate_habit(habit)
    db_session.commit()
    with pytest.raises(NotFoundError):
        habit_service.get_owned_habit(db_session, owner.id, habit.id)


def test_deactivate_cascades_to_children(db_session) -> None:
    user = User(id=uuid4())
    db_session.add(user)
    db_session.commit()
    parent = _habit(user_id=user.id, title="Morning routine")
    parent.children.append(_habit(user_id=user.id, title="Stretch", parent_habit_id=parent.id))
    db_session.add(parent)
    db_session.commit()

    habit_service.deactivate_habit(parent)
    db_session.commit()

    assert all(not child.is_active for child in parent.children)
    assert habit_service.list_active_habits(db_session, user.id) == []
