"""Habit ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, ForeignKey, Index, Integer, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.db.models.tag import habit_tags
from app.db.types import JSONBCompat, UTCDateTime


class Habit(Base):
    __tablename__ = "habits"
    __table_args__ = (
        Index("ix_habits_user_id", "user_id"),
        Index("ix_habits_parent_habit_id", "parent_habit_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_habit_id = Column(
        UUID(as_uuid=True),
        ForeignKey("habits.id", ondelete="CASCADE"),
        nullable=True,
    )
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    # Both NULL for one-time habits.
    frequency_unit = Column(String(length=10), nullable=True)
    frequency_quantity = Column(Integer, nullable=True)
    # Lower-case weekday names; only non-empty when frequency_quantity == 1.
    weekdays = Column(JSONBCompat, nullable=False, default=list)
    is_bad_habit = Column(Boolean, nullable=False, server_default=sa_text("false"), default=False)
    # Set for quantifiable habits, whose logs carry a numeric value.
    unit = Column(String(length=50), nullable=True)
    due_date = Column(Date, nullable=False)
    is_completed = Column(Boolean, nullable=False, server_default=sa_text("false"), default=False)
    is_active = Column(Boolean, nullable=False, server_default=sa_text("true"), default=True)
    position = Column(Integer, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    logs = relationship(
        "HabitLog",
        back_populates="habit",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="HabitLog.date",
    )
    tags = relationship("Tag", secondary=habit_tags, back_populates="habits")
    parent = relationship("Habit", remote_side=[id], back_populates="children")
    children = relationship(
        "Habit",
        back_populates="parent",
        cascade="all",
        passive_deletes=True,
        order_by="Habit.position",
    )

    @property
    def is_recurring(self) -> bool:
        return self.frequency_unit is not None and self.frequency_quantity is not None

    @property
    def is_quantifiable(self) -> bool:
        return bool(self.unit)
