"""HabitLog ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, Float, ForeignKey, Index, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.db.types import UTCDateTime


class HabitLog(Base):
    __tablename__ = "habit_logs"
    __table_args__ = (Index("ix_habit_logs_habit_id_date", "habit_id", "date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    habit_id = Column(UUID(as_uuid=True), ForeignKey("habits.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    value = Column(Float, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())

    habit = relationship("Habit", back_populates="logs")
