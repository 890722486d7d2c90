"""UserFact ORM model with a global soft-delete filter."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, Index, String, Text, event, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from app.db.base import Base
from app.db.types import UTCDateTime


class UserFact(Base):
    __tablename__ = "user_facts"
    __table_args__ = (Index("ix_user_facts_user_id", "user_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    fact_text = Column(Text, nullable=False)
    category = Column(String(length=20), nullable=True)
    extracted_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(UTCDateTime, nullable=True)
    is_deleted = Column(Boolean, nullable=False, server_default=sa_text("false"), default=False)
    deleted_at = Column(UTCDateTime, nullable=True)


@event.listens_for(Session, "do_orm_execute")
def _exclude_deleted_facts(execute_state: ORMExecuteState) -> None:
    """Hide soft-deleted facts from every ORM select unless include_deleted=True."""
    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
        and not execute_state.execution_options.get("include_deleted", False)
    ):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(UserFact, lambda cls: cls.is_deleted.is_(False), include_aliases=True)
        )
