"""
Study engine tables.

- items: Content definitions (body is the kind-specific prompt + answer key)
- schedule_states: One SM-2 state per learner/item, optimistic version column
- attempts: Append-only answer log
- study_sessions: Session bookkeeping and close-out metrics
- learner_profiles: Timezone and streak
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


def _uuid() -> str:
    return str(uuid4())


class ItemRow(Base):
    """A study item."""

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    slug: Mapped[str | None] = mapped_column(Text)
    topic: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(Text, nullable=False)  # mcq, order, fitb, plan, insight
    difficulty: Mapped[str] = mapped_column(Text, nullable=False, default="M")
    body: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    est_seconds: Mapped[int | None] = mapped_column(Integer)

    def __repr__(self) -> str:
        return f"<ItemRow(id={self.id}, kind={self.kind}, topic={self.topic})>"


class ScheduleStateRow(Base):
    """Review schedule for one learner/item pair."""

    __tablename__ = "schedule_states"
    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_schedule_user_item"),
        Index("ix_schedule_user_due", "user_id", "next_due"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    item_id: Mapped[str] = mapped_column(ForeignKey("items.id", ondelete="CASCADE"), nullable=False)
    ease: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_due: Mapped[datetime]
    last_grade: Mapped[int | None] = mapped_column(Integer)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<ScheduleStateRow(user={self.user_id}, item={self.item_id}, due={self.next_due})>"


class AttemptRow(Base):
    """One submitted answer."""

    __tablename__ = "attempts"
    __table_args__ = (
        Index("ix_attempts_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    item_id: Mapped[str] = mapped_column(ForeignKey("items.id", ondelete="CASCADE"), nullable=False)
    session_id: Mapped[str | None] = mapped_column(ForeignKey("study_sessions.id", ondelete="SET NULL"))
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    self_reported_grade: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    correct: Mapped[bool | None] = mapped_column(Boolean)
    feedback: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    response_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    timed_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime]


class StudySessionRow(Base):
    """Bookkeeping for one study session."""

    __tablename__ = "study_sessions"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    planned_size: Mapped[int] = mapped_column(Integer, nullable=False)
    served_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    new_item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    accuracy: Mapped[float | None] = mapped_column(Float)
    mean_latency_ms: Mapped[float | None] = mapped_column(Float)
    started_at: Mapped[datetime]
    ended_at: Mapped[datetime | None]

    def __repr__(self) -> str:
        return f"<StudySessionRow(id={self.id}, user={self.user_id}, served={len(self.served_ids)})>"


class LearnerProfileRow(Base):
    """Per-learner timezone and streak."""

    __tablename__ = "learner_profiles"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    timezone: Mapped[str] = mapped_column(Text, nullable=False)
    streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_on: Mapped[date | None]
