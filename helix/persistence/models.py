"""
Progress store models.

SQLAlchemy models for the relational progress store:
- Per-stitch position rows keyed by (user_id, thread_id, stitch_id)
- Session results feeding profile aggregates
- Profiles with cumulative points and session counts
- Latest full progress-state snapshot per owner
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class UserStitchProgress(Base):
    """
    Position and readiness of one stitch for one owner.

    Writes are idempotent upserts on the primary key, so retried and
    out-of-order writes for the same stitch converge on the last one.
    """

    __tablename__ = "user_stitch_progress"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    thread_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    stitch_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    order_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skip_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    distractor_level: Mapped[str] = mapped_column(String(2), nullable=False, default="L1")
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserStitchProgress {self.user_id}/{self.stitch_id} @{self.order_number}>"


class SessionResult(Base):
    """Outcome of one learning session."""

    __tablename__ = "session_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    total_points: Mapped[int] = mapped_column(Integer, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, default=0)
    total_questions: Mapped[int] = mapped_column(Integer, default=0)
    stitches_completed: Mapped[int] = mapped_column(Integer, default=0)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)

    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Profile(Base):
    """Cumulative per-owner aggregates."""

    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(Text)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    total_sessions: Mapped[int] = mapped_column(Integer, default=0)
    last_session_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class UserState(Base):
    """Latest full progress-state snapshot for an owner."""

    __tablename__ = "user_state"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
