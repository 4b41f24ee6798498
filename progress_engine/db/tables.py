"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in progress_engine/models/.
Repos convert between rows and dataclasses.  Every aggregate table carries
a `version` column: writes are conditional on it (see pg_progress_repo).
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from progress_engine.db.engine import Base


class TopicProgressRow(Base):
    __tablename__ = "topic_progress"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    topic_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="not_started"
    )  # not_started|in_progress|completed
    depth_levels_completed: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=[]
    )
    first_visited: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_visited: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bookmarked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    applied_event_ids: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=[]
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)


class PathProgressRow(Base):
    __tablename__ = "path_progress"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    path_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_started")
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    steps_completed: Mapped[list[int]] = mapped_column(
        ARRAY(Integer), nullable=False, default=[]
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_accessed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    applied_event_ids: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=[]
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)


class StreakRow(Base):
    __tablename__ = "streaks"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)


class UnlockRecordRow(Base):
    """Write-once: `unlocked` only ever goes from false to true."""

    __tablename__ = "unlock_records"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    definition_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)  # achievement|milestone
    unlocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    unlocked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    triggering_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
