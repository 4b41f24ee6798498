from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal

from progress_engine.models.event import DepthLevel, depth_rank

ProgressStatus = Literal["not_started", "in_progress", "completed"]


@dataclass(frozen=True, slots=True)
class TopicProgress:
    """Versioned aggregate for one (user, topic).

    Invariants:
      - status == "completed"  =>  completion_percentage == 100
      - depth_levels_completed only grows, except through a topic_reset event
      - version increases by one per successful write (optimistic concurrency)

    `applied_event_ids` records the events that changed this aggregate so a
    redelivered event is a no-op.
    """

    user_id: str
    topic_id: str
    status: ProgressStatus = "not_started"
    depth_levels_completed: frozenset[DepthLevel] = frozenset()
    first_visited: datetime | None = None
    last_visited: datetime | None = None
    time_spent_seconds: int = 0
    completion_percentage: int = 0
    rating: int | None = None
    bookmarked: bool = False
    applied_event_ids: frozenset[str] = frozenset()
    version: int = 0

    @staticmethod
    def new(*, user_id: str, topic_id: str) -> TopicProgress:
        return TopicProgress(user_id=user_id, topic_id=topic_id)

    def has_depth_at_least(self, depth: DepthLevel) -> bool:
        floor = depth_rank(depth)
        return any(depth_rank(d) >= floor for d in self.depth_levels_completed)


@dataclass(frozen=True, slots=True)
class PathProgress:
    """Versioned aggregate for one (user, learning path).

    Invariants: steps_completed ⊆ [0, total_steps);
    status == "completed"  <=>  len(steps_completed) == total_steps.
    """

    user_id: str
    path_id: str
    total_steps: int
    status: ProgressStatus = "not_started"
    current_step: int = 0
    steps_completed: frozenset[int] = frozenset()
    started_at: datetime | None = None
    last_accessed_at: datetime | None = None
    applied_event_ids: frozenset[str] = frozenset()
    version: int = 0

    @staticmethod
    def new(*, user_id: str, path_id: str, total_steps: int) -> PathProgress:
        return PathProgress(user_id=user_id, path_id=path_id, total_steps=total_steps)

    @property
    def completion_percentage(self) -> int:
        if self.total_steps == 0:
            return 0
        return round(100 * len(self.steps_completed) / self.total_steps)


@dataclass(frozen=True, slots=True)
class StreakData:
    """Consecutive active days for a user, keyed on UTC calendar dates."""

    user_id: str
    current: int = 0
    longest: int = 0
    last_active_date: date | None = None
    version: int = 0


@dataclass(frozen=True, slots=True)
class AggregateUpdate:
    """What the aggregator did with one event.

    `changed` is False when the event was a no-op (duplicate, already in the
    requested state); the aggregates are still the current persisted ones.
    """

    event_id: str
    user_id: str
    changed: bool
    topic: TopicProgress | None = None
    path: PathProgress | None = None
    streak: StreakData | None = None
