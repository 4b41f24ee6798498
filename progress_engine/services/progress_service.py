"""Read side: progress snapshots, statistics, streak status, user context.

Everything here is derived on demand from the Progress Store and the
unlock repo; nothing is written back.  The HTTP layer caches snapshots
(see api/progress.py) and the pipeline drops that cache after each
processed event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal

from progress_engine.models.achievement import UnlockRecord
from progress_engine.models.progress import PathProgress, StreakData, TopicProgress
from progress_engine.models.ranking import UserContext
from progress_engine.repos.progress_repo import ProgressStore
from progress_engine.repos.unlock_repo import UnlockRepo

StreakState = Literal["safe", "warning", "lost", "none"]

STREAK_MILESTONES: tuple[tuple[int, str], ...] = (
    (3, "3-Day Starter"),
    (7, "Week Warrior"),
    (14, "Two-Week Titan"),
    (30, "Monthly Master"),
    (60, "Bi-Monthly Beast"),
    (100, "Century Champion"),
    (365, "Year-Long Legend"),
)


@dataclass(frozen=True, slots=True)
class StreakStatus:
    state: StreakState
    current: int
    longest: int
    next_milestone_days: int | None = None
    next_milestone_name: str | None = None


@dataclass(frozen=True, slots=True)
class ProgressStatistics:
    topics_started: int
    topics_completed: int
    depth_levels_completed: int
    time_spent_seconds: int
    first_activity: datetime | None
    paths_started: int
    paths_completed: int
    points: int


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    user_id: str
    topics: tuple[TopicProgress, ...]
    paths: tuple[PathProgress, ...]
    statistics: ProgressStatistics
    streak: StreakStatus
    unlocks: tuple[UnlockRecord, ...]


def streak_status(streak: StreakData | None, today: date) -> StreakStatus:
    """`safe` if active today, `warning` if last active yesterday, `lost`
    if older (current drops to 0), `none` if never active."""
    if streak is None or streak.last_active_date is None:
        return StreakStatus("none", 0, 0, *_next_milestone(0))

    gap = (today - streak.last_active_date).days
    if gap <= 0:
        state: StreakState = "safe"
        current = streak.current
    elif gap == 1:
        state = "warning"
        current = streak.current
    else:
        state = "lost"
        current = 0
    return StreakStatus(state, current, streak.longest, *_next_milestone(current))


def _next_milestone(current: int) -> tuple[int | None, str | None]:
    for days, name in STREAK_MILESTONES:
        if current < days:
            return days, name
    return None, None


def compute_statistics(
    topics: list[TopicProgress], paths: list[PathProgress], unlocks: list[UnlockRecord]
) -> ProgressStatistics:
    visits = [t.first_visited for t in topics if t.first_visited is not None]
    visits += [p.started_at for p in paths if p.started_at is not None]
    return ProgressStatistics(
        topics_started=sum(1 for t in topics if t.status != "not_started"),
        topics_completed=sum(1 for t in topics if t.status == "completed"),
        depth_levels_completed=sum(len(t.depth_levels_completed) for t in topics),
        time_spent_seconds=sum(t.time_spent_seconds for t in topics),
        first_activity=min(visits) if visits else None,
        paths_started=sum(1 for p in paths if p.status != "not_started"),
        paths_completed=sum(1 for p in paths if p.status == "completed"),
        points=sum(u.points for u in unlocks),
    )


async def get_progress(
    store: ProgressStore, unlocks: UnlockRepo, user_id: str, today: date
) -> ProgressSnapshot:
    topics = sorted(await store.list_topics(user_id), key=lambda t: t.topic_id)
    paths = sorted(await store.list_paths(user_id), key=lambda p: p.path_id)
    records = await unlocks.list_for_user(user_id)
    return ProgressSnapshot(
        user_id=user_id,
        topics=tuple(topics),
        paths=tuple(paths),
        statistics=compute_statistics(topics, paths, records),
        streak=streak_status(await store.get_streak(user_id), today),
        unlocks=tuple(sorted(records, key=lambda r: r.unlocked_at)),
    )


async def build_user_context(
    store: ProgressStore,
    user_id: str,
    *,
    persona: str | None = None,
    current_phase: str | None = None,
) -> UserContext:
    topics = await store.list_topics(user_id)
    return UserContext(
        user_id=user_id,
        persona=persona,
        current_phase=current_phase,
        completed_topics=frozenset(t.topic_id for t in topics if t.status == "completed"),
        bookmarked_topics=frozenset(t.topic_id for t in topics if t.bookmarked),
    )
