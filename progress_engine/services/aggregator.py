"""Progress aggregation: fold validated events into versioned aggregates.

Two layers:

  apply_topic_event / apply_path_event / apply_streak_day
      Pure transformations.  Given the current aggregate (or None when the
      user has never touched the topic/path) and an event, return the next
      aggregate.  Returning the SAME object means "no-op": the event was a
      redelivery, or asked for a state the aggregate is already in.

  ProgressAggregator
      Persists the result through the store's compare-and-set.  On a
      version mismatch it re-reads and re-runs the pure transformation,
      with exponential backoff, up to `max_attempts`; then raises
      ConcurrencyExhausted so the caller can redeliver the event.

Rules worth knowing:
  - topic_started on an in_progress/completed topic is a no-op
  - topic_completed for a depth already recorded is a no-op, so depth
    completions converge whatever order they arrive in
  - topic_bookmarked sets the requested end state; it never flips
  - only topic_reset can shrink depth_levels_completed
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import date, datetime
from typing import TypeVar

from progress_engine.core.errors import ConcurrencyExhausted
from progress_engine.core.metrics import CAS_CONFLICTS
from progress_engine.models.catalog import ContentCatalog
from progress_engine.models.event import DEPTH_LEVELS, Event
from progress_engine.models.progress import (
    AggregateUpdate,
    PathProgress,
    StreakData,
    TopicProgress,
)
from progress_engine.repos.progress_repo import ProgressStore

logger = logging.getLogger(__name__)

A = TypeVar("A", TopicProgress, PathProgress, StreakData)


# ---------------------------------------------------------------------------
# Pure transformations
# ---------------------------------------------------------------------------


def completion_percentage(depth_count: int) -> int:
    return round(100 * depth_count / len(DEPTH_LEVELS))


def _touch(t: TopicProgress, ts: datetime) -> TopicProgress:
    # min/max keep visit bounds independent of delivery order
    first = ts if t.first_visited is None else min(t.first_visited, ts)
    last = ts if t.last_visited is None else max(t.last_visited, ts)
    return replace(t, first_visited=first, last_visited=last)


def _topic_started(t: TopicProgress, event: Event) -> TopicProgress:
    if t.status != "not_started":
        return t
    return replace(_touch(t, event.timestamp), status="in_progress")


def _topic_completed(t: TopicProgress, event: Event) -> TopicProgress:
    depth = event.payload["depth"]
    if depth in t.depth_levels_completed:
        return t
    depths = t.depth_levels_completed | {depth}
    return replace(
        _touch(t, event.timestamp),
        depth_levels_completed=depths,
        completion_percentage=completion_percentage(len(depths)),
        status="completed" if len(depths) == len(DEPTH_LEVELS) else "in_progress",
        time_spent_seconds=t.time_spent_seconds + event.payload.get("time_spent_seconds", 0),
    )


def _topic_bookmarked(t: TopicProgress, event: Event) -> TopicProgress:
    wanted = event.payload["action"] == "add"
    if t.bookmarked == wanted:
        return t
    return replace(t, bookmarked=wanted)


def _topic_visited(t: TopicProgress, event: Event) -> TopicProgress:
    visited = _touch(t, event.timestamp)
    spent = event.payload.get("time_spent_seconds", 0)
    if spent:
        visited = replace(visited, time_spent_seconds=t.time_spent_seconds + spent)
    return t if visited == t else visited


def _topic_rated(t: TopicProgress, event: Event) -> TopicProgress:
    rating = event.payload["rating"]
    if t.rating == rating:
        return t
    return replace(t, rating=rating)


def _topic_reset(t: TopicProgress, event: Event) -> TopicProgress:
    if t.status == "not_started" and not t.depth_levels_completed:
        return t
    return replace(
        t,
        status="not_started",
        depth_levels_completed=frozenset(),
        completion_percentage=0,
    )


_TOPIC_RULES: dict[str, Callable[[TopicProgress, Event], TopicProgress]] = {
    "topic_started": _topic_started,
    "topic_completed": _topic_completed,
    "topic_bookmarked": _topic_bookmarked,
    "topic_visited": _topic_visited,
    "topic_rated": _topic_rated,
    "topic_reset": _topic_reset,
}


def apply_topic_event(current: TopicProgress | None, event: Event) -> TopicProgress:
    """Return the next topic aggregate, or `current` itself for a no-op.

    An untracked topic is created at version 0 before the rule runs, and the
    creation is always persisted (even if the rule itself changes nothing).
    """
    if event.topic_id is None:
        raise ValueError(f"{event.type} event {event.event_id} has no topic_id")
    if current is not None and event.event_id in current.applied_event_ids:
        return current

    base = current or TopicProgress.new(user_id=event.user_id, topic_id=event.topic_id)
    updated = _TOPIC_RULES[event.type](base, event)
    if current is not None and updated is base:
        return current
    return replace(
        updated,
        applied_event_ids=base.applied_event_ids | {event.event_id},
        version=base.version + 1,
    )


def apply_path_event(
    current: PathProgress | None, event: Event, total_steps: int
) -> PathProgress:
    if event.path_id is None:
        raise ValueError(f"{event.type} event {event.event_id} has no path_id")
    if current is not None and event.event_id in current.applied_event_ids:
        return current

    base = current or PathProgress.new(
        user_id=event.user_id, path_id=event.path_id, total_steps=total_steps
    )
    ts = event.timestamp
    updated = base

    if event.type == "path_started":
        if base.status == "not_started":
            updated = replace(
                base,
                status="in_progress",
                started_at=ts if base.started_at is None else min(base.started_at, ts),
                last_accessed_at=_later(base.last_accessed_at, ts),
            )

    elif event.type == "path_step_completed":
        step = event.payload["step"]
        if step not in base.steps_completed:
            steps = base.steps_completed | {step}
            newest = base.last_accessed_at is None or ts >= base.last_accessed_at
            updated = replace(
                base,
                steps_completed=steps,
                status="completed" if len(steps) >= base.total_steps else "in_progress",
                current_step=step if newest else base.current_step,
                started_at=base.started_at or ts,
                last_accessed_at=_later(base.last_accessed_at, ts),
            )

    elif event.type == "path_reset":
        if base.steps_completed or base.status != "not_started":
            updated = replace(
                base, status="not_started", current_step=0, steps_completed=frozenset()
            )

    if current is not None and updated is base:
        return current
    return replace(
        updated,
        applied_event_ids=base.applied_event_ids | {event.event_id},
        version=base.version + 1,
    )


def apply_streak_day(current: StreakData | None, user_id: str, day: date) -> StreakData:
    """Extend, restart or keep a streak for activity on `day` (UTC).

    Same day or an earlier day (late delivery) leaves the streak alone.
    """
    base = current or StreakData(user_id=user_id)
    last = base.last_active_date

    if last is not None and day <= last:
        return base
    if last is not None and (day - last).days == 1:
        streak = base.current + 1
    else:
        streak = 1
    return replace(
        base,
        current=streak,
        longest=max(base.longest, streak),
        last_active_date=day,
        version=base.version + 1,
    )


def _later(current: datetime | None, ts: datetime) -> datetime:
    return ts if current is None else max(current, ts)


# ---------------------------------------------------------------------------
# Persistence with optimistic concurrency
# ---------------------------------------------------------------------------


class ProgressAggregator:
    def __init__(
        self,
        store: ProgressStore,
        *,
        max_attempts: int = 5,
        backoff_seconds: float = 0.01,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds

    async def apply(self, event: Event, catalog: ContentCatalog) -> AggregateUpdate:
        topic: TopicProgress | None = None
        path: PathProgress | None = None
        streak: StreakData | None = None
        changed = False

        if event.is_topic_event:
            topic_id = event.topic_id or ""
            topic, changed = await self._cas_loop(
                "topic",
                f"{event.user_id}/{topic_id}",
                lambda: self._store.get_topic(event.user_id, topic_id),
                lambda current: apply_topic_event(current, event),
                self._store.compare_and_set_topic,
            )
            if event.type == "topic_completed":
                streak, _ = await self._cas_loop(
                    "streak",
                    event.user_id,
                    lambda: self._store.get_streak(event.user_id),
                    lambda current: apply_streak_day(
                        current, event.user_id, event.timestamp.date()
                    ),
                    self._store.compare_and_set_streak,
                )

        elif event.is_path_event:
            path_id = event.path_id or ""
            meta = catalog.path(path_id)
            if meta is None:
                raise ValueError(f"path {path_id!r} vanished from the catalog")
            path, changed = await self._cas_loop(
                "path",
                f"{event.user_id}/{path_id}",
                lambda: self._store.get_path(event.user_id, path_id),
                lambda current: apply_path_event(current, event, meta.total_steps),
                self._store.compare_and_set_path,
            )

        return AggregateUpdate(
            event_id=event.event_id,
            user_id=event.user_id,
            changed=changed,
            topic=topic,
            path=path,
            streak=streak,
        )

    async def _cas_loop(
        self,
        kind: str,
        key: str,
        read: Callable[[], Awaitable[A | None]],
        transform: Callable[[A | None], A],
        write: Callable[[A, int], Awaitable[bool]],
    ) -> tuple[A | None, bool]:
        for attempt in range(1, self._max_attempts + 1):
            current = await read()
            updated = transform(current)
            if updated is current:
                return current, False

            expected = 0 if current is None else current.version
            if await write(updated, expected):
                return updated, True

            CAS_CONFLICTS.labels(aggregate=kind).inc()
            logger.info(
                "Version conflict on %s %s (expected v%d), retrying",
                kind,
                key,
                expected,
                extra={"attempt": attempt},
            )
            if attempt < self._max_attempts:
                await asyncio.sleep(self._backoff * 2 ** (attempt - 1))

        logger.warning("Compare-and-set exhausted on %s %s", kind, key)
        raise ConcurrencyExhausted(kind, key, self._max_attempts)
