"""Aggregation rules and the compare-and-set retry loop.

Async code is driven with asyncio.run inside plain test functions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, date, datetime, timedelta
from itertools import permutations

import pytest
from prometheus_client import REGISTRY

from progress_engine.core.errors import ConcurrencyExhausted
from progress_engine.models.catalog import ContentCatalog
from progress_engine.models.event import Event
from progress_engine.models.progress import StreakData, TopicProgress
from progress_engine.repos.progress_repo import InMemoryProgressStore
from progress_engine.services.aggregator import (
    ProgressAggregator,
    apply_path_event,
    apply_streak_day,
    apply_topic_event,
    completion_percentage,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _event(event_type: str, event_id: str = "e1", ts: datetime = T0, **kwargs) -> Event:
    kwargs.setdefault("topic_id", "t1")
    return Event(event_id=event_id, user_id="u-1", type=event_type, timestamp=ts, **kwargs)


def _completed(depth: str, event_id: str, ts: datetime = T0, **payload) -> Event:
    return _event("topic_completed", event_id, ts, payload={"depth": depth, **payload})


def _fold(topic: TopicProgress | None, events: Iterable[Event]) -> TopicProgress:
    for event in events:
        topic = apply_topic_event(topic, event)
    assert topic is not None
    return topic


# ---- pure topic rules ----


def test_completion_percentage_rounds_thirds() -> None:
    assert [completion_percentage(n) for n in range(4)] == [0, 33, 67, 100]


def test_first_event_creates_aggregate_at_version_one() -> None:
    topic = apply_topic_event(None, _event("topic_started"))
    assert topic.status == "in_progress"
    assert topic.version == 1
    assert topic.first_visited == T0
    assert topic.applied_event_ids == frozenset({"e1"})


def test_duplicate_completion_is_a_noop() -> None:
    once = apply_topic_event(None, _completed("surface", "e1"))
    again = apply_topic_event(once, _completed("surface", "e1"))
    assert again is once
    assert once.depth_levels_completed == frozenset({"surface"})


def test_same_depth_from_a_new_event_is_a_noop() -> None:
    once = apply_topic_event(None, _completed("surface", "e1"))
    assert apply_topic_event(once, _completed("surface", "e2")) is once


def test_all_three_depths_complete_the_topic() -> None:
    topic = None
    for i, depth in enumerate(("surface", "mid-depth", "deep-water")):
        topic = apply_topic_event(topic, _completed(depth, f"e{i}"))
        assert topic.completion_percentage == completion_percentage(i + 1)
    assert topic is not None
    assert topic.status == "completed"
    assert topic.completion_percentage == 100
    assert topic.version == 3


def test_depth_completions_converge_in_any_order() -> None:
    events = [
        _completed("surface", "e1", T0 + timedelta(minutes=1), time_spent_seconds=60),
        _completed("mid-depth", "e2", T0 + timedelta(minutes=2), time_spent_seconds=90),
        _completed("deep-water", "e3", T0 + timedelta(minutes=3)),
    ]
    forward = _fold(None, events)
    assert forward.status == "completed"
    assert forward.completion_percentage == 100
    assert forward.first_visited == T0 + timedelta(minutes=1)
    assert forward.last_visited == T0 + timedelta(minutes=3)

    for order in permutations(events):
        assert _fold(None, order) == forward


def test_mixed_events_converge_in_any_order() -> None:
    events = [
        _event("topic_visited", "v1", T0, payload={"time_spent_seconds": 30}),
        _event("topic_bookmarked", "b1", T0 + timedelta(minutes=1), payload={"action": "add"}),
        _event("topic_rated", "r1", T0 + timedelta(minutes=2), payload={"rating": 4}),
        _completed("surface", "e1", T0 + timedelta(minutes=3)),
        _completed("mid-depth", "e2", T0 + timedelta(minutes=4)),
        _completed("deep-water", "e3", T0 + timedelta(minutes=5)),
    ]
    expected = _fold(None, events)
    assert expected.version == len(events)

    for order in permutations(events):
        assert _fold(None, order) == expected


def test_completion_never_decreases_without_a_reset() -> None:
    events = [
        _event("topic_started", "s1", T0),
        _event("topic_visited", "v1", T0 + timedelta(minutes=1), payload={"time_spent_seconds": 9}),
        _completed("surface", "e1", T0 + timedelta(minutes=2)),
        _completed("mid-depth", "e2", T0 + timedelta(minutes=3)),
        _completed("deep-water", "e3", T0 + timedelta(minutes=4)),
        _event("topic_bookmarked", "b1", T0 + timedelta(minutes=5), payload={"action": "add"}),
        _event("topic_rated", "r1", T0 + timedelta(minutes=6), payload={"rating": 5}),
    ]

    for order in permutations(events):
        topic = None
        previous = 0
        depths: frozenset[str] = frozenset()
        for event in order:
            topic = apply_topic_event(topic, event)
            assert topic.completion_percentage >= previous
            assert topic.depth_levels_completed >= depths
            previous = topic.completion_percentage
            depths = topic.depth_levels_completed
        assert topic is not None and topic.completion_percentage == 100


def test_started_on_completed_topic_is_a_noop() -> None:
    topic = None
    for i, depth in enumerate(("surface", "mid-depth", "deep-water")):
        topic = apply_topic_event(topic, _completed(depth, f"e{i}"))
    assert apply_topic_event(topic, _event("topic_started", "e9")) is topic


def test_bookmark_sets_end_state_and_does_not_toggle() -> None:
    added = apply_topic_event(None, _event("topic_bookmarked", "b1", payload={"action": "add"}))
    assert added.bookmarked is True
    again = apply_topic_event(added, _event("topic_bookmarked", "b2", payload={"action": "add"}))
    assert again is added
    removed = apply_topic_event(
        added, _event("topic_bookmarked", "b3", payload={"action": "remove"})
    )
    assert removed.bookmarked is False


def test_visit_accumulates_time_spent() -> None:
    topic = apply_topic_event(
        None, _event("topic_visited", "v1", payload={"time_spent_seconds": 30})
    )
    topic = apply_topic_event(
        topic, _event("topic_visited", "v2", payload={"time_spent_seconds": 45})
    )
    assert topic.time_spent_seconds == 75


def test_rating_overwrites_previous_rating() -> None:
    topic = apply_topic_event(None, _event("topic_rated", "r1", payload={"rating": 2}))
    topic = apply_topic_event(topic, _event("topic_rated", "r2", payload={"rating": 5}))
    assert topic.rating == 5


def test_reset_clears_depths_but_keeps_bookmark_and_time() -> None:
    topic = apply_topic_event(
        None, _completed("surface", "e1", time_spent_seconds=120)
    )
    topic = apply_topic_event(
        topic, _event("topic_bookmarked", "b1", payload={"action": "add"})
    )
    reset = apply_topic_event(topic, _event("topic_reset", "x1"))
    assert reset.status == "not_started"
    assert reset.depth_levels_completed == frozenset()
    assert reset.completion_percentage == 0
    assert reset.bookmarked is True
    assert reset.time_spent_seconds == 120


def test_topic_event_without_topic_id_is_a_programming_error() -> None:
    with pytest.raises(ValueError):
        apply_topic_event(None, _event("topic_started", topic_id=None))


# ---- pure path rules ----


def _path_event(event_type: str, event_id: str, ts: datetime = T0, **payload) -> Event:
    return Event(
        event_id=event_id,
        user_id="u-1",
        type=event_type,
        timestamp=ts,
        path_id="new-developer",
        payload=payload,
    )


def test_path_completes_when_every_step_is_done() -> None:
    path = None
    for step in range(4):
        path = apply_path_event(
            path, _path_event("path_step_completed", f"s{step}", step=step), total_steps=4
        )
    assert path is not None
    assert path.status == "completed"
    assert path.completion_percentage == 100


def test_current_step_follows_newest_event_not_arrival_order() -> None:
    late = _path_event("path_step_completed", "s2", T0 + timedelta(minutes=5), step=2)
    early = _path_event("path_step_completed", "s1", T0, step=1)
    path = apply_path_event(None, late, total_steps=4)
    path = apply_path_event(path, early, total_steps=4)
    assert path.current_step == 2
    assert path.steps_completed == frozenset({1, 2})
    assert path.status == "in_progress"


def test_path_reset_clears_steps() -> None:
    path = apply_path_event(None, _path_event("path_step_completed", "s0", step=0), 4)
    reset = apply_path_event(path, _path_event("path_reset", "r1"), 4)
    assert reset.steps_completed == frozenset()
    assert reset.status == "not_started"
    assert reset.version == path.version + 1


# ---- streaks ----


def test_streak_extends_on_consecutive_days() -> None:
    streak = apply_streak_day(None, "u-1", date(2026, 3, 1))
    streak = apply_streak_day(streak, "u-1", date(2026, 3, 2))
    streak = apply_streak_day(streak, "u-1", date(2026, 3, 3))
    assert (streak.current, streak.longest) == (3, 3)


def test_streak_restarts_after_a_gap_and_keeps_longest() -> None:
    streak = StreakData(user_id="u-1", current=5, longest=5, last_active_date=date(2026, 3, 1))
    restarted = apply_streak_day(streak, "u-1", date(2026, 3, 4))
    assert (restarted.current, restarted.longest) == (1, 5)


def test_same_or_earlier_day_leaves_streak_alone() -> None:
    streak = StreakData(user_id="u-1", current=2, longest=2, last_active_date=date(2026, 3, 2))
    assert apply_streak_day(streak, "u-1", date(2026, 3, 2)) is streak
    assert apply_streak_day(streak, "u-1", date(2026, 3, 1)) is streak


# ---- ProgressAggregator ----


def test_apply_persists_topic_and_streak(catalog: ContentCatalog) -> None:
    store = InMemoryProgressStore()
    aggregator = ProgressAggregator(store)

    update = asyncio.run(aggregator.apply(_completed("surface", "e1"), catalog))

    assert update.changed is True
    assert update.topic is not None and update.topic.version == 1
    assert asyncio.run(store.get_topic("u-1", "t1")) == update.topic
    streak = asyncio.run(store.get_streak("u-1"))
    assert streak is not None and streak.current == 1


def test_redelivered_event_reports_unchanged(catalog: ContentCatalog) -> None:
    store = InMemoryProgressStore()
    aggregator = ProgressAggregator(store)
    event = _completed("surface", "e1")

    asyncio.run(aggregator.apply(event, catalog))
    second = asyncio.run(aggregator.apply(event, catalog))

    assert second.changed is False
    assert second.topic is not None and second.topic.version == 1


class _ConflictingStore(InMemoryProgressStore):
    """Lose the first `conflicts` topic writes to a concurrent writer."""

    def __init__(self, conflicts: int) -> None:
        super().__init__()
        self.conflicts = conflicts

    async def compare_and_set_topic(self, progress: TopicProgress, expected_version: int) -> bool:
        if self.conflicts > 0:
            self.conflicts -= 1
            # someone else bookmarked the topic in between
            rival = replace(
                progress,
                bookmarked=True,
                depth_levels_completed=frozenset(),
                completion_percentage=0,
                status="not_started",
                applied_event_ids=frozenset({f"rival-{self.conflicts}"}),
                version=expected_version + 1,
            )
            await super().compare_and_set_topic(rival, expected_version)
            return False
        return await super().compare_and_set_topic(progress, expected_version)


def _cas_conflicts() -> float:
    value = REGISTRY.get_sample_value("progress_cas_conflicts_total", {"aggregate": "topic"})
    return value or 0.0


def test_version_conflict_is_retried_against_fresh_state(catalog: ContentCatalog) -> None:
    store = _ConflictingStore(conflicts=1)
    aggregator = ProgressAggregator(store, backoff_seconds=0)
    before = _cas_conflicts()

    update = asyncio.run(aggregator.apply(_completed("surface", "e1"), catalog))

    assert _cas_conflicts() - before == 1
    assert update.topic is not None
    # both writers' effects survive
    assert update.topic.bookmarked is True
    assert update.topic.depth_levels_completed == frozenset({"surface"})
    assert update.topic.version == 2


def test_conflicts_beyond_max_attempts_raise(catalog: ContentCatalog) -> None:
    store = _ConflictingStore(conflicts=10)
    aggregator = ProgressAggregator(store, max_attempts=3, backoff_seconds=0)

    with pytest.raises(ConcurrencyExhausted) as exc_info:
        asyncio.run(aggregator.apply(_completed("surface", "e1"), catalog))
    assert exc_info.value.retryable is True
    assert exc_info.value.attempts == 3
