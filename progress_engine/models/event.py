from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

DepthLevel = Literal["surface", "mid-depth", "deep-water"]

# Canonical order, shallowest first.  Index doubles as the depth rank.
DEPTH_LEVELS: tuple[DepthLevel, ...] = ("surface", "mid-depth", "deep-water")


def depth_rank(depth: str) -> int:
    return DEPTH_LEVELS.index(depth)  # type: ignore[arg-type]


EventType = Literal[
    "topic_started",
    "topic_completed",
    "topic_bookmarked",
    "topic_visited",
    "topic_rated",
    "topic_reset",
    "path_started",
    "path_step_completed",
    "path_reset",
]

TOPIC_EVENT_TYPES: frozenset[str] = frozenset(
    {
        "topic_started",
        "topic_completed",
        "topic_bookmarked",
        "topic_visited",
        "topic_rated",
        "topic_reset",
    }
)
PATH_EVENT_TYPES: frozenset[str] = frozenset(
    {"path_started", "path_step_completed", "path_reset"}
)
KNOWN_EVENT_TYPES: frozenset[str] = TOPIC_EVENT_TYPES | PATH_EVENT_TYPES


@dataclass(frozen=True, slots=True)
class Event:
    """A validated interaction event, the unit of input to the aggregator.

    Producers own `event_id` uniqueness; the engine uses it to drop
    redeliveries of events that already changed an aggregate.
    """

    event_id: str
    user_id: str
    type: EventType
    timestamp: datetime  # always timezone-aware UTC
    topic_id: str | None = None
    path_id: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_topic_event(self) -> bool:
        return self.type in TOPIC_EVENT_TYPES

    @property
    def is_path_event(self) -> bool:
        return self.type in PATH_EVENT_TYPES
