"""Inbound event validation and normalization.

Turns a raw event payload into a typed Event, or raises ValidationError
naming the first field that failed.  No side effects.

Checks, in order:
  1. shape: required fields present and well-typed (pydantic)
  2. `type` is a known event type; unknown types are REJECTED, not dropped,
     so schema drift between producers and this service shows up at once
  3. `timestamp` is no further in the future than the clock-skew window and
     no older than the maximum event age
  4. referenced topic/path exists in the content catalog
  5. per-type payload rules (depth, bookmark action, rating, step index)

Producers may send the analytics-catalog spelling (`name`, `properties`)
instead of (`type`, `payload`); both are accepted.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from progress_engine.core.errors import UnknownReference, ValidationError
from progress_engine.models.catalog import ContentCatalog
from progress_engine.models.event import (
    DEPTH_LEVELS,
    KNOWN_EVENT_TYPES,
    PATH_EVENT_TYPES,
    TOPIC_EVENT_TYPES,
    Event,
)

logger = logging.getLogger(__name__)

_BOOKMARK_ACTIONS = ("add", "remove")


class RawEvent(BaseModel):
    """Wire shape of an inbound event (first alias is the canonical name)."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    event_id: str = Field(
        min_length=1, validation_alias=AliasChoices("event_id", "eventId")
    )
    user_id: str = Field(min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    type: str = Field(min_length=1, validation_alias=AliasChoices("type", "name"))
    timestamp: datetime
    topic_id: str | None = Field(
        default=None, validation_alias=AliasChoices("topic_id", "topicId")
    )
    path_id: str | None = Field(
        default=None, validation_alias=AliasChoices("path_id", "pathId")
    )
    payload: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("payload", "properties")
    )


def validate_event(
    raw: Mapping[str, Any],
    catalog: ContentCatalog,
    *,
    now: datetime | None = None,
    max_clock_skew_seconds: int = 300,
    max_event_age_seconds: int = 7 * 24 * 3600,
) -> Event:
    try:
        return _validate(
            raw, catalog, now or datetime.now(UTC), max_clock_skew_seconds, max_event_age_seconds
        )
    except ValidationError as exc:
        logger.warning(
            "Rejected event field=%s reason=%s",
            exc.field,
            exc.message,
            extra={"event_id": raw.get("event_id") or raw.get("eventId")},
        )
        raise


def _validate(
    raw: Mapping[str, Any],
    catalog: ContentCatalog,
    now: datetime,
    max_clock_skew_seconds: int,
    max_event_age_seconds: int,
) -> Event:
    try:
        parsed = RawEvent.model_validate(raw)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "event"
        raise ValidationError(field, first["msg"]) from None

    if parsed.type not in KNOWN_EVENT_TYPES:
        raise ValidationError("type", f"unknown event type {parsed.type!r}")

    timestamp = _check_timestamp(
        parsed.timestamp,
        now,
        max_clock_skew_seconds,
        max_event_age_seconds,
    )

    payload = dict(parsed.payload)

    if parsed.type in TOPIC_EVENT_TYPES:
        if not parsed.topic_id:
            raise ValidationError("topic_id", f"required for {parsed.type}")
        topic = catalog.topic(parsed.topic_id)
        if topic is None:
            raise UnknownReference("topic_id", f"unknown topic {parsed.topic_id!r}")
        _check_topic_payload(parsed.type, payload, topic.depths)

    if parsed.type in PATH_EVENT_TYPES:
        if not parsed.path_id:
            raise ValidationError("path_id", f"required for {parsed.type}")
        path = catalog.path(parsed.path_id)
        if path is None:
            raise UnknownReference("path_id", f"unknown path {parsed.path_id!r}")
        if parsed.type == "path_step_completed":
            step = _require_int(payload, "step")
            if not 0 <= step < path.total_steps:
                raise ValidationError(
                    "payload.step", f"must be within [0, {path.total_steps})"
                )

    return Event(
        event_id=parsed.event_id,
        user_id=parsed.user_id,
        type=parsed.type,  # type: ignore[arg-type]
        timestamp=timestamp,
        topic_id=parsed.topic_id,
        path_id=parsed.path_id,
        payload=payload,
    )


def _check_timestamp(
    timestamp: datetime, now: datetime, skew_seconds: int, max_age_seconds: int
) -> datetime:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    timestamp = timestamp.astimezone(UTC)

    if timestamp > now + timedelta(seconds=skew_seconds):
        raise ValidationError("timestamp", "is in the future beyond allowed clock skew")
    if timestamp < now - timedelta(seconds=max_age_seconds):
        raise ValidationError("timestamp", "is older than the maximum event age")
    return timestamp


def _check_topic_payload(
    event_type: str, payload: dict[str, Any], available_depths: tuple[str, ...]
) -> None:
    if event_type == "topic_completed":
        depth = payload.get("depth")
        if depth not in DEPTH_LEVELS:
            raise ValidationError(
                "payload.depth", f"must be one of {', '.join(DEPTH_LEVELS)}"
            )
        if depth not in available_depths:
            raise ValidationError("payload.depth", f"topic has no {depth} content")

    elif event_type == "topic_bookmarked":
        if payload.get("action") not in _BOOKMARK_ACTIONS:
            raise ValidationError("payload.action", "must be 'add' or 'remove'")

    elif event_type == "topic_rated":
        rating = _require_int(payload, "rating")
        if not 1 <= rating <= 5:
            raise ValidationError("payload.rating", "must be within [1, 5]")

    if event_type in ("topic_visited", "topic_completed") and "time_spent_seconds" in payload:
        _require_int(payload, "time_spent_seconds")


def _require_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"payload.{key}", "must be an integer")
    if value < 0:
        raise ValidationError(f"payload.{key}", "must not be negative")
    return value
