"""Event ingestion.

  Client -> POST /v1/events
         -> validate against the catalog (422 on failure, nothing queued)
         -> ownership check (403 unless it is the caller's own event or
            the caller holds the `service` role)
         -> submit to the partitioned worker pool
         -> 202 Accepted

Processing is asynchronous: the 202 means "queued", not "applied".
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel, Field

from progress_engine.api.dependencies import get_engine_config, require_user
from progress_engine.core.config import SETTINGS
from progress_engine.core.errors import ValidationError
from progress_engine.core.metrics import EVENTS_PROCESSED
from progress_engine.models.event import KNOWN_EVENT_TYPES, Event
from progress_engine.models.principal import Principal
from progress_engine.services import runtime
from progress_engine.services.definitions import EngineConfig
from progress_engine.services.event_validator import validate_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/events", tags=["events"])

_MAX_BATCH = 500


class EventAccepted(BaseModel):
    event_id: str
    partition: int


class BatchIn(BaseModel):
    events: list[dict[str, Any]] = Field(min_length=1, max_length=_MAX_BATCH)


class BatchAccepted(BaseModel):
    accepted: list[EventAccepted]


def _validate_owned(
    raw: dict[str, Any], principal: Principal, config: EngineConfig, field_prefix: str = ""
) -> Event:
    try:
        event = validate_event(
            raw,
            config.catalog,
            max_clock_skew_seconds=SETTINGS.max_clock_skew_seconds,
            max_event_age_seconds=SETTINGS.max_event_age_seconds,
        )
    except ValidationError as exc:
        raw_type = raw.get("type") or raw.get("name")
        event_type = raw_type if raw_type in KNOWN_EVENT_TYPES else "unknown"
        EVENTS_PROCESSED.labels(event_type=event_type, result="rejected").inc()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail={"field": f"{field_prefix}{exc.field}", "message": exc.message},
        ) from None

    if event.user_id != principal.user_id and not principal.has_role("service"):
        logger.warning(
            "Event for another user rejected: caller=%s",
            principal.user_id,
            extra={"event_id": event.event_id, "user_id": event.user_id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot submit events for another user",
        )
    return event


async def _submit(event: Event) -> EventAccepted:
    try:
        partition = await runtime.worker_pool.submit(event)
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event processing is not running",
        ) from None
    return EventAccepted(event_id=event.event_id, partition=partition)


@router.post("", response_model=EventAccepted, status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(
    raw: Annotated[dict[str, Any], Body()],
    principal: Annotated[Principal, Depends(require_user)],
    config: Annotated[EngineConfig, Depends(get_engine_config)],
) -> EventAccepted:
    event = _validate_owned(raw, principal, config)
    return await _submit(event)


@router.post("/batch", response_model=BatchAccepted, status_code=status.HTTP_202_ACCEPTED)
async def ingest_batch(
    batch: BatchIn,
    principal: Annotated[Principal, Depends(require_user)],
    config: Annotated[EngineConfig, Depends(get_engine_config)],
) -> BatchAccepted:
    """All-or-nothing validation: one bad event rejects the whole batch
    before anything is queued."""
    events = [
        _validate_owned(raw, principal, config, field_prefix=f"events.{i}.")
        for i, raw in enumerate(batch.events)
    ]
    return BatchAccepted(accepted=[await _submit(e) for e in events])
