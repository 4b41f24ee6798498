"""Progress read API.

GET /v1/progress/me is read-through cached:
  check cache -> miss -> build snapshot from the store -> populate -> return
The pipeline deletes `progress:<user_id>:*` after every processed event, so
the next read after an update is fresh; the TTL bounds staleness if that
delete is ever missed.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from progress_engine.api.dependencies import require_role, require_user
from progress_engine.core.metrics import CACHE_OPERATIONS
from progress_engine.models.achievement import UnlockRecord
from progress_engine.models.event import DEPTH_LEVELS
from progress_engine.models.principal import Principal
from progress_engine.services import runtime
from progress_engine.services.cache import cache_service
from progress_engine.services.progress_service import ProgressSnapshot, get_progress

router = APIRouter(tags=["progress"])

_PROGRESS_CACHE_TTL = 30


class TopicProgressOut(BaseModel):
    topic_id: str
    status: str
    depth_levels_completed: list[str]
    first_visited: datetime | None
    last_visited: datetime | None
    time_spent_seconds: int
    completion_percentage: int
    rating: int | None
    bookmarked: bool
    version: int


class PathProgressOut(BaseModel):
    path_id: str
    status: str
    current_step: int
    steps_completed: list[int]
    total_steps: int
    completion_percentage: int
    started_at: datetime | None
    last_accessed_at: datetime | None


class StatisticsOut(BaseModel):
    topics_started: int
    topics_completed: int
    depth_levels_completed: int
    time_spent_seconds: int
    first_activity: datetime | None
    paths_started: int
    paths_completed: int
    points: int


class StreakOut(BaseModel):
    state: str
    current: int
    longest: int
    next_milestone_days: int | None
    next_milestone_name: str | None


class UnlockOut(BaseModel):
    id: str
    kind: str
    points: int
    unlocked_at: datetime
    triggering_event_id: str


class ProgressOut(BaseModel):
    user_id: str
    topics: list[TopicProgressOut]
    paths: list[PathProgressOut]
    statistics: StatisticsOut
    streak: StreakOut
    unlocks: list[UnlockOut]


def _unlock_out(r: UnlockRecord) -> UnlockOut:
    return UnlockOut(
        id=r.definition_id,
        kind=r.kind,
        points=r.points,
        unlocked_at=r.unlocked_at,
        triggering_event_id=r.triggering_event_id,
    )


def _to_out(s: ProgressSnapshot) -> ProgressOut:
    return ProgressOut(
        user_id=s.user_id,
        topics=[
            TopicProgressOut(
                topic_id=t.topic_id,
                status=t.status,
                depth_levels_completed=[
                    d for d in DEPTH_LEVELS if d in t.depth_levels_completed
                ],
                first_visited=t.first_visited,
                last_visited=t.last_visited,
                time_spent_seconds=t.time_spent_seconds,
                completion_percentage=t.completion_percentage,
                rating=t.rating,
                bookmarked=t.bookmarked,
                version=t.version,
            )
            for t in s.topics
        ],
        paths=[
            PathProgressOut(
                path_id=p.path_id,
                status=p.status,
                current_step=p.current_step,
                steps_completed=sorted(p.steps_completed),
                total_steps=p.total_steps,
                completion_percentage=p.completion_percentage,
                started_at=p.started_at,
                last_accessed_at=p.last_accessed_at,
            )
            for p in s.paths
        ],
        statistics=StatisticsOut(
            topics_started=s.statistics.topics_started,
            topics_completed=s.statistics.topics_completed,
            depth_levels_completed=s.statistics.depth_levels_completed,
            time_spent_seconds=s.statistics.time_spent_seconds,
            first_activity=s.statistics.first_activity,
            paths_started=s.statistics.paths_started,
            paths_completed=s.statistics.paths_completed,
            points=s.statistics.points,
        ),
        streak=StreakOut(
            state=s.streak.state,
            current=s.streak.current,
            longest=s.streak.longest,
            next_milestone_days=s.streak.next_milestone_days,
            next_milestone_name=s.streak.next_milestone_name,
        ),
        unlocks=[_unlock_out(r) for r in s.unlocks],
    )


async def _cached_progress(user_id: str) -> ProgressOut:
    today = datetime.now(UTC).date()
    # the streak state depends on today's date, so it is part of the key
    cache_key = f"progress:{user_id}:{today.isoformat()}"

    cached = await cache_service.get(cache_key)
    if cached is not None:
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return ProgressOut(**json.loads(cached))
    CACHE_OPERATIONS.labels(operation="miss").inc()

    snapshot = await get_progress(runtime.progress_store, runtime.unlock_repo, user_id, today)
    out = _to_out(snapshot)
    await cache_service.set(cache_key, out.model_dump_json(), _PROGRESS_CACHE_TTL)
    return out


@router.get("/v1/progress/me", response_model=ProgressOut)
async def my_progress(
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    return await _cached_progress(principal.user_id)


@router.get("/v1/progress/me/unlocks", response_model=list[UnlockOut])
async def my_unlocks(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[UnlockOut]:
    records = await runtime.unlock_repo.list_for_user(principal.user_id)
    return [_unlock_out(r) for r in sorted(records, key=lambda r: r.unlocked_at)]


@router.get("/v1/users/{user_id}/progress", response_model=ProgressOut)
async def user_progress(
    user_id: str,
    _admin: Annotated[Principal, Depends(require_role("admin"))],
) -> ProgressOut:
    return await _cached_progress(user_id)
