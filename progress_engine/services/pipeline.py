"""One validated event through the engine: aggregate, unlock, invalidate."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from progress_engine.core.metrics import EVENT_PROCESSING_DURATION, EVENTS_PROCESSED
from progress_engine.models.achievement import UnlockRecord
from progress_engine.models.event import Event
from progress_engine.models.progress import AggregateUpdate
from progress_engine.services.aggregator import ProgressAggregator
from progress_engine.services.cache import CacheService
from progress_engine.services.definitions import ConfigRegistry
from progress_engine.services.unlock_coordinator import UnlockCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProcessResult:
    update: AggregateUpdate
    unlocked: tuple[UnlockRecord, ...] = ()


def snapshot_cache_pattern(user_id: str) -> str:
    return f"progress:{user_id}:*"


class EventPipeline:
    def __init__(
        self,
        aggregator: ProgressAggregator,
        coordinator: UnlockCoordinator,
        registry: ConfigRegistry,
        cache: CacheService,
    ) -> None:
        self._aggregator = aggregator
        self._coordinator = coordinator
        self._registry = registry
        self._cache = cache

    async def process(self, event: Event) -> ProcessResult:
        # one config for the whole event, even if a reload lands mid-way
        config = self._registry.current
        start = time.perf_counter()

        update = await self._aggregator.apply(event, config.catalog)
        unlocked = await self._coordinator.evaluate_user(event.user_id, event.event_id, config)
        if update.changed or unlocked:
            await self._cache.delete_pattern(snapshot_cache_pattern(event.user_id))

        result = "applied" if update.changed else "noop"
        EVENTS_PROCESSED.labels(event_type=event.type, result=result).inc()
        EVENT_PROCESSING_DURATION.observe(time.perf_counter() - start)
        logger.debug(
            "Processed event result=%s unlocked=%d",
            result,
            len(unlocked),
            extra={
                "event_id": event.event_id,
                "event_type": event.type,
                "user_id": event.user_id,
            },
        )
        return ProcessResult(update=update, unlocked=tuple(unlocked))
