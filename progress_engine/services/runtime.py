"""Process-wide wiring of the engine components.

Same rule as the cache and task queue singletons: backing services are
picked from configuration at import time, with in-memory fallbacks when
DATABASE_URL / REDIS_URL / SEARCH_PROVIDER_URL are unset.  The config
registry starts empty; main.py loads it during startup.
"""

from __future__ import annotations

from progress_engine.core.config import SETTINGS
from progress_engine.db.engine import async_session_factory
from progress_engine.repos.pg_progress_repo import PgProgressStore
from progress_engine.repos.pg_unlock_repo import PgUnlockRepo
from progress_engine.repos.progress_repo import InMemoryProgressStore, ProgressStore
from progress_engine.repos.unlock_repo import InMemoryUnlockRepo, UnlockRepo
from progress_engine.services.aggregator import ProgressAggregator
from progress_engine.services.cache import cache_service
from progress_engine.services.definitions import ConfigRegistry
from progress_engine.services.notifier import NotificationOutbox, TaskQueueNotifier
from progress_engine.services.pipeline import EventPipeline
from progress_engine.services.search_provider import HttpSearchProvider, SearchProvider
from progress_engine.services.task_queue import task_queue
from progress_engine.services.unlock_coordinator import UnlockCoordinator
from progress_engine.services.worker_pool import PartitionedWorkerPool

if async_session_factory is not None:
    progress_store: ProgressStore = PgProgressStore(async_session_factory)
    unlock_repo: UnlockRepo = PgUnlockRepo(async_session_factory)
else:
    progress_store = InMemoryProgressStore()
    unlock_repo = InMemoryUnlockRepo()

config_registry = ConfigRegistry(SETTINGS.content_dir)
notification_outbox = NotificationOutbox()
notifier = TaskQueueNotifier(task_queue)

aggregator = ProgressAggregator(
    progress_store,
    max_attempts=SETTINGS.cas_max_attempts,
    backoff_seconds=SETTINGS.cas_backoff_seconds,
)
coordinator = UnlockCoordinator(
    progress_store,
    unlock_repo,
    notifier,
    notification_outbox,
    notify_timeout_seconds=SETTINGS.notify_timeout_seconds,
)
pipeline = EventPipeline(aggregator, coordinator, config_registry, cache_service)
worker_pool = PartitionedWorkerPool(
    pipeline.process,
    partitions=SETTINGS.worker_partitions,
    event_timeout_seconds=SETTINGS.event_timeout_seconds,
    max_deliveries=SETTINGS.max_deliveries,
    retry_backoff_seconds=SETTINGS.retry_backoff_seconds,
    dead_letter_limit=SETTINGS.dead_letter_limit,
)

if SETTINGS.search_provider_url:
    search_provider: SearchProvider | None = HttpSearchProvider(
        SETTINGS.search_provider_url,
        timeout_seconds=SETTINGS.search_timeout_seconds,
        max_attempts=SETTINGS.search_max_attempts,
    )
else:
    search_provider = None
