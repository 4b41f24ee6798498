"""Redis connection management.

Same shape as engine.py: when REDIS_URL is set we build a real connection
pool at import time; when it is unset (local dev, tests) `redis_pool` is
None and every consumer falls back to its in-memory implementation.

WHAT LIVES IN REDIS
--------------------
Nothing here is the source of truth.  Redis holds:
  - progress snapshots (read-through cache, short TTL, dropped after
    every processed event for that user)
  - the unlock notification queue (LPUSH/BRPOP, consumed by worker.py)

Progress aggregates and unlock records live in Postgres.  Losing Redis
means cold caches and, at worst, a notification that has to be replayed
from the outbox; it never loses progress.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from progress_engine.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify connectivity on startup and close the pool on shutdown.

    An unreachable Redis is logged, not fatal: snapshots are recomputed
    from the store and notifications park in the outbox.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, cache and notification queue are in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
