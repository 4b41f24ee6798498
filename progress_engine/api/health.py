"""Health and readiness endpoints.

  /health (liveness): always 200 while the process can answer.  The body
    reports each dependency; `status` is "degraded" when a configured
    backing service does not respond.  A 503 here would get the container
    restarted, which is too aggressive for a Redis blip.

  /ready (readiness): 503 until the engine can actually accept events,
    i.e. the config files are loaded and the worker pool is running.
    Redis and Postgres are optional (in-memory fallbacks), so they are
    reported but do not gate readiness.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status

from progress_engine.db.engine import async_session_factory, ping_database
from progress_engine.db.redis import redis_pool
from progress_engine.services import runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if async_session_factory is None:
        return "not_configured"
    try:
        reachable = await ping_database()
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok" if reachable else "degraded"


@router.get("/health")
async def health() -> dict:
    checks = {
        "redis": await _check_redis(),
        "database": await _check_database(),
        "config": "ok" if runtime.config_registry.loaded else "not_loaded",
        "worker_pool": "ok" if runtime.worker_pool.running else "stopped",
    }
    healthy = all(v in ("ok", "not_configured") for v in checks.values())
    overall = "ok" if healthy else "degraded"
    return {
        "status": overall,
        "checks": checks,
        "queue_depths": runtime.worker_pool.queue_depths(),
        "dead_letters": len(runtime.worker_pool.dead_letters),
        "parked_notifications": len(runtime.notification_outbox.pending()),
    }


@router.get("/ready")
async def ready() -> Response:
    if not runtime.config_registry.loaded or not runtime.worker_pool.running:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
