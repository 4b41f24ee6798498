from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from progress_engine.api.admin import router as admin_router
from progress_engine.api.events import router as events_router
from progress_engine.api.health import router as health_router
from progress_engine.api.metrics_endpoint import router as metrics_router
from progress_engine.api.progress import router as progress_router
from progress_engine.api.search import router as search_router
from progress_engine.core.config import SETTINGS
from progress_engine.core.logging import setup_logging
from progress_engine.db.engine import lifespan_db
from progress_engine.db.redis import lifespan_redis
from progress_engine.middleware.metrics import MetricsMiddleware
from progress_engine.middleware.request_context import RequestContextMiddleware
from progress_engine.services import runtime

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan_engine() -> AsyncGenerator[None, None]:
    # A ConfigError here aborts startup: the engine never runs on
    # definitions it could not validate.
    runtime.config_registry.load()
    await runtime.worker_pool.start()
    try:
        yield
    finally:
        await runtime.worker_pool.stop()
        if runtime.search_provider is not None:
            await runtime.search_provider.aclose()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse order: the pool stops before Redis and
    # the database go away.
    async with lifespan_db():
        async with lifespan_redis():
            async with lifespan_engine():
                yield


app = FastAPI(
    title="progress-engine",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext (outermost) -> Metrics -> route
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(events_router)
app.include_router(progress_router)
app.include_router(search_router)
app.include_router(admin_router)

logger.info(
    "progress-engine configured  env=%s log_level=%s port=%d partitions=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.worker_partitions,
    "on" if SETTINGS.is_dev else "off",
)
