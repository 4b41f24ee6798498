from __future__ import annotations

import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from progress_engine.main import app
from progress_engine.models.catalog import ContentCatalog
from progress_engine.services import runtime, token_service
from progress_engine.services.cache import cache_service
from progress_engine.services.definitions import EngineConfig
from progress_engine.services.task_queue import task_queue


@pytest.fixture(autouse=True)
def reset_progress_state() -> None:
    """Clear aggregates and unlock records between tests."""
    if hasattr(runtime.progress_store, "clear"):
        runtime.progress_store.clear()  # type: ignore[union-attr]
    if hasattr(runtime.unlock_repo, "_store"):
        runtime.unlock_repo._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_engine_runtime() -> None:
    """Fresh config from the bundled content files, empty outbox and
    dead-letter list."""
    runtime.config_registry.load()
    runtime.notification_outbox.clear()
    runtime.worker_pool.dead_letters.clear()


@pytest.fixture
def client() -> Iterator[TestClient]:
    # The context manager runs the lifespan, which starts the worker pool.
    with TestClient(app) as c:
        yield c


@pytest.fixture
def engine_config() -> EngineConfig:
    return runtime.config_registry.current


@pytest.fixture
def catalog(engine_config: EngineConfig) -> ContentCatalog:
    return engine_config.catalog


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Event helpers
# ---------------------------------------------------------------------------


def raw_event(
    event_type: str,
    *,
    user_id: str = "test-user",
    topic_id: str | None = None,
    path_id: str | None = None,
    payload: dict[str, Any] | None = None,
    event_id: str | None = None,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    """Build a wire-format event dict, stamped now unless told otherwise."""
    body: dict[str, Any] = {
        "event_id": event_id or f"evt-{uuid.uuid4()}",
        "user_id": user_id,
        "type": event_type,
        "timestamp": (timestamp or datetime.now(UTC)).isoformat(),
        "payload": payload or {},
    }
    if topic_id is not None:
        body["topic_id"] = topic_id
    if path_id is not None:
        body["path_id"] = path_id
    return body


def drain(client: TestClient) -> None:
    """Block until the worker pool has processed everything queued so far."""
    client.portal.call(runtime.worker_pool.join)
