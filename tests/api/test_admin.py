from __future__ import annotations

import json
import shutil
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from progress_engine.core.config import SETTINGS
from progress_engine.core.errors import NotificationDeliveryError
from progress_engine.models.achievement import UnlockNotification
from progress_engine.services import runtime
from tests.conftest import auth


@pytest.fixture
def content_copy(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the registry at a writable copy of the bundled content."""
    target = tmp_path / "content"
    shutil.copytree(SETTINGS.content_dir, target)
    monkeypatch.setattr(runtime.config_registry, "_content_dir", target)
    return target


def _notification(definition_id: str) -> UnlockNotification:
    return UnlockNotification(
        user_id="test-user",
        definition_id=definition_id,
        kind="achievement",
        points=10,
        unlocked_at=datetime(2026, 3, 2, tzinfo=UTC),
        triggering_event_id="evt-1",
    )


# ---- config reload ----


def test_reload_requires_admin(client: TestClient, token: str) -> None:
    assert client.post("/v1/admin/config/reload", headers=auth(token)).status_code == 403


def test_reload_reports_counts(client: TestClient, admin_token: str) -> None:
    resp = client.post("/v1/admin/config/reload", headers=auth(admin_token))

    assert resp.status_code == 200
    data = resp.json()
    assert data["topics"] == len(runtime.config_registry.current.catalog.topic_ids)
    assert data["definitions"] == 7
    assert data["ranking_rules"] == 4


def test_reload_picks_up_new_rules(
    client: TestClient, admin_token: str, content_copy: Path
) -> None:
    rules_file = content_copy / "bury-rules.json"
    rules = json.loads(rules_file.read_text())
    rules["rules"].append(
        {"id": "bury_deep_water", "bury_by": 1, "filter": "depth:deep-water"}
    )
    rules_file.write_text(json.dumps(rules))

    resp = client.post("/v1/admin/config/reload", headers=auth(admin_token))

    assert resp.status_code == 200
    assert resp.json()["ranking_rules"] == 5
    ids = [r.id for r in runtime.config_registry.current.ranking_rules]
    assert "bury_deep_water" in ids


def test_bad_reload_keeps_running_config(
    client: TestClient, admin_token: str, content_copy: Path
) -> None:
    before = runtime.config_registry.current
    (content_copy / "achievements.json").write_text("{not json")

    resp = client.post("/v1/admin/config/reload", headers=auth(admin_token))

    assert resp.status_code == 422
    assert resp.json()["detail"]["source"].endswith("achievements.json")
    assert runtime.config_registry.current is before


# ---- notification replay ----


def test_replay_requires_admin(client: TestClient, token: str) -> None:
    resp = client.post("/v1/admin/notifications/replay", headers=auth(token))
    assert resp.status_code == 403


def test_replay_delivers_parked_notifications(client: TestClient, admin_token: str) -> None:
    runtime.notification_outbox.park(_notification("first-step"), "timeout")
    runtime.notification_outbox.park(_notification("deep-diver"), "timeout")

    resp = client.post("/v1/admin/notifications/replay", headers=auth(admin_token))

    assert resp.status_code == 200
    assert resp.json() == {"delivered": 2, "failed": 0, "pending": 0}


def test_replay_keeps_what_still_fails(
    client: TestClient, admin_token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    class DownNotifier:
        async def notify(self, notification: UnlockNotification) -> None:
            raise NotificationDeliveryError("queue unavailable")

    monkeypatch.setattr(runtime, "notifier", DownNotifier())
    runtime.notification_outbox.park(_notification("first-step"), "timeout")

    resp = client.post("/v1/admin/notifications/replay", headers=auth(admin_token))

    assert resp.json() == {"delivered": 0, "failed": 1, "pending": 1}
