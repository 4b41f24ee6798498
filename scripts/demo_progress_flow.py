"""Demo: a learner works through a topic and unlocks achievements, using
FastAPI TestClient against the in-memory backends.

Run with:
    python scripts/demo_progress_flow.py
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from fastapi.testclient import TestClient

from progress_engine.main import app
from progress_engine.services import runtime, token_service

USER_ID = "demo-learner"


def _event(event_type: str, topic_id: str, **payload) -> dict:
    return {
        "event_id": f"demo-{uuid.uuid4()}",
        "user_id": USER_ID,
        "type": event_type,
        "timestamp": datetime.now(UTC).isoformat(),
        "topic_id": topic_id,
        "payload": payload,
    }


def main() -> None:
    token = token_service.create_access_token(sub=USER_ID)
    headers = {"Authorization": f"Bearer {token}"}

    with TestClient(app) as client:
        # ── Step 1: start a topic ───────────────────────────────────────
        r = client.post("/v1/events", json=_event("topic_started", "t1"), headers=headers)
        print(f"1. POST /v1/events (started)      → {r.status_code}  {r.json()}")

        # ── Step 2: an unknown topic is rejected up front ───────────────
        r = client.post("/v1/events", json=_event("topic_started", "nope"), headers=headers)
        print(f"2. POST /v1/events (bad topic)    → {r.status_code}  {r.json()['detail']}")

        # ── Step 3: complete every depth in one batch ───────────────────
        batch = [
            _event("topic_completed", "t1", depth=d, time_spent_seconds=300)
            for d in ("surface", "mid-depth", "deep-water")
        ]
        r = client.post("/v1/events/batch", json={"events": batch}, headers=headers)
        print(f"3. POST /v1/events/batch          → {r.status_code}  ({len(batch)} queued)")

        client.portal.call(runtime.worker_pool.join)

        # ── Step 4: read the snapshot ───────────────────────────────────
        r = client.get("/v1/progress/me", headers=headers)
        data = r.json()
        topic = data["topics"][0]
        print(
            f"4. GET  /v1/progress/me           → {r.status_code}  "
            f"{topic['topic_id']}={topic['completion_percentage']}% "
            f"streak={data['streak']['current']} points={data['statistics']['points']}"
        )

        # ── Step 5: unlocks ─────────────────────────────────────────────
        r = client.get("/v1/progress/me/unlocks", headers=headers)
        ids = ", ".join(u["id"] for u in r.json())
        print(f"5. GET  /v1/progress/me/unlocks   → {r.status_code}  [{ids}]")

        # ── Step 6: completed topics sink in re-ranked results ──────────
        r = client.post(
            "/v1/search/adjust",
            json={
                "query": "getting started",
                "persona": "new-developer",
                "candidates": [
                    {"id": "doc-t1", "score": 10, "topic_id": "t1"},
                    {"id": "doc-vc", "score": 9, "topic_id": "version-control"},
                ],
            },
            headers=headers,
        )
        order = [(x["id"], x["adjusted_score"]) for x in r.json()["results"]]
        print(f"6. POST /v1/search/adjust         → {r.status_code}  {order}")

        # ── Step 7: health ──────────────────────────────────────────────
        r = client.get("/health")
        print(f"7. GET  /health                   → {r.status_code}  {r.json()['checks']}")


if __name__ == "__main__":
    main()
