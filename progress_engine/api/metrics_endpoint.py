"""Prometheus scrape endpoint.

Serves every collector registered in progress_engine.core.metrics in the
text exposition format, e.g.

  progress_events_total{event_type="topic_completed",result="applied"} 12.0
  progress_unlocks_total{kind="achievement"} 3.0

Keep it off the public ingress in production: label values expose event
volumes and rule ids.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
