from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from progress_engine.api.dependencies import require_role
from progress_engine.core.errors import ConfigError
from progress_engine.models.principal import Principal
from progress_engine.services import runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class ReloadOut(BaseModel):
    topics: int
    definitions: int
    ranking_rules: int


class ReplayOut(BaseModel):
    delivered: int
    failed: int
    pending: int


@router.post("/config/reload", response_model=ReloadOut)
async def reload_config(
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> ReloadOut:
    """Re-read and revalidate every config file, then swap atomically.
    On any error the running config is kept and 422 is returned."""
    logger.info("Config reload requested by user=%s", principal.user_id)
    try:
        config = runtime.config_registry.reload()
    except ConfigError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail={"source": exc.source, "message": exc.message},
        ) from None
    return ReloadOut(
        topics=len(config.catalog.topic_ids),
        definitions=len(config.definitions),
        ranking_rules=len(config.ranking_rules),
    )


@router.post("/notifications/replay", response_model=ReplayOut)
async def replay_notifications(
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> ReplayOut:
    logger.info("Notification replay requested by user=%s", principal.user_id)
    result = await runtime.notification_outbox.replay(runtime.notifier)
    return ReplayOut(
        delivered=result.delivered,
        failed=result.failed,
        pending=len(runtime.notification_outbox.pending()),
    )
