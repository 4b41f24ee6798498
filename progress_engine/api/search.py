"""Personalized search.

  GET /v1/search?q=...    provider results -> boost/bury -> ordered list
  POST /v1/search/adjust  boost/bury a caller-supplied candidate list

The user context (completed and bookmarked topics) is read from the
Progress Store on every request; persona and current phase come from the
caller.  Each result carries the ids of the rules that fired.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from progress_engine.api.dependencies import (
    get_engine_config,
    get_search_provider,
    require_user,
)
from progress_engine.core.errors import SearchProviderError
from progress_engine.models.principal import Principal
from progress_engine.models.ranking import Candidate, RankedCandidate
from progress_engine.services import runtime
from progress_engine.services.definitions import EngineConfig
from progress_engine.services.progress_service import build_user_context
from progress_engine.services.ranking import adjust_ranking
from progress_engine.services.search_provider import SearchProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/search", tags=["search"])


class CandidateIn(BaseModel):
    id: str = Field(min_length=1)
    # NaN would leave the sort order undefined
    score: float = Field(allow_inf_nan=False)
    topic_id: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)


class AdjustIn(BaseModel):
    query: str = ""
    persona: str | None = None
    current_phase: str | None = None
    candidates: list[CandidateIn] = Field(max_length=1000)


class RankedOut(BaseModel):
    id: str
    topic_id: str | None
    score: float
    adjusted_score: float
    applied_rules: list[str]
    fields: dict[str, Any]


class SearchOut(BaseModel):
    query: str
    results: list[RankedOut]


def _ranked_out(r: RankedCandidate) -> RankedOut:
    return RankedOut(
        id=r.candidate.id,
        topic_id=r.candidate.topic_id,
        score=r.candidate.score,
        adjusted_score=r.adjusted_score,
        applied_rules=list(r.applied_rules),
        fields=dict(r.candidate.fields),
    )


async def _rank(
    principal: Principal,
    config: EngineConfig,
    candidates: list[Candidate],
    persona: str | None,
    current_phase: str | None,
) -> list[RankedOut]:
    context = await build_user_context(
        runtime.progress_store,
        principal.user_id,
        persona=persona,
        current_phase=current_phase,
    )
    ranked = adjust_ranking(config.ranking_rules, context, candidates)
    return [_ranked_out(r) for r in ranked]


@router.get("", response_model=SearchOut)
async def search(
    principal: Annotated[Principal, Depends(require_user)],
    config: Annotated[EngineConfig, Depends(get_engine_config)],
    provider: Annotated[SearchProvider, Depends(get_search_provider)],
    q: Annotated[str, Query(min_length=1, max_length=256)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    persona: str | None = None,
    phase: str | None = None,
) -> SearchOut:
    try:
        candidates = await provider.search(q, limit=limit)
    except SearchProviderError as exc:
        logger.warning("Search failed: %s", exc, extra={"user_id": principal.user_id})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Search provider unavailable",
        ) from None
    results = await _rank(principal, config, candidates, persona, phase)
    return SearchOut(query=q, results=results)


@router.post("/adjust", response_model=SearchOut)
async def adjust(
    body: AdjustIn,
    principal: Annotated[Principal, Depends(require_user)],
    config: Annotated[EngineConfig, Depends(get_engine_config)],
) -> SearchOut:
    candidates = [
        Candidate(id=c.id, score=c.score, topic_id=c.topic_id, fields=c.fields)
        for c in body.candidates
    ]
    results = await _rank(principal, config, candidates, body.persona, body.current_phase)
    return SearchOut(query=body.query, results=results)
