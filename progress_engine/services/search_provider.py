"""Client for the external ranked-retrieval provider.

The provider is opaque: we send a query, it returns candidates in its own
order with a base score.  Expected response body:

  {"results": [{"id": "doc-1", "score": 10.0, "topic_id": "t1",
                "fields": {"depth": "surface", "phase": "orientation"}}]}

Each attempt carries a timeout; timeouts, transport errors and 5xx
responses are retried with exponential backoff up to `max_attempts`,
then surface as SearchProviderError.  4xx responses are not retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from progress_engine.core.errors import SearchProviderError
from progress_engine.core.metrics import SEARCH_PROVIDER_ERRORS
from progress_engine.models.ranking import Candidate

logger = logging.getLogger(__name__)


class ProviderResult(BaseModel):
    id: str
    score: float = Field(allow_inf_nan=False)
    topic_id: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)


class ProviderResponse(BaseModel):
    results: list[ProviderResult] = Field(default_factory=list)


class SearchProvider(Protocol):
    async def search(self, query: str, *, limit: int = 20) -> list[Candidate]: ...


class HttpSearchProvider:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 2.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, query: str, *, limit: int = 20) -> list[Candidate]:
        for attempt in range(1, self._max_attempts + 1):
            reason: str
            try:
                response = await self._client.get(
                    f"{self._base_url}/search", params={"q": query, "limit": limit}
                )
            except httpx.TimeoutException:
                reason = "timeout"
            except httpx.TransportError:
                reason = "transport"
            else:
                if response.status_code < 400:
                    return _to_candidates(response)
                if response.status_code < 500:
                    SEARCH_PROVIDER_ERRORS.labels(reason="status").inc()
                    raise SearchProviderError(
                        f"search provider rejected query ({response.status_code})"
                    )
                reason = "status"

            SEARCH_PROVIDER_ERRORS.labels(reason=reason).inc()
            logger.warning(
                "Search provider attempt %d/%d failed: %s",
                attempt,
                self._max_attempts,
                reason,
                extra={"attempt": attempt},
            )
            if attempt < self._max_attempts:
                await asyncio.sleep(self._backoff * 2 ** (attempt - 1))

        raise SearchProviderError(
            f"search provider unavailable after {self._max_attempts} attempts"
        )


def _to_candidates(response: httpx.Response) -> list[Candidate]:
    try:
        parsed = ProviderResponse.model_validate(response.json())
    except ValueError as exc:
        SEARCH_PROVIDER_ERRORS.labels(reason="payload").inc()
        raise SearchProviderError("search provider returned a malformed body") from exc
    return [
        Candidate(id=r.id, score=r.score, topic_id=r.topic_id, fields=r.fields)
        for r in parsed.results
    ]

