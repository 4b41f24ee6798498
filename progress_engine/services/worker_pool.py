"""Partitioned in-process worker pool for inbound events.

Each user is pinned to one partition (stable hash of user_id), and each
partition has one asyncio.Queue drained by one worker task.  Events for
the same user are therefore processed one at a time in submission order,
while different users proceed in parallel.  The store's compare-and-set
stays the real safety net when several processes share one database.

Delivery is at-least-once:
  - every event runs under a timeout
  - a timeout or a retryable error is retried in place by the same worker,
    after an exponential backoff, up to `max_deliveries` attempts; the
    partition takes nothing else off its queue meanwhile, so a later event
    for the user can never overtake one that is waiting to be retried
  - after that, or on a non-retryable error, the event is dead-lettered:
    logged, counted and kept in `dead_letters` (the newest
    `dead_letter_limit` of them) for inspection

Redelivery is safe because aggregation and unlocking are idempotent.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from progress_engine.core.errors import ProgressEngineError
from progress_engine.core.metrics import EVENTS_PROCESSED, WORKER_QUEUE_DEPTH
from progress_engine.models.event import Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[object]]


@dataclass(frozen=True, slots=True)
class DeadLetter:
    event: Event
    attempts: int
    reason: str


class PartitionedWorkerPool:
    def __init__(
        self,
        handler: EventHandler,
        *,
        partitions: int = 4,
        event_timeout_seconds: float = 5.0,
        max_deliveries: int = 3,
        retry_backoff_seconds: float = 0.05,
        dead_letter_limit: int = 1000,
    ) -> None:
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self._handler = handler
        self._partitions = partitions
        self._event_timeout = event_timeout_seconds
        self._max_deliveries = max_deliveries
        self._retry_backoff = retry_backoff_seconds
        self._queues: list[asyncio.Queue[Event]] = []
        self._workers: list[asyncio.Task[None]] = []
        self.dead_letters: deque[DeadLetter] = deque(maxlen=dead_letter_limit)

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def partitions(self) -> int:
        return self._partitions

    def partition_for(self, user_id: str) -> int:
        # hash() is salted per process; a digest keeps the mapping stable
        digest = hashlib.sha256(user_id.encode("utf-8")).digest()
        return int.from_bytes(digest[:8], "big") % self._partitions

    async def start(self) -> None:
        if self._workers:
            return
        self._queues = [asyncio.Queue() for _ in range(self._partitions)]
        self._workers = [
            asyncio.create_task(self._run(i), name=f"progress-worker-{i}")
            for i in range(self._partitions)
        ]
        logger.info("Worker pool started with %d partitions", self._partitions)

    async def stop(self) -> None:
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Worker pool stopped")

    async def submit(self, event: Event) -> int:
        """Queue an event on its user's partition.  Returns the partition."""
        if not self._workers:
            raise RuntimeError("worker pool is not running")
        index = self.partition_for(event.user_id)
        queue = self._queues[index]
        queue.put_nowait(event)
        WORKER_QUEUE_DEPTH.labels(partition=str(index)).set(queue.qsize())
        return index

    async def join(self) -> None:
        """Wait until every queued event (including its retries) is done."""
        for queue in self._queues:
            await queue.join()

    def queue_depths(self) -> list[int]:
        return [q.qsize() for q in self._queues]

    async def _run(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            event = await queue.get()
            try:
                await self._deliver(event)
            finally:
                queue.task_done()
                WORKER_QUEUE_DEPTH.labels(partition=str(index)).set(queue.qsize())

    async def _deliver(self, event: Event) -> None:
        attempt = 1
        while True:
            reason = await self._attempt(event, attempt)
            if reason is None:
                return
            if attempt >= self._max_deliveries:
                self._dead_letter(event, attempt, reason)
                return
            EVENTS_PROCESSED.labels(event_type=event.type, result="retried").inc()
            logger.info("Retrying event (%s)", reason, extra=_log_extra(event, attempt))
            await asyncio.sleep(self._retry_backoff * 2 ** (attempt - 1))
            attempt += 1

    async def _attempt(self, event: Event, attempt: int) -> str | None:
        """Run the handler once.  Returns the reason when it is worth retrying."""
        try:
            await asyncio.wait_for(self._handler(event), timeout=self._event_timeout)
        except TimeoutError:
            return "timeout"
        except ProgressEngineError as exc:
            if exc.retryable:
                return str(exc)
            EVENTS_PROCESSED.labels(event_type=event.type, result="rejected").inc()
            self._dead_letter(event, attempt, str(exc))
        except Exception:
            logger.exception("Event handler crashed", extra=_log_extra(event, attempt))
            self._dead_letter(event, attempt, "handler error")
        return None

    def _dead_letter(self, event: Event, attempts: int, reason: str) -> None:
        EVENTS_PROCESSED.labels(event_type=event.type, result="dead_lettered").inc()
        logger.error(
            "Dead-lettered event after %d attempt(s): %s",
            attempts,
            reason,
            extra=_log_extra(event, attempts),
        )
        self.dead_letters.append(DeadLetter(event, attempts, reason))


def _log_extra(event: Event, attempt: int) -> dict:
    return {
        "event_id": event.event_id,
        "event_type": event.type,
        "user_id": event.user_id,
        "attempt": attempt,
    }
