"""Unlock coordination: locked -> unlocked, exactly once.

Runs after every processed event for a user, including no-op events.  A
redelivered event therefore re-runs evaluation, which is what recovers
an unlock lost to a crash between the aggregate write and the unlock
write.  Exactly-once comes from the unlock repo, not from here:
`try_unlock` only succeeds against an absent or still-locked record, so
two coordinators racing on the same definition produce one unlock and
one notification.

The notification is parked in the outbox together with the unlock and
only acknowledged after a successful hand-off, so an unlock recorded by
an event that then times out is still waiting in the outbox for replay.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from progress_engine.core.errors import NotificationDeliveryError
from progress_engine.core.metrics import NOTIFICATION_FAILURES, UNLOCKS
from progress_engine.models.achievement import UnlockNotification, UnlockRecord
from progress_engine.repos.progress_repo import ProgressStore
from progress_engine.repos.unlock_repo import UnlockRepo
from progress_engine.services.criteria import EvaluationContext, evaluate
from progress_engine.services.definitions import EngineConfig
from progress_engine.services.notifier import NotificationOutbox, Notifier

logger = logging.getLogger(__name__)


async def load_evaluation_context(
    store: ProgressStore, config: EngineConfig, user_id: str
) -> EvaluationContext:
    topics = await store.list_topics(user_id)
    paths = await store.list_paths(user_id)
    return EvaluationContext(
        catalog=config.catalog,
        topics={t.topic_id: t for t in topics},
        paths={p.path_id: p for p in paths},
        streak=await store.get_streak(user_id),
    )


class UnlockCoordinator:
    def __init__(
        self,
        store: ProgressStore,
        unlocks: UnlockRepo,
        notifier: Notifier,
        outbox: NotificationOutbox,
        *,
        notify_timeout_seconds: float = 1.0,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._unlocks = unlocks
        self._notifier = notifier
        self._outbox = outbox
        self._notify_timeout = notify_timeout_seconds
        self._clock = clock

    async def evaluate_user(
        self, user_id: str, triggering_event_id: str, config: EngineConfig
    ) -> list[UnlockRecord]:
        """Unlock every definition whose criteria now hold.  Returns only the
        records this call created."""
        held = {r.definition_id for r in await self._unlocks.list_for_user(user_id)}
        pending = [d for d in config.definitions if d.id not in held]
        if not pending:
            return []

        ctx = await load_evaluation_context(self._store, config, user_id)
        created: list[UnlockRecord] = []

        for definition in pending:
            if not evaluate(definition.unlock_criteria, ctx):
                continue

            record = UnlockRecord(
                user_id=user_id,
                definition_id=definition.id,
                kind=definition.kind,
                unlocked=True,
                unlocked_at=self._clock(),
                triggering_event_id=triggering_event_id,
                points=definition.points,
            )
            # shielded: once the unlock commits, its outbox entry must exist
            # even if the event timeout cancels us right here
            if not await asyncio.shield(self._unlock_and_park(record)):
                # another worker got there first
                continue

            UNLOCKS.labels(kind=definition.kind).inc()
            logger.info(
                "Unlocked %s %s (+%d points)",
                definition.kind,
                definition.id,
                definition.points,
                extra={
                    "user_id": user_id,
                    "definition_id": definition.id,
                    "event_id": triggering_event_id,
                },
            )
            created.append(record)
            await self._notify(record)

        return created

    async def _unlock_and_park(self, record: UnlockRecord) -> bool:
        if not await self._unlocks.try_unlock(record):
            return False
        self._outbox.park(UnlockNotification.from_record(record), "pending")
        return True

    async def _notify(self, record: UnlockRecord) -> None:
        notification = UnlockNotification.from_record(record)
        try:
            await asyncio.wait_for(
                self._notifier.notify(notification), timeout=self._notify_timeout
            )
            self._outbox.acknowledge(notification)
        except (TimeoutError, NotificationDeliveryError) as exc:
            reason = "timeout" if isinstance(exc, TimeoutError) else str(exc)
            NOTIFICATION_FAILURES.inc()
            logger.warning(
                "Notification for %s not delivered (%s), parked for replay",
                record.definition_id,
                reason,
                extra={"user_id": record.user_id, "definition_id": record.definition_id},
            )
            self._outbox.park(notification, reason)
