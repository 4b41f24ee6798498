"""Unlock notification hand-off.

An unlock is committed BEFORE anyone is told about it, and its
notification is parked in the NotificationOutbox in the same step.  The
coordinator then calls `Notifier.notify` under a timeout and acknowledges
the outbox entry once the hand-off succeeds.  Anything that stops the
hand-off (a failure, a timeout, the event being cancelled mid-way) leaves
the entry parked, where an admin can replay it
(POST /v1/admin/notifications/replay).  A failed notification never
rolls back or blocks the unlock itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from redis.exceptions import RedisError

from progress_engine.core.errors import NotificationDeliveryError
from progress_engine.core.metrics import QUEUE_DEPTH
from progress_engine.models.achievement import UnlockNotification
from progress_engine.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE = "unlock_notifications"


class Notifier(Protocol):
    async def notify(self, notification: UnlockNotification) -> None: ...


class TaskQueueNotifier:
    """Enqueue notifications for worker.py to deliver."""

    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue

    async def notify(self, notification: UnlockNotification) -> None:
        try:
            await self._queue.enqueue(NOTIFICATION_QUEUE, notification.to_payload())
        except (RedisError, OSError) as exc:
            raise NotificationDeliveryError(
                f"could not enqueue {notification.definition_id} for {notification.user_id}"
            ) from exc


@dataclass(frozen=True, slots=True)
class ParkedNotification:
    notification: UnlockNotification
    reason: str


@dataclass(frozen=True, slots=True)
class ReplayResult:
    delivered: int
    failed: int


class NotificationOutbox:
    """Notifications not yet handed off, keyed by (user, definition).

    Parking the same unlock twice keeps one entry.
    """

    def __init__(self) -> None:
        self._parked: dict[tuple[str, str], ParkedNotification] = {}

    def park(self, notification: UnlockNotification, reason: str) -> None:
        key = (notification.user_id, notification.definition_id)
        self._parked[key] = ParkedNotification(notification, reason)
        QUEUE_DEPTH.labels(queue_name="notification_outbox").set(len(self._parked))

    def acknowledge(self, notification: UnlockNotification) -> None:
        self._parked.pop((notification.user_id, notification.definition_id), None)
        QUEUE_DEPTH.labels(queue_name="notification_outbox").set(len(self._parked))

    def pending(self) -> list[ParkedNotification]:
        return list(self._parked.values())

    async def replay(self, notifier: Notifier) -> ReplayResult:
        delivered = failed = 0
        for key, parked in list(self._parked.items()):
            try:
                await notifier.notify(parked.notification)
            except NotificationDeliveryError as exc:
                failed += 1
                logger.warning(
                    "Replay failed for %s: %s",
                    parked.notification.definition_id,
                    exc,
                    extra={"user_id": parked.notification.user_id},
                )
                continue
            del self._parked[key]
            delivered += 1
        QUEUE_DEPTH.labels(queue_name="notification_outbox").set(len(self._parked))
        logger.info("Outbox replay delivered=%d failed=%d", delivered, failed)
        return ReplayResult(delivered=delivered, failed=failed)

    def clear(self) -> None:
        self._parked.clear()
