"""Background notification worker.

RUN:  python -m progress_engine.worker

The API process only enqueues unlock notifications (services.notifier);
this process drains the queue and delivers each one.  Same image,
different command:

  api:    uvicorn progress_engine.main:app --host 0.0.0.0 --port 8000
  worker: python -m progress_engine.worker

With NOTIFICATION_WEBHOOK_URL set, every notification is POSTed there as
JSON; otherwise it is only logged, which is enough for local development.
Delivery is at-least-once from the engine's side, so receivers should
dedupe on (user_id, achievement_id).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import httpx

from progress_engine.core.config import SETTINGS
from progress_engine.core.logging import setup_logging
from progress_engine.services.notifier import NOTIFICATION_QUEUE
from progress_engine.services.task_queue import task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("progress_engine.worker")

HANDLERS: dict[str, TaskHandler] = {}

_WEBHOOK_TIMEOUT_SECONDS = 5.0


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


async def deliver_webhook(payload: dict, url: str, *, client: httpx.AsyncClient) -> None:
    response = await client.post(url, json=payload)
    response.raise_for_status()


@register_handler(NOTIFICATION_QUEUE)
async def handle_unlock_notification(payload: dict) -> None:
    log_extra = {
        "user_id": payload.get("user_id"),
        "definition_id": payload.get("achievement_id"),
    }
    url = SETTINGS.notification_webhook_url
    if url is None:
        logger.info(
            "Unlock %s (%s, %s points) for user=%s",
            payload.get("achievement_id"),
            payload.get("kind"),
            payload.get("points"),
            payload.get("user_id"),
            extra=log_extra,
        )
        return

    async with httpx.AsyncClient(timeout=_WEBHOOK_TIMEOUT_SECONDS) as client:
        await deliver_webhook(payload, url, client=client)
    logger.info("Unlock notification delivered", extra=log_extra)


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        for queue_name in queues:
            task = await task_queue.dequeue(queue_name, timeout=1)
            if task is None:
                continue

            handler = HANDLERS[queue_name]
            try:
                await handler(task.payload)
                logger.info("Task %s on [%s] completed", task.id, queue_name)
            except Exception:
                # the unlock itself is already committed; a lost
                # notification can be re-sent from the unlock history
                logger.exception("Task %s on [%s] failed", task.id, queue_name)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
