"""Celery background tasks for settlement side effects.

Tasks run after the settlement transaction has committed. A failing task
is retried but never affects the settlement itself.
"""

import asyncio
import logging

from celery import shared_task

from rentalpay.core.events import SettlementEvent
from rentalpay.services.notification_service import notification_service
from rentalpay.worker import celery_app  # noqa: F401 - sets the current Celery app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


async def _send_settlement_notification(event: dict) -> bool:
    try:
        return await notification_service.notify_settlement_event(event)
    finally:
        await notification_service.close()


@shared_task(bind=True, max_retries=3)
def send_settlement_notification(self, event: dict):
    """Email the guest about a committed settlement event."""
    try:
        sent = run_async(_send_settlement_notification(event))
        return {"status": "sent" if sent else "skipped", "event_id": event.get("event_id")}
    except Exception as exc:
        logger.warning("Notification for event %s failed: %s", event.get("event_id"), exc)
        raise self.retry(exc=exc, countdown=60)


def enqueue_settlement_notification(event: SettlementEvent) -> None:
    """Post-commit event handler: hand the event to the worker."""
    send_settlement_notification.delay(event.model_dump(mode="json"))
