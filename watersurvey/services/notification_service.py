"""
Notification outbox

State changes append OutboxEvent rows in the same unit of work as the status
write (enqueue_notification never commits). dispatch_pending_notifications drains
the outbox: each event becomes an in-app Notification row and, when a push
endpoint is configured, is POSTed there. Delivery is at-least-once and
best-effort; failures are retried with back-off and never reach the request that
produced the event.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import NOTIFICATION_PUSH_URL, OUTBOX_BATCH_SIZE, OUTBOX_MAX_ATTEMPTS
from ..models_notification import Notification, OutboxEvent, OutboxStatus

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 60


def enqueue_notification(
    db: Session,
    recipient_id: Optional[int],
    recipient_kind: str,
    event_type: str,
    title: str,
    message: str,
    related_entity: Optional[tuple] = None,
    metadata: Optional[dict] = None,
) -> OutboxEvent:
    """Append a notification to the outbox. Committed together with the caller's changes."""
    entity_type, entity_id = related_entity if related_entity else (None, None)
    event = OutboxEvent(
        event_type=event_type,
        recipient_id=recipient_id,
        recipient_kind=recipient_kind,
        title=title,
        message=message,
        related_entity_type=entity_type,
        related_entity_id=entity_id,
        payload=metadata or {},
        status=OutboxStatus.PENDING,
        attempts=0,
        available_at=datetime.utcnow(),
    )
    db.add(event)
    return event


class NotificationDispatcher:
    """Delivers one outbox event: in-app inbox row plus optional push webhook"""

    def __init__(self, push_url: Optional[str] = NOTIFICATION_PUSH_URL, timeout: float = 10.0):
        self.push_url = push_url
        self.timeout = timeout

    async def notify(self, db: Session, event: OutboxEvent) -> None:
        existing = db.query(Notification).filter(Notification.outbox_event_id == event.id).first()
        if not existing:
            db.add(
                Notification(
                    outbox_event_id=event.id,
                    recipient_id=event.recipient_id,
                    recipient_kind=event.recipient_kind,
                    type=event.event_type,
                    title=event.title,
                    message=event.message,
                    related_entity_type=event.related_entity_type,
                    related_entity_id=event.related_entity_id,
                    payload=event.payload,
                )
            )
            db.flush()

        if not self.push_url:
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.push_url,
                json={
                    "event_id": event.id,
                    "recipient_id": event.recipient_id,
                    "recipient_kind": event.recipient_kind,
                    "type": event.event_type,
                    "title": event.title,
                    "message": event.message,
                    "related_entity": {
                        "type": event.related_entity_type,
                        "id": event.related_entity_id,
                    },
                    "metadata": event.payload or {},
                },
            )
            response.raise_for_status()


async def dispatch_pending_notifications(
    db: Session,
    dispatcher: Optional[NotificationDispatcher] = None,
    batch_size: int = OUTBOX_BATCH_SIZE,
    max_attempts: int = OUTBOX_MAX_ATTEMPTS,
) -> dict:
    """
    Drain one batch of the outbox.

    Returns:
        dict with sent / retried / failed counts
    """
    dispatcher = dispatcher or NotificationDispatcher()
    summary = {"sent": 0, "retried": 0, "failed": 0}
    now = datetime.utcnow()

    events = (
        db.query(OutboxEvent)
        .filter(
            OutboxEvent.status == OutboxStatus.PENDING,
            or_(OutboxEvent.available_at.is_(None), OutboxEvent.available_at <= now),
        )
        .order_by(OutboxEvent.id)
        .limit(batch_size)
        .all()
    )

    for event in events:
        event.attempts += 1
        try:
            await dispatcher.notify(db, event)
        except Exception as e:
            event.last_error = str(e)[:1000]
            if event.attempts >= max_attempts:
                event.status = OutboxStatus.FAILED
                summary["failed"] += 1
                logger.error(f"❌ Giving up on {event.event_type} notification {event.id}: {e}")
            else:
                event.available_at = now + timedelta(seconds=RETRY_BACKOFF_SECONDS * event.attempts)
                summary["retried"] += 1
                logger.warning(f"⚠️ {event.event_type} notification {event.id} failed, will retry: {e}")
        else:
            event.status = OutboxStatus.SENT
            event.sent_at = datetime.utcnow()
            event.last_error = None
            summary["sent"] += 1
        db.commit()

    if events:
        logger.info(f"📊 Outbox drained: {summary}")
    return summary
