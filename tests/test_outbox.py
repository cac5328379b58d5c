import asyncio
from datetime import datetime, timedelta

from watersurvey.models_notification import (
    Notification,
    NotificationType,
    OutboxEvent,
    OutboxStatus,
    RecipientKind,
)
from watersurvey.services.notification_service import (
    NotificationDispatcher,
    dispatch_pending_notifications,
    enqueue_notification,
)


class FlakyDispatcher(NotificationDispatcher):
    def __init__(self):
        super().__init__(push_url=None)
        self.calls = 0

    async def notify(self, db, event):
        self.calls += 1
        raise RuntimeError("push endpoint returned 503")


def _enqueue(db, recipient_id=3):
    event = enqueue_notification(
        db,
        recipient_id=recipient_id,
        recipient_kind=RecipientKind.VENDOR,
        event_type=NotificationType.BOOKING_ASSIGNED,
        title="New Booking Assigned",
        message="You have a new booking.",
        related_entity=("booking", 11),
        metadata={"booking_id": 11},
    )
    db.commit()
    return event


def test_enqueue_does_not_commit(db):
    enqueue_notification(
        db,
        recipient_id=1,
        recipient_kind=RecipientKind.CUSTOMER,
        event_type=NotificationType.BOOKING_CREATED,
        title="Booking Created",
        message="Pay the advance to confirm.",
    )
    db.rollback()

    assert db.query(OutboxEvent).count() == 0


def test_dispatch_writes_inbox_and_marks_sent(db):
    event = _enqueue(db)

    summary = asyncio.run(dispatch_pending_notifications(db, NotificationDispatcher(push_url=None)))

    assert summary == {"sent": 1, "retried": 0, "failed": 0}
    db.refresh(event)
    assert event.status == OutboxStatus.SENT
    assert event.attempts == 1
    [notification] = db.query(Notification).all()
    assert notification.outbox_event_id == event.id
    assert notification.recipient_id == 3
    assert notification.related_entity_id == 11
    assert notification.payload == {"booking_id": 11}

    # nothing left to send
    assert asyncio.run(dispatch_pending_notifications(db))["sent"] == 0


def test_redelivery_does_not_duplicate_inbox_row(db):
    event = _enqueue(db)
    dispatcher = NotificationDispatcher(push_url=None)

    asyncio.run(dispatcher.notify(db, event))
    asyncio.run(dispatcher.notify(db, event))
    db.commit()

    assert db.query(Notification).count() == 1


def test_failed_delivery_backs_off_then_gives_up(db):
    event = _enqueue(db)
    dispatcher = FlakyDispatcher()

    summary = asyncio.run(dispatch_pending_notifications(db, dispatcher, max_attempts=2))
    assert summary == {"sent": 0, "retried": 1, "failed": 0}
    db.refresh(event)
    assert event.status == OutboxStatus.PENDING
    assert event.last_error == "push endpoint returned 503"
    assert event.available_at > datetime.utcnow() + timedelta(seconds=30)

    # not yet due
    assert asyncio.run(dispatch_pending_notifications(db, dispatcher, max_attempts=2))["retried"] == 0

    event.available_at = datetime.utcnow() - timedelta(seconds=1)
    db.commit()
    summary = asyncio.run(dispatch_pending_notifications(db, dispatcher, max_attempts=2))

    assert summary == {"sent": 0, "retried": 0, "failed": 1}
    db.refresh(event)
    assert event.status == OutboxStatus.FAILED
    assert dispatcher.calls == 2
