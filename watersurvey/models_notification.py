"""
Notification outbox and in-app inbox
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from .database import Base


class RecipientKind:
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"


class NotificationType:
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_ASSIGNED = "BOOKING_ASSIGNED"
    BOOKING_ACCEPTED = "BOOKING_ACCEPTED"
    BOOKING_REJECTED = "BOOKING_REJECTED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_VISITED = "BOOKING_VISITED"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    BOOKING_FAILED = "BOOKING_FAILED"
    BOOKING_REASSIGNED = "BOOKING_REASSIGNED"
    REPORT_UPLOADED = "REPORT_UPLOADED"
    REPORT_APPROVED = "REPORT_APPROVED"
    REPORT_REJECTED = "REPORT_REJECTED"
    BOREWELL_UPLOADED = "BOREWELL_UPLOADED"
    BOREWELL_APPROVED = "BOREWELL_APPROVED"
    FINAL_SETTLEMENT = "FINAL_SETTLEMENT"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    NEW_RATING = "NEW_RATING"
    PAYMENT_ADVANCE_SUCCESS = "PAYMENT_ADVANCE_SUCCESS"
    PAYMENT_REMAINING_SUCCESS = "PAYMENT_REMAINING_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    TRAVEL_CHARGES_REQUESTED = "TRAVEL_CHARGES_REQUESTED"
    TRAVEL_CHARGES_APPROVED = "TRAVEL_CHARGES_APPROVED"
    TRAVEL_CHARGES_REJECTED = "TRAVEL_CHARGES_REJECTED"
    TRAVEL_CHARGES_PAID = "TRAVEL_CHARGES_PAID"
    WITHDRAWAL_REQUESTED = "WITHDRAWAL_REQUESTED"
    WITHDRAWAL_APPROVED = "WITHDRAWAL_APPROVED"
    WITHDRAWAL_REJECTED = "WITHDRAWAL_REJECTED"
    WITHDRAWAL_PROCESSED = "WITHDRAWAL_PROCESSED"


class OutboxStatus:
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class OutboxEvent(Base):
    """Side effect recorded in the same transaction as the state change that caused it"""

    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(50), nullable=False)
    recipient_id = Column(Integer, nullable=True)  # None for broadcast to all admins
    recipient_kind = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=True)

    status = Column(String(20), default=OutboxStatus.PENDING, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    available_at = Column(DateTime, nullable=True, index=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Notification(Base):
    """In-app notification shown to a customer, vendor or admin"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    outbox_event_id = Column(Integer, unique=True, nullable=True)
    recipient_id = Column(Integer, nullable=True, index=True)
    recipient_kind = Column(String(20), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
