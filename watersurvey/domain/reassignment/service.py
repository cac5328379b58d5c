"""
Reassignment engine

Runs after a vendor rejects or cancels a booking (the booking is already
REJECTED on all three views). It records the vendor in the booking's rejection
history, picks the best remaining vendor offering the same service and re-prices
the booking for that vendor. With nobody left the booking stays REJECTED; that
is a normal terminal outcome, not an error.

Candidate selection holds no lock: two bookings reassigned at the same moment
may both land on the same vendor, which is fine since each assignment is
independent.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models_booking import Booking
from ...models_notification import NotificationType, RecipientKind
from ...services.notification_service import enqueue_notification
from ..bookings.repository import BookingRepository
from ..bookings.state import TRANSITIONS
from ..pricing.calculator import Quote, calculate_quote, compute_vendor_share, present
from ..pricing.settings import load_pricing_settings
from .ranking import Candidate, build_candidates, find_equivalent_services, rank_candidates

logger = logging.getLogger(__name__)


@dataclass
class ReassignmentOutcome:
    reassigned: bool
    booking: Booking
    candidate: Optional[Candidate] = None
    quote: Optional[Quote] = None
    previous_total: Optional[float] = None


class ReassignmentService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = BookingRepository()

    def reassign(self, booking: Booking, reason: str, initiated_by: str) -> ReassignmentOutcome:
        """Move a rejected booking to the next-best vendor. Does not commit."""
        rejected_vendor_id = booking.vendor_id
        self.repo.add_rejected_vendor(self.db, booking, rejected_vendor_id, reason, initiated_by)

        original_service = booking.service
        services = find_equivalent_services(
            self.db,
            original_service.name,
            original_service.category,
            excluded_vendor_ids=booking.rejected_vendor_ids,
        )
        candidates = rank_candidates(build_candidates(services, booking.latitude, booking.longitude))

        if not candidates:
            return self._fail(booking, reason)

        best = candidates[0]
        settings = load_pricing_settings(self.db)
        quote = calculate_quote(best.price, best.distance_km, settings)
        if booking.advance_paid:
            # the customer already paid the old advance; the new total is split around it
            quote = quote.with_advance(booking.advance_amount)
        payout = compute_vendor_share(quote.base_service_fee, quote.travel_charges, settings)
        previous_total = booking.total_amount

        self.repo.apply_transition(
            self.db,
            booking,
            TRANSITIONS["reassign"],
            vendor_id=best.vendor_id,
            service_id=best.service_id,
            assigned_at=datetime.utcnow(),
            accepted_at=None,
            rejection_reason=None,
            cancelled_by=None,
            cancellation_note=None,
            site_visit_credited=False,
            site_visit_credited_at=None,
            site_visit_transaction_id=None,
            report_upload_credited=False,
            report_upload_credited_at=None,
            report_upload_transaction_id=None,
            **quote.as_columns(),
            **payout.as_columns(),
        )
        logger.info(
            f"🔄 Booking {booking.id} reassigned from vendor {rejected_vendor_id} to vendor {best.vendor_id} "
            f"(total {present(previous_total)} → {present(quote.total_amount)})"
        )

        enqueue_notification(
            self.db,
            recipient_id=best.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=NotificationType.BOOKING_ASSIGNED,
            title="New Booking Reassigned",
            message=f"A booking has been reassigned to you for {booking.scheduled_date:%d %b %Y} at {booking.scheduled_time}.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "reassigned": True},
        )
        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.BOOKING_REASSIGNED,
            title="Expert Reassigned",
            message=(
                "Your booking has been assigned to a new expert. "
                f"Updated total: ₹{present(quote.total_amount):.2f}."
            ),
            related_entity=("booking", booking.id),
            metadata={
                "booking_id": booking.id,
                "previous_total": present(previous_total),
                "new_total": present(quote.total_amount),
            },
        )
        return ReassignmentOutcome(
            reassigned=True, booking=booking, candidate=best, quote=quote, previous_total=previous_total
        )

    def _fail(self, booking: Booking, reason: str) -> ReassignmentOutcome:
        booking.rejection_reason = f"No other vendors available. Original reason: {reason}"
        self.db.flush()
        logger.warning(f"⚠️ No alternate vendor for booking {booking.id}; booking stays REJECTED")

        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.BOOKING_FAILED,
            title="Booking Assignment Failed",
            message=(
                "We could not find another available expert for your booking. "
                "Our team will contact you about the next steps."
            ),
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "reason": reason},
        )
        return ReassignmentOutcome(reassigned=False, booking=booking)
