"""
Ratings and vendor track record

A customer rates a booking once its borewell result is in. Every rating, and
every borewell result an operator approves, refreshes the vendor's ranking
inputs: average_rating is the mean overall score (one decimal) and
success_ratio is the share of confirmed borewells that found water.
"""

import logging
import math
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import BookingNotFoundError, InvalidActionError
from ...models import Vendor
from ...models_notification import NotificationType, RecipientKind
from ...models_rating import Rating
from ...services.notification_service import enqueue_notification
from ...utils.sanitization import sanitize_string
from ..bookings.repository import BookingRepository
from ..bookings.state import RATING_GUARD
from .repository import RatingRepository

logger = logging.getLogger(__name__)

SCORE_FIELDS = ("accuracy", "professionalism", "behavior", "visit_timing")


def round_half_up(value: float, places: int = 1) -> float:
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def overall_score(scores: dict) -> float:
    return round_half_up(sum(scores[field] for field in SCORE_FIELDS) / len(SCORE_FIELDS))


class RatingService:
    """Service for customer ratings"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = RatingRepository()
        self.bookings = BookingRepository()

    def submit_rating(
        self, customer_id: int, booking_id: int, scores: dict, review: Optional[str] = None
    ) -> Rating:
        booking = self.bookings.get_for_customer(self.db, booking_id, customer_id)
        if not booking:
            raise BookingNotFoundError()
        RATING_GUARD.apply(booking.state)
        for field in SCORE_FIELDS:
            value = scores.get(field)
            if not isinstance(value, int) or not 1 <= value <= 5:
                raise InvalidActionError(f"{field} must be a whole number between 1 and 5")
        if self.repo.get_by_booking(self.db, booking.id):
            raise InvalidActionError("You have already rated this booking")

        rating = Rating(
            booking_id=booking.id,
            customer_id=customer_id,
            vendor_id=booking.vendor_id,
            overall=overall_score(scores),
            review=sanitize_string(review),
            is_success=(booking.borewell_status == "SUCCESS") if booking.borewell_status else None,
            **{field: scores[field] for field in SCORE_FIELDS},
        )
        try:
            with self.db.begin_nested():
                self.db.add(rating)
        except IntegrityError:
            raise InvalidActionError("You have already rated this booking")

        vendor = self.refresh_vendor_stats(booking.vendor_id)
        enqueue_notification(
            self.db,
            recipient_id=booking.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=NotificationType.NEW_RATING,
            title="New Rating Received",
            message=f"A customer rated your survey {rating.overall:.1f}/5.",
            related_entity=("booking", booking.id),
            metadata={
                "booking_id": booking.id,
                "overall": rating.overall,
                "average_rating": vendor.average_rating if vendor else None,
            },
        )
        self.db.commit()
        logger.info(f"✅ Booking {booking.id} rated {rating.overall} by customer {customer_id}")
        return rating

    def refresh_vendor_stats(self, vendor_id: int) -> Optional[Vendor]:
        """Recompute average_rating and success_ratio from stored data. Does not commit."""
        self.db.flush()
        vendor = self.db.query(Vendor).filter(Vendor.id == vendor_id).first()
        if not vendor:
            return None

        average, count = self.repo.rating_summary(self.db, vendor_id)
        if count:
            vendor.average_rating = round_half_up(average)
            vendor.total_ratings = count

        successful, failed = self.repo.borewell_outcomes(self.db, vendor_id)
        vendor.successful_surveys = successful
        vendor.failed_surveys = failed
        if successful + failed:
            vendor.success_ratio = round_half_up(successful / (successful + failed) * 100, 0)

        self.db.flush()
        logger.info(
            f"📊 Vendor {vendor_id} stats: rating {vendor.average_rating} over {vendor.total_ratings}, "
            f"success ratio {vendor.success_ratio}% ({successful}/{successful + failed})"
        )
        return vendor

    def list_vendor_ratings(
        self, vendor_id: int, skip: int = 0, limit: int = 20
    ) -> Tuple[Optional[Vendor], List[Rating]]:
        vendor = self.db.query(Vendor).filter(Vendor.id == vendor_id).first()
        if not vendor:
            return None, []
        return vendor, self.repo.list_for_vendor(self.db, vendor_id, skip=skip, limit=limit)
