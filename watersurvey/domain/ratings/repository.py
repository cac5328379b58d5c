"""Rating repository - Database operations for ratings and vendor track records"""

from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models_booking import Booking
from ...models_rating import Rating


class RatingRepository:
    """Repository for rating database operations"""

    @staticmethod
    def get_by_booking(db: Session, booking_id: int) -> Optional[Rating]:
        return db.query(Rating).filter(Rating.booking_id == booking_id).first()

    @staticmethod
    def list_for_vendor(db: Session, vendor_id: int, skip: int = 0, limit: int = 20) -> List[Rating]:
        return (
            db.query(Rating)
            .filter(Rating.vendor_id == vendor_id)
            .order_by(Rating.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    @staticmethod
    def rating_summary(db: Session, vendor_id: int) -> Tuple[Optional[float], int]:
        """(mean overall score, number of ratings)"""
        average, count = (
            db.query(func.avg(Rating.overall), func.count(Rating.id))
            .filter(Rating.vendor_id == vendor_id)
            .one()
        )
        return (float(average) if average is not None else None), int(count or 0)

    @staticmethod
    def borewell_outcomes(db: Session, vendor_id: int) -> Tuple[int, int]:
        """
        (successful, failed) borewells among the vendor's bookings whose result
        has been confirmed by an operator or by the customer's rating.
        """
        rows = (
            db.query(Booking.borewell_status, func.count(Booking.id))
            .outerjoin(Rating, Rating.booking_id == Booking.id)
            .filter(
                Booking.vendor_id == vendor_id,
                Booking.borewell_status.in_(("SUCCESS", "FAILED")),
                or_(Booking.borewell_approved_at.isnot(None), Rating.id.isnot(None)),
            )
            .group_by(Booking.borewell_status)
            .all()
        )
        counts = dict(rows)
        return int(counts.get("SUCCESS", 0)), int(counts.get("FAILED", 0))
