"""Booking repository - Database operations for the booking aggregate"""

from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models_booking import Booking, RejectedVendor
from .state import BookingState, Transition, TransitionError


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_by_id(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_for_customer(db: Session, booking_id: int, customer_id: int) -> Optional[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.customer_id == customer_id)
            .first()
        )

    @staticmethod
    def get_for_vendor(db: Session, booking_id: int, vendor_id: int) -> Optional[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.vendor_id == vendor_id)
            .first()
        )

    @staticmethod
    def list_bookings(
        db: Session,
        customer_id: Optional[int] = None,
        vendor_id: Optional[int] = None,
        status: Optional[str] = None,
        vendor_status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Booking]:
        query = db.query(Booking)
        if customer_id is not None:
            query = query.filter(Booking.customer_id == customer_id)
        if vendor_id is not None:
            query = query.filter(Booking.vendor_id == vendor_id)
        if status:
            query = query.filter(Booking.status == status)
        if vendor_status:
            query = query.filter(Booking.vendor_status == vendor_status)
        return query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(skip).limit(limit).all()

    @staticmethod
    def apply_transition(
        db: Session, booking: Booking, transition: Transition, **changes
    ) -> BookingState:
        """
        Write a transition with a conditional UPDATE guarded on the current status.

        The guard is re-checked by the database at write time, so of two concurrent
        requests racing on the same booking only one can match the row. The loser gets
        a TransitionError built from the freshly read status.
        """
        next_state = transition.apply(booking.state)
        db.flush()
        guard_column = {
            "overall": Booking.status,
            "vendor": Booking.vendor_status,
            "user": Booking.user_status,
        }[transition.guard_view]

        values = {**next_state.as_columns(), **changes}
        updated = (
            db.query(Booking)
            .filter(Booking.id == booking.id, guard_column.in_(transition.allowed))
            .update(values, synchronize_session=False)
        )
        db.expire(booking)
        if updated == 0:
            raise TransitionError(
                transition.name, booking.state.view(transition.guard_view), transition.allowed
            )
        return next_state

    @staticmethod
    def add_rejected_vendor(
        db: Session, booking: Booking, vendor_id: int, reason: Optional[str], initiated_by: str
    ) -> bool:
        """Append a vendor to the booking's rejection history; returns False if already present"""
        if vendor_id in booking.rejected_vendor_ids:
            return False
        try:
            with db.begin_nested():
                db.add(
                    RejectedVendor(
                        booking_id=booking.id,
                        vendor_id=vendor_id,
                        reason=reason,
                        initiated_by=initiated_by,
                    )
                )
        except IntegrityError:
            return False
        db.expire(booking)
        return True
