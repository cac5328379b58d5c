"""
Customer ratings of a vendor's survey
"""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, Text
from sqlalchemy.sql import func

from .database import Base


class Rating(Base):
    """One rating per booking, written by the booking's customer"""

    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)

    # 1-5 each
    accuracy = Column(Integer, nullable=False)
    professionalism = Column(Integer, nullable=False)
    behavior = Column(Integer, nullable=False)
    visit_timing = Column(Integer, nullable=False)
    overall = Column(Float, nullable=False)  # mean of the four, one decimal

    review = Column(Text, nullable=True)
    is_success = Column(Boolean, nullable=True)  # borewell outcome at rating time

    created_at = Column(DateTime(timezone=True), server_default=func.now())
