"""
Booking Models for the Survey Lifecycle
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .domain.bookings.state import BookingState, BookingStatus
from .models import generate_public_id


class TravelChargesStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Booking(Base):
    """Booking aggregate: one customer survey request handled by one vendor at a time"""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)

    # Status triple - written only through BookingRepository.apply_transition
    # AWAITING_ADVANCE → ASSIGNED → ACCEPTED → VISITED → REPORT_UPLOADED
    #   → (user) AWAITING_PAYMENT → PAYMENT_SUCCESS → BOREWELL_UPLOADED → COMPLETED (settlement)
    # side branches: REJECTED, CANCELLED; manual COMPLETED
    status = Column(String(30), default=BookingStatus.AWAITING_ADVANCE, nullable=False, index=True)
    vendor_status = Column(String(30), default=BookingStatus.AWAITING_ADVANCE, nullable=False, index=True)
    user_status = Column(String(30), default=BookingStatus.AWAITING_ADVANCE, nullable=False, index=True)

    # Scheduling
    scheduled_date = Column(DateTime, nullable=False)
    scheduled_time = Column(String(10), nullable=False)  # HH:MM

    # Address
    address_street = Column(String(255), nullable=False)
    address_city = Column(String(100), nullable=False)
    address_state = Column(String(100), nullable=False)
    address_pincode = Column(String(10), nullable=False)
    address_landmark = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Survey context
    village = Column(String(100), nullable=True)
    mandal = Column(String(100), nullable=True)
    district = Column(String(100), nullable=True)
    purpose = Column(String(100), nullable=True)  # Agriculture, Domestic, ...
    notes = Column(Text, nullable=True)

    # Pricing - replaced as a whole from a Quote, never field by field
    base_service_fee = Column(Float, nullable=False)
    distance_km = Column(Float, nullable=True)
    travel_charges = Column(Float, default=0, nullable=False)
    subtotal = Column(Float, nullable=False)
    gst_amount = Column(Float, default=0, nullable=False)
    total_amount = Column(Float, nullable=False)
    advance_amount = Column(Float, nullable=False)
    remaining_amount = Column(Float, nullable=False)

    # Customer payments
    payment_status = Column(String(20), default="PENDING", nullable=False)  # PENDING, PARTIAL, SUCCESS
    advance_paid = Column(Boolean, default=False, nullable=False)
    advance_paid_at = Column(DateTime, nullable=True)
    advance_order_id = Column(String(100), nullable=True)
    advance_payment_id = Column(String(100), nullable=True)
    remaining_paid = Column(Boolean, default=False, nullable=False)
    remaining_paid_at = Column(DateTime, nullable=True)
    remaining_order_id = Column(String(100), nullable=True)
    remaining_payment_id = Column(String(100), nullable=True)

    # Vendor payout plan (two installments)
    payout_base_amount = Column(Float, default=0, nullable=False)
    payout_gst = Column(Float, default=0, nullable=False)
    payout_platform_fee = Column(Float, default=0, nullable=False)
    payout_total = Column(Float, default=0, nullable=False)
    site_visit_amount = Column(Float, default=0, nullable=False)
    site_visit_credited = Column(Boolean, default=False, nullable=False)
    site_visit_credited_at = Column(DateTime, nullable=True)
    site_visit_transaction_id = Column(Integer, nullable=True)  # vendor_wallet_transactions.id
    report_upload_amount = Column(Float, default=0, nullable=False)
    report_upload_credited = Column(Boolean, default=False, nullable=False)
    report_upload_credited_at = Column(DateTime, nullable=True)
    report_upload_transaction_id = Column(Integer, nullable=True)  # vendor_wallet_transactions.id

    # Report
    report_water_found = Column(Boolean, nullable=True)
    report_machine_readings = Column(JSON, nullable=True)  # depth, flowRate, quality, notes
    report_images = Column(JSON, nullable=True)  # [{"url", "public_id"}]
    report_file = Column(JSON, nullable=True)  # {"url", "public_id"}
    report_notes = Column(Text, nullable=True)
    report_uploaded_at = Column(DateTime, nullable=True)
    report_approved_at = Column(DateTime, nullable=True)
    report_approved_by = Column(Integer, nullable=True)
    # outstanding rejection blocks approval until the vendor resubmits
    report_rejected_at = Column(DateTime, nullable=True)
    report_rejected_by = Column(Integer, nullable=True)
    report_rejection_reason = Column(Text, nullable=True)  # last reason, kept after resubmission

    # Borewell outcome (customer)
    borewell_status = Column(String(20), nullable=True)  # SUCCESS, FAILED
    borewell_images = Column(JSON, nullable=True)
    borewell_notes = Column(Text, nullable=True)
    borewell_uploaded_at = Column(DateTime, nullable=True)
    borewell_approved_at = Column(DateTime, nullable=True)
    borewell_approved_by = Column(Integer, nullable=True)

    # Travel charges amendment - independent of the status triple
    travel_request_amount = Column(Float, nullable=True)
    travel_request_reason = Column(Text, nullable=True)
    travel_request_status = Column(String(20), nullable=True)  # PENDING, APPROVED, REJECTED
    travel_request_requested_at = Column(DateTime, nullable=True)
    travel_request_reviewed_at = Column(DateTime, nullable=True)
    travel_request_reviewed_by = Column(Integer, nullable=True)
    travel_request_rejection_reason = Column(Text, nullable=True)
    travel_request_paid = Column(Boolean, default=False, nullable=False)
    travel_request_paid_at = Column(DateTime, nullable=True)
    travel_request_paid_by = Column(Integer, nullable=True)
    travel_request_transaction_id = Column(Integer, nullable=True)  # vendor_wallet_transactions.id

    # Final settlement (after the borewell result is approved)
    settlement_incentive = Column(Float, default=0, nullable=False)
    settlement_penalty = Column(Float, default=0, nullable=False)
    settlement_transaction_id = Column(Integer, nullable=True)  # vendor_wallet_transactions.id
    settled_at = Column(DateTime, nullable=True)
    settled_by = Column(Integer, nullable=True)

    # Customer refund for a failed borewell
    refund_amount = Column(Float, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    # Invoice (best-effort, external generator)
    invoice_number = Column(String(50), nullable=True)
    invoice_url = Column(Text, nullable=True)
    invoice_generated_at = Column(DateTime, nullable=True)

    rejection_reason = Column(Text, nullable=True)
    cancellation_note = Column(Text, nullable=True)
    cancelled_by = Column(String(20), nullable=True)  # USER, VENDOR

    assigned_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    visited_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    customer = relationship("Customer", back_populates="bookings")
    vendor = relationship("Vendor")
    service = relationship("Service")
    rejected_vendors = relationship(
        "RejectedVendor", back_populates="booking", order_by="RejectedVendor.id"
    )
    payments = relationship("Payment", back_populates="booking", order_by="Payment.id")

    @property
    def state(self) -> BookingState:
        return BookingState(
            status=self.status, vendor_status=self.vendor_status, user_status=self.user_status
        )

    @property
    def rejected_vendor_ids(self) -> list:
        return [entry.vendor_id for entry in self.rejected_vendors]

    @property
    def vendor_wallet_payments(self) -> dict:
        return {
            "site_visit_payment": {
                "amount": self.site_visit_amount,
                "credited": self.site_visit_credited,
                "credited_at": self.site_visit_credited_at,
                "transaction_id": self.site_visit_transaction_id,
            },
            "report_upload_payment": {
                "amount": self.report_upload_amount,
                "credited": self.report_upload_credited,
                "credited_at": self.report_upload_credited_at,
                "transaction_id": self.report_upload_transaction_id,
            },
            "total_credited": (self.site_visit_amount if self.site_visit_credited else 0)
            + (self.report_upload_amount if self.report_upload_credited else 0),
        }


class RejectedVendor(Base):
    """Append-only history of vendors who turned a booking down"""

    __tablename__ = "booking_rejected_vendors"
    __table_args__ = (UniqueConstraint("booking_id", "vendor_id", name="uq_booking_rejected_vendor"),)

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    reason = Column(Text, nullable=True)
    initiated_by = Column(String(20), nullable=True)  # VENDOR (reject), VENDOR_CANCEL
    rejected_at = Column(DateTime(timezone=True), server_default=func.now())

    booking = relationship("Booking", back_populates="rejected_vendors")
