"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from ...models_booking import Booking
from ..pricing.calculator import present


class BookingCreate(BaseModel):
    """Schema for a customer booking a vendor's service"""

    service_id: int
    scheduled_date: datetime
    scheduled_time: str
    address_street: str
    address_city: str
    address_state: str
    address_pincode: str
    address_landmark: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    village: Optional[str] = None
    mandal: Optional[str] = None
    district: Optional[str] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError("scheduled_time must be HH:MM")
        hours, minutes = int(parts[0]), int(parts[1])
        if hours > 23 or minutes > 59:
            raise ValueError("scheduled_time must be HH:MM")
        return f"{hours:02d}:{minutes:02d}"

    @field_validator("address_pincode")
    @classmethod
    def validate_pincode(cls, v: str) -> str:
        if not v.isdigit() or len(v) != 6:
            raise ValueError("address_pincode must be 6 digits")
        return v

    @field_validator("latitude")
    @classmethod
    def validate_latitude(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not -90 <= v <= 90:
            raise ValueError("latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def validate_longitude(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not -180 <= v <= 180:
            raise ValueError("longitude must be between -180 and 180")
        return v


class ReasonRequest(BaseModel):
    reason: str = Field(..., max_length=1000)


class OptionalReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class TravelChargesRequest(BaseModel):
    amount: float
    reason: Optional[str] = Field(None, max_length=1000)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("amount must be greater than 0")
        return v


class FinalSettlementRequest(BaseModel):
    """Operator adjustments applied when a booking is settled"""

    incentive: float = Field(0, ge=0)
    penalty: float = Field(0, ge=0)


class StateView(BaseModel):
    overall: str
    vendor: str
    user: str


class PaymentView(BaseModel):
    base_service_fee: float
    distance_km: Optional[float] = None
    travel_charges: float
    subtotal: float
    gst_amount: float
    total_amount: float
    advance_amount: float
    remaining_amount: float
    payment_status: str
    advance_paid: bool
    advance_paid_at: Optional[datetime] = None
    advance_order_id: Optional[str] = None
    remaining_paid: bool
    remaining_paid_at: Optional[datetime] = None
    remaining_order_id: Optional[str] = None
    vendor_wallet_payments: dict


class ReportView(BaseModel):
    water_found: Optional[bool] = None
    machine_readings: Optional[dict] = None
    images: List[dict] = []
    report_file: Optional[dict] = None
    notes: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class TravelChargesView(BaseModel):
    amount: Optional[float] = None
    reason: Optional[str] = None
    status: Optional[str] = None
    requested_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    paid: bool = False
    paid_at: Optional[datetime] = None


class BookingResponse(BaseModel):
    id: int
    public_id: str
    customer_id: int
    vendor_id: int
    service_id: int
    status: str
    vendor_status: str
    user_status: str
    state: StateView
    scheduled_date: datetime
    scheduled_time: str
    address: dict
    purpose: Optional[str] = None
    payment: PaymentView
    report: Optional[ReportView] = None
    borewell: Optional[dict] = None
    travel_charges_request: Optional[TravelChargesView] = None
    settlement: Optional[dict] = None
    invoice: Optional[dict] = None
    rejected_vendors: List[int] = []
    rejection_reason: Optional[str] = None
    cancellation_note: Optional[str] = None
    cancelled_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    visited_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        state = booking.state
        wallet = booking.vendor_wallet_payments
        for key in ("site_visit_payment", "report_upload_payment"):
            wallet[key]["amount"] = present(wallet[key]["amount"])
        wallet["total_credited"] = present(wallet["total_credited"])

        report = None
        if booking.report_uploaded_at:
            report = ReportView(
                water_found=booking.report_water_found,
                machine_readings=booking.report_machine_readings,
                images=booking.report_images or [],
                report_file=booking.report_file,
                notes=booking.report_notes,
                uploaded_at=booking.report_uploaded_at,
                approved_at=booking.report_approved_at,
                rejected_at=booking.report_rejected_at,
                rejection_reason=booking.report_rejection_reason,
            )

        travel_request = None
        if booking.travel_request_status:
            travel_request = TravelChargesView(
                amount=booking.travel_request_amount,
                reason=booking.travel_request_reason,
                status=booking.travel_request_status,
                requested_at=booking.travel_request_requested_at,
                reviewed_at=booking.travel_request_reviewed_at,
                rejection_reason=booking.travel_request_rejection_reason,
                paid=bool(booking.travel_request_paid),
                paid_at=booking.travel_request_paid_at,
            )

        return cls(
            id=booking.id,
            public_id=booking.public_id,
            customer_id=booking.customer_id,
            vendor_id=booking.vendor_id,
            service_id=booking.service_id,
            status=state.overall(),
            vendor_status=state.vendor_view(),
            user_status=state.user_view(),
            state=StateView(overall=state.overall(), vendor=state.vendor_view(), user=state.user_view()),
            scheduled_date=booking.scheduled_date,
            scheduled_time=booking.scheduled_time,
            address={
                "street": booking.address_street,
                "city": booking.address_city,
                "state": booking.address_state,
                "pincode": booking.address_pincode,
                "landmark": booking.address_landmark,
                "coordinates": {"latitude": booking.latitude, "longitude": booking.longitude},
                "village": booking.village,
                "mandal": booking.mandal,
                "district": booking.district,
            },
            purpose=booking.purpose,
            payment=PaymentView(
                base_service_fee=present(booking.base_service_fee),
                distance_km=present(booking.distance_km),
                travel_charges=present(booking.travel_charges),
                subtotal=present(booking.subtotal),
                gst_amount=present(booking.gst_amount),
                total_amount=present(booking.total_amount),
                advance_amount=present(booking.advance_amount),
                remaining_amount=present(booking.remaining_amount),
                payment_status=booking.payment_status,
                advance_paid=booking.advance_paid,
                advance_paid_at=booking.advance_paid_at,
                advance_order_id=booking.advance_order_id,
                remaining_paid=booking.remaining_paid,
                remaining_paid_at=booking.remaining_paid_at,
                remaining_order_id=booking.remaining_order_id,
                vendor_wallet_payments=wallet,
            ),
            report=report,
            borewell=(
                {
                    "status": booking.borewell_status,
                    "images": booking.borewell_images or [],
                    "notes": booking.borewell_notes,
                    "uploaded_at": booking.borewell_uploaded_at,
                    "approved_at": booking.borewell_approved_at,
                }
                if booking.borewell_uploaded_at
                else None
            ),
            travel_charges_request=travel_request,
            settlement=(
                {
                    "incentive": present(booking.settlement_incentive or 0),
                    "penalty": present(booking.settlement_penalty or 0),
                    "settled_at": booking.settled_at,
                    "refund_amount": present(booking.refund_amount),
                    "refunded_at": booking.refunded_at,
                }
                if booking.settled_at or booking.refunded_at
                else None
            ),
            invoice=(
                {
                    "invoice_number": booking.invoice_number,
                    "invoice_url": booking.invoice_url,
                    "generated_at": booking.invoice_generated_at,
                }
                if booking.invoice_number
                else None
            ),
            rejected_vendors=booking.rejected_vendor_ids,
            rejection_reason=booking.rejection_reason,
            cancellation_note=booking.cancellation_note,
            cancelled_by=booking.cancelled_by,
            assigned_at=booking.assigned_at,
            accepted_at=booking.accepted_at,
            visited_at=booking.visited_at,
            completed_at=booking.completed_at,
            cancelled_at=booking.cancelled_at,
            created_at=booking.created_at,
        )


class ActionResponse(BaseModel):
    """Success envelope returned by every mutating endpoint"""

    success: bool = True
    message: str
    data: Optional[Any] = None


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]
    count: int
