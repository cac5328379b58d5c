"""Booking routers - customer, vendor and admin endpoints for the booking lifecycle"""

import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_admin, get_current_customer, get_current_vendor
from ...database import get_db
from ...services.storage_service import (
    ALLOWED_UPLOAD_TYPES,
    MAX_UPLOAD_BYTES,
    StorageService,
    get_storage_service,
)
from ...worker import enqueue_credit_retry
from ..payments.gateway import RazorpayGateway, get_payment_gateway
from ..pricing.calculator import present
from .schemas import (
    ActionResponse,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    FinalSettlementRequest,
    OptionalReasonRequest,
    ReasonRequest,
    TravelChargesRequest,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])
vendor_router = APIRouter(prefix="/vendor/bookings", tags=["Vendor Bookings"])
admin_router = APIRouter(prefix="/admin/bookings", tags=["Admin Bookings"])

MAX_REPORT_IMAGES = 10


def get_credit_retry_scheduler():
    return enqueue_credit_retry


def get_booking_service(
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    scheduler=Depends(get_credit_retry_scheduler),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, gateway=gateway, schedule_credit_retry=scheduler)


async def _store_uploads(
    storage: StorageService, files: List[UploadFile], folder: str
) -> List[dict]:
    stored = []
    for upload in files:
        if upload.content_type not in ALLOWED_UPLOAD_TYPES:
            raise HTTPException(status_code=400, detail=f"Unsupported file type: {upload.content_type}")
        contents = await upload.read()
        if len(contents) > MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=400, detail="File size must be less than 10MB")
        try:
            stored.append(storage.upload(contents, folder, upload.content_type, upload.filename))
        except Exception as e:
            logger.error(f"❌ Upload to storage failed: {e}")
            raise HTTPException(status_code=502, detail="Failed to store uploaded file")
    return stored


# ============================================================================
# CUSTOMER
# ============================================================================


@router.post("", response_model=ActionResponse, status_code=201)
async def create_booking(
    body: BookingCreate,
    customer: Actor = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
):
    """Create a booking and open the advance payment order"""
    booking, order = await service.create_booking(customer.id, body)
    return ActionResponse(
        message="Booking created. Complete the advance payment to confirm it.",
        data={
            "booking": BookingResponse.from_booking(booking),
            "order": {
                "order_id": order["order_id"],
                "amount": present(order["amount"]),
                "currency": order["currency"],
            },
        },
    )


@router.get("", response_model=BookingListResponse)
async def list_my_bookings(
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    customer: Actor = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
):
    bookings = service.list_bookings(customer_id=customer.id, status=status, skip=skip, limit=limit)
    return BookingListResponse(
        bookings=[BookingResponse.from_booking(b) for b in bookings], count=len(bookings)
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_my_booking(
    booking_id: int,
    customer: Actor = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(service.get_customer_booking(customer.id, booking_id))


@router.post("/{booking_id}/cancel", response_model=ActionResponse)
async def cancel_booking(
    booking_id: int,
    body: OptionalReasonRequest,
    customer: Actor = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.cancel_by_user(customer.id, booking_id, body.reason)
    return ActionResponse(message="Booking cancelled", data=BookingResponse.from_booking(booking))


@router.post("/{booking_id}/borewell-result", response_model=ActionResponse)
async def upload_borewell_result(
    booking_id: int,
    status: str = Form(...),
    notes: Optional[str] = Form(None),
    images: List[UploadFile] = File(default=[]),
    customer: Actor = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
    storage: StorageService = Depends(get_storage_service),
):
    """Record whether the borewell drilled at the surveyed point found water"""
    # resolve the booking first so a foreign id never reaches storage
    service.get_customer_booking(customer.id, booking_id)
    stored = await _store_uploads(storage, images[:MAX_REPORT_IMAGES], f"bookings/{booking_id}/borewell")
    booking = service.upload_borewell_result(customer.id, booking_id, status.upper(), stored, notes)
    return ActionResponse(message="Borewell result uploaded", data=BookingResponse.from_booking(booking))


# ============================================================================
# VENDOR
# ============================================================================


@vendor_router.get("", response_model=BookingListResponse)
async def list_vendor_bookings(
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
):
    bookings = service.list_bookings(vendor_id=vendor.id, vendor_status=status, skip=skip, limit=limit)
    return BookingListResponse(
        bookings=[BookingResponse.from_booking(b) for b in bookings], count=len(bookings)
    )


@vendor_router.get("/{booking_id}", response_model=BookingResponse)
async def get_vendor_booking(
    booking_id: int,
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(service.get_vendor_booking(vendor.id, booking_id))


@vendor_router.post("/{booking_id}/accept", response_model=ActionResponse)
async def accept_booking(
    booking_id: int,
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.accept(vendor.id, booking_id)
    return ActionResponse(message="Booking accepted", data=BookingResponse.from_booking(booking))


@vendor_router.post("/{booking_id}/reject", response_model=ActionResponse)
async def reject_booking(
    booking_id: int,
    body: ReasonRequest,
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
):
    outcome = service.reject(vendor.id, booking_id, body.reason)
    message = (
        "Booking rejected and reassigned to another vendor"
        if outcome.reassigned
        else "Booking rejected. No other vendors available."
    )
    return ActionResponse(
        message=message,
        data={"reassigned": outcome.reassigned, "booking_id": outcome.booking.id},
    )


@vendor_router.post("/{booking_id}/cancel", response_model=ActionResponse)
async def vendor_cancel_booking(
    booking_id: int,
    body: ReasonRequest,
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
):
    outcome = service.cancel_by_vendor(vendor.id, booking_id, body.reason)
    message = (
        "Booking cancelled and reassigned to another vendor"
        if outcome.reassigned
        else "Booking cancelled. No other vendors available."
    )
    return ActionResponse(
        message=message,
        data={"reassigned": outcome.reassigned, "booking_id": outcome.booking.id},
    )


@vendor_router.post("/{booking_id}/visited", response_model=ActionResponse)
async def mark_visited(
    booking_id: int,
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
):
    booking, credit = await service.mark_visited(vendor.id, booking_id)
    message = "Booking marked as visited"
    if credit.success:
        message += f". ₹{present(booking.site_visit_amount):.2f} credited to your wallet."
    else:
        message += ". Wallet credit is delayed and will be retried."
    return ActionResponse(
        message=message,
        data={
            "booking": BookingResponse.from_booking(booking),
            "wallet_credit": {
                "success": credit.success,
                "transaction_id": credit.transaction.id if credit.transaction else None,
                "error": credit.error,
            },
        },
    )


@vendor_router.post("/{booking_id}/report", response_model=ActionResponse)
async def upload_report(
    booking_id: int,
    water_found: bool = Form(...),
    machine_readings: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    images: List[UploadFile] = File(default=[]),
    report_file: Optional[UploadFile] = File(None),
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
    storage: StorageService = Depends(get_storage_service),
):
    """Upload the survey report (or replace a rejected one); the customer is asked for the remaining payment"""
    readings = None
    if machine_readings:
        try:
            readings = json.loads(machine_readings)
        except ValueError:
            raise HTTPException(status_code=400, detail="machine_readings must be valid JSON")
        if not isinstance(readings, dict):
            raise HTTPException(status_code=400, detail="machine_readings must be a JSON object")
    if len(images) > MAX_REPORT_IMAGES:
        raise HTTPException(status_code=400, detail=f"Maximum {MAX_REPORT_IMAGES} images allowed")

    existing = service.get_vendor_booking(vendor.id, booking_id)
    folder = f"bookings/{booking_id}/report"
    stored_images = await _store_uploads(storage, images, folder)
    stored_file = None
    if report_file is not None:
        stored_file = (await _store_uploads(storage, [report_file], folder))[0]

    if existing.report_rejected_at:
        booking = service.resubmit_report(
            vendor.id,
            booking_id,
            water_found=water_found,
            machine_readings=readings,
            images=stored_images,
            report_file=stored_file,
            notes=notes,
        )
        return ActionResponse(message="Report resubmitted for review", data=BookingResponse.from_booking(booking))

    booking, order = await service.upload_report(
        vendor.id,
        booking_id,
        water_found=water_found,
        machine_readings=readings,
        images=stored_images,
        report_file=stored_file,
        notes=notes,
    )
    return ActionResponse(
        message="Report uploaded successfully",
        data={
            "booking": BookingResponse.from_booking(booking),
            "remaining_order": {
                "order_id": order["order_id"],
                "amount": present(order["amount"]),
                "currency": order["currency"],
            },
        },
    )


@vendor_router.post("/{booking_id}/complete", response_model=ActionResponse)
async def complete_booking(
    booking_id: int,
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.mark_completed(vendor.id, booking_id)
    return ActionResponse(message="Booking marked as completed", data=BookingResponse.from_booking(booking))


@vendor_router.post("/{booking_id}/travel-charges", response_model=ActionResponse)
async def request_travel_charges(
    booking_id: int,
    body: TravelChargesRequest,
    vendor: Actor = Depends(get_current_vendor),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.request_travel_charges(vendor.id, booking_id, body.amount, body.reason)
    return ActionResponse(
        message="Travel charges request submitted", data=BookingResponse.from_booking(booking)
    )


# ============================================================================
# ADMIN
# ============================================================================


@admin_router.get("", response_model=BookingListResponse)
async def admin_list_bookings(
    status: Optional[str] = None,
    vendor_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    bookings = service.list_bookings(
        customer_id=customer_id, vendor_id=vendor_id, status=status, skip=skip, limit=limit
    )
    return BookingListResponse(
        bookings=[BookingResponse.from_booking(b) for b in bookings], count=len(bookings)
    )


@admin_router.get("/{booking_id}", response_model=BookingResponse)
async def admin_get_booking(
    booking_id: int,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(service.get_booking(booking_id))


@admin_router.post("/{booking_id}/approve-report", response_model=ActionResponse)
async def approve_report(
    booking_id: int,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Approve the survey report and release the vendor's second installment"""
    booking, credit = service.approve_report(admin.id, booking_id)
    return ActionResponse(
        message="Report approved" + ("" if credit.success else ". Vendor credit failed and will be retried."),
        data={
            "booking": BookingResponse.from_booking(booking),
            "wallet_credit": {
                "success": credit.success,
                "transaction_id": credit.transaction.id if credit.transaction else None,
                "error": credit.error,
            },
        },
    )


@admin_router.post("/{booking_id}/travel-charges/approve", response_model=ActionResponse)
async def approve_travel_charges(
    booking_id: int,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.review_travel_charges(admin.id, booking_id, approve=True)
    return ActionResponse(message="Travel charges approved", data=BookingResponse.from_booking(booking))


@admin_router.post("/{booking_id}/travel-charges/reject", response_model=ActionResponse)
async def reject_travel_charges(
    booking_id: int,
    body: ReasonRequest,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.review_travel_charges(admin.id, booking_id, approve=False, rejection_reason=body.reason)
    return ActionResponse(message="Travel charges rejected", data=BookingResponse.from_booking(booking))


@admin_router.post("/{booking_id}/travel-charges/pay", response_model=ActionResponse)
async def pay_travel_charges(
    booking_id: int,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Credit approved travel charges to the vendor's wallet"""
    booking, credit = await service.pay_travel_charges(admin.id, booking_id)
    return ActionResponse(
        message="Travel charges paid" + ("" if credit.success else ". Vendor credit failed and will be retried."),
        data={
            "booking": BookingResponse.from_booking(booking),
            "wallet_credit": _credit_view(credit),
        },
    )


@admin_router.post("/{booking_id}/reject-report", response_model=ActionResponse)
async def reject_report(
    booking_id: int,
    body: ReasonRequest,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.reject_report(admin.id, booking_id, body.reason)
    return ActionResponse(message="Report rejected", data=BookingResponse.from_booking(booking))


@admin_router.post("/{booking_id}/approve-borewell", response_model=ActionResponse)
async def approve_borewell_result(
    booking_id: int,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.approve_borewell_result(admin.id, booking_id)
    return ActionResponse(message="Borewell result approved", data=BookingResponse.from_booking(booking))


@admin_router.post("/{booking_id}/final-settlement", response_model=ActionResponse)
async def process_final_settlement(
    booking_id: int,
    body: FinalSettlementRequest,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Complete a booking, applying the operator's incentive or penalty"""
    booking, credit = await service.process_final_settlement(
        admin.id, booking_id, incentive=body.incentive, penalty=body.penalty
    )
    message = "Final settlement processed"
    if credit is not None and not credit.success:
        message += ". Vendor reward failed and will be retried."
    return ActionResponse(
        message=message,
        data={
            "booking": BookingResponse.from_booking(booking),
            "wallet_credit": _credit_view(credit) if credit is not None else None,
        },
    )


def _credit_view(credit) -> dict:
    return {
        "success": credit.success,
        "transaction_id": credit.transaction.id if credit.transaction else None,
        "error": credit.error,
    }
