"""Payments router - checkout verification, gateway webhooks and refunds"""

import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_admin, get_current_customer
from ...database import get_db
from ...services.invoice_service import InvoiceClient, get_invoice_client
from ..bookings.schemas import ActionResponse, BookingResponse
from .gateway import RazorpayGateway, get_payment_gateway
from .schemas import RefundRequest, VerifyPaymentRequest
from .service import SettlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_settlement_service(
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    invoice_client: InvoiceClient = Depends(get_invoice_client),
) -> SettlementService:
    """Dependency injection for SettlementService"""
    return SettlementService(db, gateway, invoice_client)


@router.post("/advance/verify", response_model=ActionResponse)
async def verify_advance_payment(
    body: VerifyPaymentRequest,
    customer: Actor = Depends(get_current_customer),
    service: SettlementService = Depends(get_settlement_service),
):
    """Verify the advance (40%) checkout and confirm the booking"""
    booking = service.verify_advance_payment(
        customer.id,
        body.booking_id,
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
    )
    return ActionResponse(
        message="Advance payment verified. Your expert has been notified.",
        data=BookingResponse.from_booking(booking),
    )


@router.post("/remaining/verify", response_model=ActionResponse)
async def verify_remaining_payment(
    body: VerifyPaymentRequest,
    customer: Actor = Depends(get_current_customer),
    service: SettlementService = Depends(get_settlement_service),
):
    """Verify the remaining (60%) checkout and unlock the report"""
    booking = await service.verify_remaining_payment(
        customer.id,
        body.booking_id,
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
    )
    return ActionResponse(
        message="Payment successful. Your survey report is now available.",
        data=BookingResponse.from_booking(booking),
    )


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: str = Header(None),
    service: SettlementService = Depends(get_settlement_service),
):
    """Gateway webhook (payment.captured / payment.failed)"""
    body = await request.body()
    result = await service.handle_webhook(body, x_razorpay_signature)
    return {"success": True, **result}


@router.post("/admin/bookings/{booking_id}/refund", response_model=ActionResponse)
async def refund_booking(
    booking_id: int,
    body: RefundRequest,
    admin: Actor = Depends(get_current_admin),
    service: SettlementService = Depends(get_settlement_service),
):
    """Refund the customer after an approved failed borewell result"""
    booking, payment = await service.refund_customer(admin.id, booking_id, body.amount)
    return ActionResponse(
        message="Refund processed",
        data={
            "booking": BookingResponse.from_booking(booking),
            "refund_id": payment.gateway_order_id,
            "amount": payment.amount,
        },
    )
