"""Payment domain schemas"""

from typing import Optional

from pydantic import BaseModel, Field


class VerifyPaymentRequest(BaseModel):
    """Checkout callback fields forwarded by the client after payment"""

    booking_id: int
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class RefundRequest(BaseModel):
    """Operator refund; omit amount to refund the whole remaining payment"""

    amount: Optional[float] = Field(None, gt=0)
