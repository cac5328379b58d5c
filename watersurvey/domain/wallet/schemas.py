"""Wallet domain schemas"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WalletTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vendor_id: int
    booking_id: Optional[int] = None
    type: str
    amount: float
    balance_before: float
    balance_after: float
    status: str
    description: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class WalletTransactionListResponse(BaseModel):
    transactions: List[WalletTransactionResponse]
    total: int
    skip: int
    limit: int


class WalletSummaryResponse(BaseModel):
    vendor_id: int
    balance: float
    reserved_for_withdrawals: float = 0
    available_balance: float = 0
    total_credited: float
    total_debited: float
    total_earnings: float
    total_debits: float
    this_month_earnings: float
    failed_credits: int


class RetryCreditResponse(BaseModel):
    success: bool
    already_credited: bool = False
    error: Optional[str] = None
    transaction: Optional[WalletTransactionResponse] = None


class WithdrawalCreate(BaseModel):
    amount: float = Field(..., gt=0)
    payout_details: Optional[dict] = None  # {"upi_id": ...} or bank account fields
    note: Optional[str] = Field(None, max_length=500)


class WithdrawalProcessRequest(BaseModel):
    payment_method: str
    payment_reference: str = Field(..., min_length=1, max_length=100)
    note: Optional[str] = Field(None, max_length=500)


class WithdrawalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vendor_id: int
    amount: float
    status: str
    payout_details: Optional[dict] = None
    note: Optional[str] = None
    rejection_reason: Optional[str] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
