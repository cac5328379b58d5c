"""Wallet routers - vendor ledger views, withdrawals and admin retry of failed credits"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_admin, get_current_vendor
from ...database import get_db
from ...models_wallet import WalletTransactionType
from ..bookings.schemas import ReasonRequest
from .payouts import PayoutService
from .repository import VendorNotFoundError, WalletRepository
from .schemas import (
    RetryCreditResponse,
    WalletSummaryResponse,
    WalletTransactionListResponse,
    WalletTransactionResponse,
    WithdrawalCreate,
    WithdrawalProcessRequest,
    WithdrawalResponse,
)
from .service import WalletRetryError, WalletService
from .withdrawals import WithdrawalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vendor/wallet", tags=["Vendor Wallet"])
admin_router = APIRouter(prefix="/admin/wallet", tags=["Admin Wallet"])


def get_wallet_service(db: Session = Depends(get_db)) -> WalletService:
    """Dependency injection for WalletService"""
    return WalletService(db)


def get_withdrawal_service(db: Session = Depends(get_db)) -> WithdrawalService:
    """Dependency injection for WithdrawalService"""
    return WithdrawalService(db)


@router.get("", response_model=WalletSummaryResponse)
async def get_wallet(
    vendor: Actor = Depends(get_current_vendor),
    service: WalletService = Depends(get_wallet_service),
):
    try:
        return service.get_wallet_summary(vendor.id)
    except VendorNotFoundError:
        raise HTTPException(status_code=404, detail="Vendor not found")


@router.get("/transactions", response_model=WalletTransactionListResponse)
async def list_wallet_transactions(
    type: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    vendor: Actor = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    if type and type not in WalletTransactionType.ALL:
        raise HTTPException(status_code=400, detail=f"Unknown transaction type: {type}")
    rows, total = WalletRepository.list_transactions(
        db, vendor.id, tx_type=type, status=status, skip=skip, limit=limit
    )
    return WalletTransactionListResponse(
        transactions=[WalletTransactionResponse.model_validate(r) for r in rows],
        total=total,
        skip=skip,
        limit=limit,
    )


@admin_router.get("/failed-credits", response_model=list[WalletTransactionResponse])
async def list_failed_credits(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: Actor = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Unresolved FAILED ledger rows awaiting retry"""
    return [
        WalletTransactionResponse.model_validate(r)
        for r in WalletRepository.list_failed_credits(db, skip=skip, limit=limit)
    ]


@admin_router.post("/transactions/{transaction_id}/retry", response_model=RetryCreditResponse)
async def retry_failed_credit(
    transaction_id: int,
    admin: Actor = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Manually retry a failed credit"""
    payouts = PayoutService(db)
    try:
        result = payouts.retry_credit(transaction_id)
    except WalletRetryError as e:
        raise HTTPException(status_code=400, detail=e.message)
    db.commit()
    logger.info(f"🔄 Admin {admin.id} retried credit {transaction_id}: success={result.success}")
    return RetryCreditResponse(
        success=result.success,
        already_credited=result.already_credited,
        error=result.error,
        transaction=(
            WalletTransactionResponse.model_validate(result.transaction) if result.transaction else None
        ),
    )


# ============================================================================
# WITHDRAWALS
# ============================================================================


@router.post("/withdrawals", response_model=WithdrawalResponse, status_code=201)
async def request_withdrawal(
    body: WithdrawalCreate,
    vendor: Actor = Depends(get_current_vendor),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    """Ask for a payout; the amount is reserved until the request is decided"""
    try:
        request = service.request_withdrawal(vendor.id, body.amount, body.payout_details, body.note)
    except VendorNotFoundError:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return WithdrawalResponse.model_validate(request)


@router.get("/withdrawals", response_model=list[WithdrawalResponse])
async def list_my_withdrawals(
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    vendor: Actor = Depends(get_current_vendor),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    return [
        WithdrawalResponse.model_validate(r)
        for r in service.list_requests(vendor_id=vendor.id, status=status, skip=skip, limit=limit)
    ]


@admin_router.get("/withdrawals", response_model=list[WithdrawalResponse])
async def admin_list_withdrawals(
    status: Optional[str] = None,
    vendor_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: Actor = Depends(get_current_admin),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    return [
        WithdrawalResponse.model_validate(r)
        for r in service.list_requests(vendor_id=vendor_id, status=status, skip=skip, limit=limit)
    ]


@admin_router.post("/withdrawals/{request_id}/approve", response_model=WithdrawalResponse)
async def approve_withdrawal(
    request_id: int,
    admin: Actor = Depends(get_current_admin),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    return WithdrawalResponse.model_validate(service.approve(admin.id, request_id))


@admin_router.post("/withdrawals/{request_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(
    request_id: int,
    body: ReasonRequest,
    admin: Actor = Depends(get_current_admin),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    return WithdrawalResponse.model_validate(service.reject(admin.id, request_id, body.reason))


@admin_router.post("/withdrawals/{request_id}/process", response_model=WithdrawalResponse)
async def process_withdrawal(
    request_id: int,
    body: WithdrawalProcessRequest,
    admin: Actor = Depends(get_current_admin),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    """Record the payout made outside the platform and debit the wallet"""
    try:
        request = service.process(
            admin.id, request_id, body.payment_method.upper(), body.payment_reference, body.note
        )
    except VendorNotFoundError:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return WithdrawalResponse.model_validate(request)
