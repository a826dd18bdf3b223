"""/v1/wallets - Cash and Credit balances, ledger history, deposits and withdrawals"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from zimcrowd_gateway.api.dependencies import get_current_user_id, get_ledger_service
from zimcrowd_gateway.api.v1.schemas import (
    AmountRequest,
    LedgerEntrySchema,
    LedgerHistoryResponse,
    ReconciliationResponse,
    WalletBalanceResponse,
    WalletStatisticsResponse,
)
from zimcrowd_gateway.domain.models import WalletType
from zimcrowd_gateway.services.ledger import LedgerService

router = APIRouter()


def _balances(ledger: LedgerService, user_id: str) -> WalletBalanceResponse:
    return WalletBalanceResponse(
        user_id=user_id,
        cash_cents=ledger.get_balance(user_id, WalletType.CASH),
        credit_cents=ledger.get_balance(user_id, WalletType.CREDIT),
    )


@router.get("/wallets/balance", response_model=WalletBalanceResponse)
def get_balances(
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return _balances(ledger, user_id)


@router.get("/wallets/history", response_model=LedgerHistoryResponse)
def get_history(
    wallet: Optional[WalletType] = Query(None, description="Restrict to one wallet"),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Most recent ledger entries first"""
    entries = ledger.get_history(user_id, wallet, limit)
    return LedgerHistoryResponse(user_id=user_id, entries=[LedgerEntrySchema.model_validate(e) for e in entries])


@router.get("/wallets/statistics", response_model=WalletStatisticsResponse)
def get_statistics(
    wallet: WalletType = Query(WalletType.CREDIT),
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    stats = ledger.get_statistics(user_id, wallet)
    return WalletStatisticsResponse(
        wallet_type=wallet,
        total_earned_cents=stats.total_earned_cents,
        total_spent_cents=stats.total_spent_cents,
        net_earnings_cents=stats.net_earnings_cents,
        current_balance_cents=stats.current_balance_cents,
        by_type=stats.by_type,
    )


@router.get("/wallets/reconcile", response_model=ReconciliationResponse)
def reconcile(
    wallet: WalletType = Query(WalletType.CASH),
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    result = ledger.reconcile(user_id, wallet)
    return ReconciliationResponse(
        wallet_type=wallet,
        cached_balance_cents=result.cached_balance_cents,
        ledger_balance_cents=result.ledger_balance_cents,
        consistent=result.consistent,
    )


@router.post("/wallets/deposit", response_model=WalletBalanceResponse)
def deposit(
    body: AmountRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Record a completed gateway deposit into the Cash wallet"""
    ledger.deposit(user_id, body.amount_cents, body.reference_id)
    return _balances(ledger, user_id)


@router.post("/wallets/withdraw", response_model=WalletBalanceResponse)
def withdraw(
    body: AmountRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    ledger.withdraw(user_id, body.amount_cents, reference_id=body.reference_id)
    return _balances(ledger, user_id)


@router.post("/wallets/signup-bonus", response_model=WalletBalanceResponse)
def claim_signup_bonus(
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    ledger.award_signup_bonus(user_id)
    return _balances(ledger, user_id)
