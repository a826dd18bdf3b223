"""Dependency injection for FastAPI endpoints"""

from typing import Optional
from fastapi import Depends, Header
from sqlalchemy.orm import Session
from zimcrowd_gateway.domain.exceptions import UnauthenticatedError
from zimcrowd_gateway.infrastructure.clients.notifications import NotificationClient
from zimcrowd_gateway.infrastructure.database.session import get_db
from zimcrowd_gateway.services.coverage import CoverageService
from zimcrowd_gateway.services.direct_loans import DirectLoanService
from zimcrowd_gateway.services.ledger import LedgerService
from zimcrowd_gateway.services.primary_market import PrimaryMarketService
from zimcrowd_gateway.services.repayments import RepaymentService
from zimcrowd_gateway.services.secondary_market import SecondaryMarketService


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Authenticated user id, supplied by the identity provider in front of this service"""
    if not x_user_id or not x_user_id.strip():
        raise UnauthenticatedError("Missing X-User-ID header")
    return x_user_id.strip()


def get_notification_client() -> NotificationClient:
    """Provide notification dispatcher client instance"""
    return NotificationClient()


def get_ledger_service(db: Session = Depends(get_db)) -> LedgerService:
    return LedgerService(db)


def get_primary_market_service(db: Session = Depends(get_db)) -> PrimaryMarketService:
    return PrimaryMarketService(db)


def get_secondary_market_service(db: Session = Depends(get_db)) -> SecondaryMarketService:
    return SecondaryMarketService(db)


def get_coverage_service(db: Session = Depends(get_db)) -> CoverageService:
    return CoverageService(db)


def get_repayment_service(db: Session = Depends(get_db)) -> RepaymentService:
    return RepaymentService(db)


def get_direct_loan_service(db: Session = Depends(get_db)) -> DirectLoanService:
    return DirectLoanService(db)
