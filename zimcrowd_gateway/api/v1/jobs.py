"""/v1/jobs - Scheduled sweeps and operator actions, invoked by cron"""

import uuid
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends

from zimcrowd_gateway.api.dependencies import (
    get_coverage_service,
    get_direct_loan_service,
    get_notification_client,
    get_primary_market_service,
    get_repayment_service,
    get_secondary_market_service,
)
from zimcrowd_gateway.api.v1.schemas import JobResult, LenderRecoverySchema, RecoveryRequest
from zimcrowd_gateway.domain.models import NotificationEvent
from zimcrowd_gateway.infrastructure.clients.notifications import NotificationClient
from zimcrowd_gateway.services.coverage import CoverageService
from zimcrowd_gateway.services.direct_loans import DirectLoanService
from zimcrowd_gateway.services.primary_market import PrimaryMarketService
from zimcrowd_gateway.services.repayments import DuePayment, RepaymentService
from zimcrowd_gateway.services.secondary_market import SecondaryMarketService

router = APIRouter()


def _due_payload(payment: DuePayment) -> dict:
    return {
        "loan_id": str(payment.loan_id),
        "installment_number": payment.installment_number,
        "due_date": payment.due_date.isoformat(),
        "amount_due_cents": payment.amount_due_cents,
        "days_late": payment.days_late,
    }


@router.post("/jobs/expire-funding-offers", response_model=JobResult)
def expire_funding_offers(service: PrimaryMarketService = Depends(get_primary_market_service)):
    return JobResult(job="expire_funding_offers", affected=service.expire_offers())


@router.post("/jobs/expire-listings", response_model=JobResult)
def expire_listings(service: PrimaryMarketService = Depends(get_primary_market_service)):
    """Unfunded listings past their deadline; accepted lenders are refunded"""
    return JobResult(job="expire_listings", affected=service.expire_listings())


@router.post("/jobs/expire-secondary", response_model=JobResult)
def expire_secondary(service: SecondaryMarketService = Depends(get_secondary_market_service)):
    sweep = service.expire_listings()
    return JobResult(job="expire_secondary", affected=sweep.listings + sweep.offers)


@router.post("/jobs/mark-late", response_model=JobResult)
def mark_late(
    background_tasks: BackgroundTasks,
    as_of: Optional[date] = None,
    service: RepaymentService = Depends(get_repayment_service),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Flag overdue installments; every borrower with a late payment gets an overdue notice"""
    marked = service.mark_late_installments(as_of)
    for payment in service.overdue_payments(as_of):
        background_tasks.add_task(
            notifier.notify, payment.borrower_id, NotificationEvent.PAYMENT_OVERDUE, _due_payload(payment)
        )
    return JobResult(job="mark_late", affected=marked)


@router.post("/jobs/payment-reminders", response_model=JobResult)
def payment_reminders(
    background_tasks: BackgroundTasks,
    as_of: Optional[date] = None,
    service: RepaymentService = Depends(get_repayment_service),
    notifier: NotificationClient = Depends(get_notification_client),
):
    payments = service.upcoming_payments(as_of)
    for payment in payments:
        background_tasks.add_task(
            notifier.notify, payment.borrower_id, NotificationEvent.PAYMENT_REMINDER, _due_payload(payment)
        )
    return JobResult(job="payment_reminders", affected=len(payments))


@router.post("/jobs/scan-coverage", response_model=JobResult)
def scan_coverage(service: CoverageService = Depends(get_coverage_service)):
    return JobResult(job="scan_coverage", affected=service.scan_late_installments())


@router.post("/jobs/expire-coverage", response_model=JobResult)
def expire_coverage(service: CoverageService = Depends(get_coverage_service)):
    return JobResult(job="expire_coverage", affected=service.expire_old_offers())


@router.post("/jobs/expire-direct-offers", response_model=JobResult)
def expire_direct_offers(service: DirectLoanService = Depends(get_direct_loan_service)):
    return JobResult(job="expire_direct_offers", affected=service.expire_offers())


@router.post("/jobs/check-direct-loans", response_model=JobResult)
def check_direct_loans(service: DirectLoanService = Depends(get_direct_loan_service)):
    return JobResult(job="check_direct_loans", affected=service.check_late_loans())


@router.post("/jobs/loans/{loan_id}/default", response_model=JobResult)
def mark_defaulted(loan_id: uuid.UUID, service: RepaymentService = Depends(get_repayment_service)):
    service.mark_defaulted(loan_id)
    return JobResult(job="mark_defaulted", affected=1)


@router.post("/jobs/loans/{loan_id}/recovery", response_model=List[LenderRecoverySchema])
def distribute_recovery(
    loan_id: uuid.UUID,
    body: RecoveryRequest,
    service: RepaymentService = Depends(get_repayment_service),
):
    recoveries = service.distribute_recovery(loan_id, body.collected_cents)
    return [
        LenderRecoverySchema(
            holding_id=r.holding_id,
            lender_id=r.lender_id,
            net_share=r.share.lender_net_share,
            loss=r.share.lender_loss,
        )
        for r in recoveries
    ]
