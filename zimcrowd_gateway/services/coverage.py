"""Payment coverage: platform credit offered to lenders for late installments

When a lender accepts, the platform pays the lender in Credit and takes over
the borrower's obligation for that installment as a receivable. The borrower
still owes the installment; a later payment goes to the platform account.
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from zimcrowd_gateway.config import settings
from zimcrowd_gateway.domain.coverage import coverage_amount, coverage_percentage
from zimcrowd_gateway.domain.exceptions import (
    AuthorizationError,
    NotFoundError,
    OfferAlreadyExistsError,
    OfferExpiredError,
    OfferNotPendingError,
    StateConflictError,
)
from zimcrowd_gateway.domain.models import CoverageOfferStatus, InstallmentStatus, LedgerEntryType, WalletType
from zimcrowd_gateway.infrastructure.database.models import CoverageOffer
from zimcrowd_gateway.infrastructure.database.repositories import (
    CoverageOfferRepository,
    HoldingRepository,
    InstallmentRepository,
    ListingRepository,
)
from zimcrowd_gateway.infrastructure.database.session import atomic
from zimcrowd_gateway.infrastructure.observability.logging import log_settlement
from zimcrowd_gateway.infrastructure.observability.metrics import coverage_offer_counter
from zimcrowd_gateway.services.ledger import LedgerService
from zimcrowd_gateway.services.repayments import settle_holding
from zimcrowd_gateway.utils.date_utils import days_between, is_past, utcnow
from zimcrowd_gateway.utils.money import from_cents, to_cents

logger = logging.getLogger(__name__)


class CoverageService:
    def __init__(self, db: Session):
        self.db = db
        self.offers = CoverageOfferRepository(db)
        self.installments = InstallmentRepository(db)
        self.holdings = HoldingRepository(db)
        self.loans = ListingRepository(db)
        self.ledger = LedgerService(db)

    def create_offer(
        self,
        installment_id: uuid.UUID,
        days_late: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> CoverageOffer:
        """
        Offer the installment's current holder credit in place of the late cash.

        A partial unique index allows one pending offer per installment, so a
        repeated or concurrent call fails with OfferAlreadyExistsError instead
        of creating a second offer.
        """
        installment = self.installments.get(installment_id)
        if installment is None:
            raise NotFoundError("Installment not found", {"installment_id": str(installment_id)})
        if installment.status != InstallmentStatus.LATE:
            raise StateConflictError(
                "Coverage is only offered on late installments",
                {"installment_id": str(installment.id), "status": installment.status.value},
            )
        if self.offers.get_pending_for_installment(installment.id) is not None:
            raise OfferAlreadyExistsError("A pending coverage offer already exists", {"installment_id": str(installment.id)})

        if days_late is None:
            days_late = max(days_between(installment.due_date, as_of or utcnow().date()), 0)
        percentage = coverage_percentage(days_late)
        credits = to_cents(coverage_amount(from_cents(installment.amount_due_cents), percentage))
        loan = self.loans.get_loan(installment.loan_id)

        try:
            with atomic(self.db):
                offer = self.offers.create(
                    installment_id=installment.id,
                    loan_id=installment.loan_id,
                    lender_id=installment.holding.lender_id,
                    borrower_id=loan.borrower_id,
                    original_amount_due_cents=installment.amount_due_cents,
                    coverage_percentage=percentage,
                    offer_amount_credits_cents=credits,
                    days_late=days_late,
                    expires_at=utcnow() + timedelta(days=settings.coverage_offer_expiry_days),
                )
        except IntegrityError:
            raise OfferAlreadyExistsError("A pending coverage offer already exists", {"installment_id": str(installment.id)})

        coverage_offer_counter.labels(outcome="created").inc()
        logger.info(
            "Coverage offer created",
            extra={
                "offer_id": str(offer.id),
                "installment_id": str(installment.id),
                "user_id": offer.lender_id,
                "coverage_percentage": percentage,
                "amount_cents": credits,
            },
        )
        return offer

    def _get(self, offer_id: uuid.UUID) -> CoverageOffer:
        offer = self.offers.get(offer_id)
        if offer is None:
            raise NotFoundError("Coverage offer not found", {"offer_id": str(offer_id)})
        return offer

    def accept_offer(self, offer_id: uuid.UUID, lender_id: str) -> CoverageOffer:
        """
        Lender takes the credit.

        The lender's Credit wallet is credited, the installment is marked
        covered_by_platform, and the holding's outstanding balance drops by the
        installment's principal, since the lender's claim on it is settled.
        Only the holding's current owner can accept; offers move with the
        holding when it is resold.
        """
        offer = self._get(offer_id)
        if offer.lender_id != lender_id:
            raise AuthorizationError("Coverage offer belongs to another lender")
        if offer.status != CoverageOfferStatus.PENDING:
            raise OfferNotPendingError("Offer is not pending", {"offer_id": str(offer.id), "status": offer.status.value})
        if is_past(offer.expires_at):
            raise OfferExpiredError("Offer has expired", {"offer_id": str(offer.id)})

        installment = self.installments.get(offer.installment_id)
        if installment.holding.lender_id != lender_id:
            raise AuthorizationError("Installment belongs to another lender", {"installment_id": str(installment.id)})

        now = utcnow()
        with atomic(self.db):
            if not self.offers.transition(offer.id, CoverageOfferStatus.ACCEPTED, lender_id, accepted_at=now):
                raise OfferNotPendingError("Offer is no longer pending for this lender", {"offer_id": str(offer.id)})
            if not self.installments.transition(
                installment.id,
                (InstallmentStatus.LATE,),
                InstallmentStatus.COVERED_BY_PLATFORM,
                paid_amount_cents=offer.offer_amount_credits_cents,
                paid_at=now,
            ):
                raise StateConflictError("Installment is no longer late", {"installment_id": str(installment.id)})

            self.ledger.credit(
                lender_id,
                WalletType.CREDIT,
                offer.offer_amount_credits_cents,
                LedgerEntryType.PAYMENT_COVERAGE,
                reference_id=str(offer.id),
                notes=f"{offer.coverage_percentage}% coverage of late installment",
            )
            self.holdings.reduce_outstanding(installment.holding_id, installment.principal_cents)
            settle_holding(self.db, installment.holding_id)

        self.db.refresh(offer)
        coverage_offer_counter.labels(outcome="accepted").inc()
        log_settlement(
            "payment_coverage",
            str(offer.id),
            offer.offer_amount_credits_cents,
            payer_id=settings.platform_user_id,
            payee_id=lender_id,
        )
        return offer

    def decline_offer(self, offer_id: uuid.UUID, lender_id: str) -> CoverageOffer:
        """Lender keeps waiting for the borrower's cash; the installment stays late"""
        offer = self._get(offer_id)
        if offer.lender_id != lender_id:
            raise AuthorizationError("Coverage offer belongs to another lender")
        with atomic(self.db):
            if not self.offers.transition(offer.id, CoverageOfferStatus.DECLINED, lender_id):
                raise OfferNotPendingError("Offer is not pending", {"offer_id": str(offer.id)})
        self.db.refresh(offer)
        coverage_offer_counter.labels(outcome="declined").inc()
        return offer

    def expire_old_offers(self, now: Optional[datetime] = None) -> int:
        with atomic(self.db):
            count = self.offers.expire_old(now or utcnow())
        if count:
            coverage_offer_counter.labels(outcome="expired").inc(count)
            logger.info("Coverage offers expired", extra={"count": count})
        return count

    def scan_late_installments(self, as_of: Optional[date] = None) -> int:
        """Create an offer for every late installment that has no pending one"""
        created = 0
        for installment in self.installments.late_without_pending_offer():
            try:
                self.create_offer(installment.id, as_of=as_of)
            except OfferAlreadyExistsError:
                continue
            created += 1
        return created

    def get_pending_offers(self, lender_id: str) -> List[CoverageOffer]:
        return self.offers.get_pending_for_lender(lender_id)
