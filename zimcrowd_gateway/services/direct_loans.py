"""Platform-funded direct loans: offer, e-signature, disbursement, repayment"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional
from sqlalchemy.orm import Session

from zimcrowd_gateway.config import settings
from zimcrowd_gateway.domain.direct_lending import calculate_apr, calculate_fixed_fee, max_loan_amount
from zimcrowd_gateway.domain.exceptions import (
    AmountExceedsLimitError,
    AuthorizationError,
    InvalidAmountError,
    InvalidSignatureError,
    NoZimScoreError,
    NotFoundError,
    OfferExpiredError,
    OfferNotPendingError,
    StateConflictError,
    ValidationError,
)
from zimcrowd_gateway.domain.models import DirectLoanStatus, DirectOfferStatus, LedgerEntryType, WalletType
from zimcrowd_gateway.infrastructure.database.models import DirectLoan, DirectLoanOffer, ZimScore
from zimcrowd_gateway.infrastructure.database.repositories import DirectLoanRepository, ScoreRepository
from zimcrowd_gateway.infrastructure.database.session import atomic
from zimcrowd_gateway.infrastructure.observability.logging import log_settlement
from zimcrowd_gateway.infrastructure.observability.metrics import direct_loan_counter
from zimcrowd_gateway.services.ledger import LedgerService
from zimcrowd_gateway.utils.date_utils import add_days, is_past, utcnow
from zimcrowd_gateway.utils.money import from_cents, to_cents

logger = logging.getLogger(__name__)

MIN_SIGNATURE_LENGTH = 3
WALLET_PAYMENT_METHOD = "wallet"


class DirectLoanService:
    """
    Direct loan offer: pending -> accepted | expired.
    Direct loan: signed -> disbursed -> repaid, or -> late.
    """

    def __init__(self, db: Session):
        self.db = db
        self.loans = DirectLoanRepository(db)
        self.scores = ScoreRepository(db)
        self.ledger = LedgerService(db)

    def record_score(self, user_id: str, score_value: int) -> ZimScore:
        """Store a new ZimScore and the borrowing limit that goes with it"""
        if not 0 <= score_value <= 100:
            raise ValidationError("ZimScore must be between 0 and 100", {"score": score_value})
        with atomic(self.db):
            record = self.scores.upsert(user_id, score_value, to_cents(max_loan_amount(score_value)))
        return record

    def create_offer(
        self,
        user_id: str,
        amount_cents: Optional[int] = None,
        duration_days: Optional[int] = None,
    ) -> DirectLoanOffer:
        """
        Price a loan for the user's score and hold the terms for 24 hours.

        Without an amount the offer is for the user's full limit.

        Raises:
            NoZimScoreError: user has never been scored
            AmountExceedsLimitError: amount above the score's limit
        """
        score = self.scores.get(user_id)
        if score is None:
            raise NoZimScoreError("No ZimScore on record", {"user_id": user_id})

        if amount_cents is None:
            amount_cents = score.max_loan_amount_cents
        if amount_cents <= 0:
            raise InvalidAmountError("Loan amount must be greater than 0", {"amount_cents": amount_cents})
        if amount_cents > score.max_loan_amount_cents:
            raise AmountExceedsLimitError(
                "Requested amount exceeds your limit",
                {"amount_cents": amount_cents, "max_loan_amount_cents": score.max_loan_amount_cents},
            )
        duration_days = duration_days or settings.direct_loan_default_days
        if duration_days <= 0:
            raise ValidationError("Duration must be at least one day", {"duration_days": duration_days})

        fee = calculate_fixed_fee(from_cents(amount_cents), score.score_value)
        apr = calculate_apr(from_cents(amount_cents), fee, duration_days)
        fee_cents = to_cents(fee)

        with atomic(self.db):
            offer = self.loans.create_offer(
                borrower_id=user_id,
                principal_cents=amount_cents,
                fixed_fee_cents=fee_cents,
                total_repayment_cents=amount_cents + fee_cents,
                duration_days=duration_days,
                apr=apr,
                zimscore=score.score_value,
                expires_at=utcnow() + timedelta(hours=settings.direct_offer_expiry_hours),
            )

        direct_loan_counter.labels(event="offered").inc()
        logger.info(
            "Direct loan offer created",
            extra={"user_id": user_id, "offer_id": str(offer.id), "amount_cents": amount_cents, "fee_cents": fee_cents},
        )
        return offer

    def accept_offer(
        self,
        borrower_id: str,
        offer_id: uuid.UUID,
        signature_name: str,
        ip_address: Optional[str] = None,
    ) -> DirectLoan:
        """Sign the offer; the signature name, IP and time are the acceptance record"""
        signature_name = (signature_name or "").strip()
        if len(signature_name) < MIN_SIGNATURE_LENGTH:
            raise InvalidSignatureError("Please type your full legal name to sign")

        offer = self.loans.get_offer(offer_id)
        if offer is None:
            raise NotFoundError("Loan offer not found", {"offer_id": str(offer_id)})
        if offer.borrower_id != borrower_id:
            raise AuthorizationError("Loan offer belongs to another user")
        if offer.status != DirectOfferStatus.PENDING:
            raise OfferNotPendingError("Offer is not pending", {"offer_id": str(offer.id), "status": offer.status.value})
        if is_past(offer.expires_at):
            raise OfferExpiredError("Offer has expired", {"offer_id": str(offer.id)})

        now = utcnow()
        with atomic(self.db):
            if not self.loans.transition_offer(offer.id, DirectOfferStatus.ACCEPTED):
                raise OfferNotPendingError("Offer is no longer pending", {"offer_id": str(offer.id)})
            loan = self.loans.create_loan(
                offer_id=offer.id,
                borrower_id=borrower_id,
                principal_cents=offer.principal_cents,
                fixed_finance_fee_cents=offer.fixed_fee_cents,
                total_repayment_cents=offer.total_repayment_cents,
                apr=offer.apr,
                due_date=add_days(now.date(), offer.duration_days),
                signature_name=signature_name,
                signature_ip=ip_address,
                signed_at=now,
            )

        direct_loan_counter.labels(event="signed").inc()
        logger.info("Direct loan signed", extra={"user_id": borrower_id, "direct_loan_id": str(loan.id)})
        return loan

    def get_loan(self, direct_loan_id: uuid.UUID) -> DirectLoan:
        loan = self.loans.get_loan(direct_loan_id)
        if loan is None:
            raise NotFoundError("Direct loan not found", {"direct_loan_id": str(direct_loan_id)})
        return loan

    def get_loans(self, borrower_id: str) -> List[DirectLoan]:
        return self.loans.get_loans_for_user(borrower_id)

    def disburse(self, direct_loan_id: uuid.UUID) -> DirectLoan:
        """Pay the principal into the borrower's Cash wallet, once"""
        loan = self.get_loan(direct_loan_id)
        now = utcnow()
        with atomic(self.db):
            if not self.loans.transition_loan(loan.id, (DirectLoanStatus.SIGNED,), DirectLoanStatus.DISBURSED, disbursed_at=now):
                raise StateConflictError("Only signed loans can be disbursed", {"direct_loan_id": str(loan.id), "status": loan.status.value})
            self.ledger.credit(
                loan.borrower_id, WalletType.CASH, loan.principal_cents, LedgerEntryType.DISBURSEMENT, str(loan.id)
            )

        self.db.refresh(loan)
        direct_loan_counter.labels(event="disbursed").inc()
        log_settlement("direct_loan_disbursement", str(loan.id), loan.principal_cents, payee_id=loan.borrower_id)
        return loan

    def record_repayment(
        self,
        direct_loan_id: uuid.UUID,
        amount_cents: int,
        payment_method: str,
        transaction_reference: Optional[str] = None,
    ) -> DirectLoan:
        """
        Apply a repayment; the loan is repaid once the total is covered.

        Wallet payments are debited from the borrower's Cash wallet. Gateway
        payments have already moved outside the ledger and are only recorded.
        """
        if amount_cents <= 0:
            raise InvalidAmountError("Repayment amount must be greater than 0", {"amount_cents": amount_cents})
        loan = self.get_loan(direct_loan_id)
        if loan.status not in (DirectLoanStatus.DISBURSED, DirectLoanStatus.LATE):
            raise StateConflictError(
                "Loan is not awaiting repayment", {"direct_loan_id": str(loan.id), "status": loan.status.value}
            )

        now = utcnow()
        with atomic(self.db):
            if payment_method == WALLET_PAYMENT_METHOD:
                self.ledger.debit(loan.borrower_id, WalletType.CASH, amount_cents, LedgerEntryType.REPAYMENT, str(loan.id))
            self.loans.add_payment(loan.id, amount_cents)
            self.loans.add_repayment(loan.id, amount_cents, payment_method, transaction_reference)
            self.db.refresh(loan)
            repaid = loan.amount_paid_cents >= loan.total_repayment_cents and self.loans.transition_loan(
                loan.id, (DirectLoanStatus.DISBURSED, DirectLoanStatus.LATE), DirectLoanStatus.REPAID, repaid_at=now
            )

        self.db.refresh(loan)
        if repaid:
            direct_loan_counter.labels(event="repaid").inc()
        logger.info(
            "Direct loan repayment recorded",
            extra={"direct_loan_id": str(loan.id), "amount_cents": amount_cents, "method": payment_method, "repaid": repaid},
        )
        return loan

    def expire_offers(self, now: Optional[datetime] = None) -> int:
        with atomic(self.db):
            return self.loans.expire_offers(now or utcnow())

    def check_late_loans(self, as_of: Optional[date] = None) -> int:
        with atomic(self.db):
            count = self.loans.mark_late(as_of or utcnow().date())
        if count:
            direct_loan_counter.labels(event="late").inc(count)
            logger.warning("Direct loans past due", extra={"count": count})
        return count
