"""Installment repayment, lateness tracking, default and recovery"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import Session

from zimcrowd_gateway.config import settings
from zimcrowd_gateway.domain.constants import LENDER_FEES
from zimcrowd_gateway.domain.exceptions import (
    AuthorizationError,
    InvalidAmountError,
    NotFoundError,
    StateConflictError,
)
from zimcrowd_gateway.domain.fees import borrower_fees, late_fee, recovery_fee
from zimcrowd_gateway.domain.models import (
    HoldingStatus,
    InstallmentStatus,
    LedgerEntryType,
    LoanStatus,
    RecoveryShare,
    WalletType,
)
from zimcrowd_gateway.infrastructure.database.models import Installment, Loan
from zimcrowd_gateway.infrastructure.database.repositories import (
    HoldingRepository,
    InstallmentRepository,
    ListingRepository,
)
from zimcrowd_gateway.infrastructure.database.session import atomic
from zimcrowd_gateway.infrastructure.observability.logging import log_settlement
from zimcrowd_gateway.infrastructure.observability.metrics import installment_payment_counter
from zimcrowd_gateway.services.ledger import LedgerService
from zimcrowd_gateway.utils.date_utils import add_days, days_between, utcnow
from zimcrowd_gateway.utils.money import from_cents, quantize, to_cents

logger = logging.getLogger(__name__)


@dataclass
class PaymentReceipt:
    installment_id: uuid.UUID
    holding_id: uuid.UUID
    lender_id: str
    total_paid_cents: int
    installment_cents: int
    monthly_fees_cents: int
    late_fee_cents: int
    lender_cents: int
    platform_cents: int
    holding_closed: bool = False
    loan_completed: bool = False


@dataclass
class DuePayment:
    """What a borrower owes for one month of a loan, summed across holdings"""

    loan_id: uuid.UUID
    borrower_id: str
    installment_number: int
    due_date: date
    amount_due_cents: int = 0
    days_late: int = 0


@dataclass
class LenderRecovery:
    holding_id: uuid.UUID
    lender_id: str
    share: RecoveryShare


def settle_holding(db: Session, holding_id: uuid.UUID) -> bool:
    """Close the holding once nothing more is owed to its holder; returns True if closed"""
    if InstallmentRepository(db).count_open_for_holding(holding_id) > 0:
        return False
    HoldingRepository(db).close(holding_id)
    return True


def complete_loan_if_settled(db: Session, loan_id: uuid.UUID, now: datetime) -> bool:
    """
    Complete an active loan when every holding is closed and the borrower owes nothing.

    Platform-covered installments count as owed until the borrower repays them.
    """
    if HoldingRepository(db).get_for_loan(loan_id):
        return False
    if InstallmentRepository(db).count_unsettled_for_loan(loan_id) > 0:
        return False
    completed = ListingRepository(db).transition_loan(loan_id, (LoanStatus.ACTIVE,), LoanStatus.COMPLETED, completed_at=now)
    if completed:
        logger.info("Loan completed", extra={"loan_id": str(loan_id)})
    return completed


class RepaymentService:
    def __init__(self, db: Session):
        self.db = db
        self.loans = ListingRepository(db)
        self.holdings = HoldingRepository(db)
        self.installments = InstallmentRepository(db)
        self.ledger = LedgerService(db)

    def get_schedule(self, loan_id: uuid.UUID) -> List[Installment]:
        return self.installments.get_for_loan(loan_id)

    def get_loan(self, loan_id: uuid.UUID) -> Loan:
        loan = self.loans.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("Loan not found", {"loan_id": str(loan_id)})
        return loan

    def pay_installment(
        self,
        borrower_id: str,
        installment_id: uuid.UUID,
        as_of: Optional[date] = None,
    ) -> PaymentReceipt:
        """
        Borrower pays one installment from their Cash wallet.

        The borrower pays the installment, their monthly fees on that share of
        the loan, and a late fee when past due. The holder receives the
        installment less the lender collection fee plus the lender share of the
        late fee; the platform receives the rest. An installment the platform
        already covered is owed to the platform in full.
        """
        as_of = as_of or utcnow().date()
        installment = self.installments.get(installment_id)
        if installment is None:
            raise NotFoundError("Installment not found", {"installment_id": str(installment_id)})
        loan = self.get_loan(installment.loan_id)
        if loan.borrower_id != borrower_id:
            raise AuthorizationError("Only the borrower can pay this installment")
        if loan.status != LoanStatus.ACTIVE:
            raise StateConflictError("Loan is not active", {"loan_id": str(loan.id), "status": loan.status.value})

        covered = installment.status == InstallmentStatus.COVERED_BY_PLATFORM
        if installment.status == InstallmentStatus.PAID or (covered and installment.borrower_paid_cents > 0):
            raise StateConflictError("Installment already paid", {"installment_id": str(installment.id)})

        holding = installment.holding
        share = Decimal(holding.share_percentage)
        loan_fees = borrower_fees(from_cents(loan.principal_cents), loan.term_months, Decimal(loan.annual_rate) * 100)
        monthly_fees = to_cents(quantize(loan_fees.tenure_fee * share) + quantize(loan_fees.collection_fee * share))

        base = installment.amount_due_cents
        is_late = installment.status == InstallmentStatus.LATE or as_of > installment.due_date or covered
        late = None
        if is_late:
            # one fee per loan month, shared across the holdings like the payment itself
            period_due = self.installments.sum_due_for_period(loan.id, installment.installment_number)
            late = late_fee(from_cents(period_due))
        late_total = to_cents(quantize(late.total * share)) if late else 0
        total = base + monthly_fees + late_total

        if covered:
            lender_amount = 0
        else:
            lender_amount = base - to_cents(from_cents(base) * LENDER_FEES.collection)
        lender_late_share = to_cents(quantize(late.lender_share * share)) if late and not covered else 0
        platform_amount = total - lender_amount - lender_late_share

        now = utcnow()
        reference = str(installment.id)
        receipt = PaymentReceipt(
            installment_id=installment.id,
            holding_id=holding.id,
            lender_id=holding.lender_id,
            total_paid_cents=total,
            installment_cents=base,
            monthly_fees_cents=monthly_fees,
            late_fee_cents=late_total,
            lender_cents=lender_amount + lender_late_share,
            platform_cents=platform_amount,
        )

        with atomic(self.db):
            self.ledger.debit(borrower_id, WalletType.CASH, total, LedgerEntryType.REPAYMENT, reference)

            if covered:
                if not self.installments.record_borrower_payment(installment.id, total):
                    raise StateConflictError("Installment already paid", {"installment_id": reference})
                self.ledger.credit(
                    settings.platform_user_id,
                    WalletType.CASH,
                    platform_amount,
                    LedgerEntryType.REPAYMENT_RECEIVED,
                    reference,
                    notes="Repayment of platform-covered installment",
                )
            else:
                if not self.installments.transition(
                    installment.id,
                    (InstallmentStatus.PENDING, InstallmentStatus.LATE),
                    InstallmentStatus.PAID,
                    paid_amount_cents=base,
                    paid_at=now,
                ):
                    raise StateConflictError("Installment already settled", {"installment_id": reference})
                self.installments.record_borrower_payment(installment.id, total)

                self.ledger.credit(holding.lender_id, WalletType.CASH, lender_amount, LedgerEntryType.REPAYMENT_RECEIVED, reference)
                if lender_late_share > 0:
                    self.ledger.credit(holding.lender_id, WalletType.CASH, lender_late_share, LedgerEntryType.LATE_FEE_SHARE, reference)
                if platform_amount > 0:
                    self.ledger.credit(
                        settings.platform_user_id, WalletType.CASH, platform_amount, LedgerEntryType.PLATFORM_FEE, reference
                    )
                self.holdings.reduce_outstanding(holding.id, installment.principal_cents)
                receipt.holding_closed = settle_holding(self.db, holding.id)

            receipt.loan_completed = complete_loan_if_settled(self.db, loan.id, now)

        timeliness = "after_coverage" if covered else ("late" if late else "on_time")
        installment_payment_counter.labels(timeliness=timeliness).inc()
        log_settlement(
            "installment_payment",
            reference,
            total,
            payer_id=borrower_id,
            payee_id=None if covered else holding.lender_id,
            fee_cents=platform_amount,
        )
        return receipt

    def mark_late_installments(self, as_of: Optional[date] = None) -> int:
        """Flag unpaid installments past due as late and refresh their days_late"""
        as_of = as_of or utcnow().date()
        marked = 0
        with atomic(self.db):
            for installment in self.installments.get_overdue(as_of):
                if self.installments.mark_late(installment.id, days_between(installment.due_date, as_of)):
                    marked += 1
        if marked:
            logger.info("Installments marked late", extra={"count": marked, "as_of": as_of.isoformat()})
        return marked

    def upcoming_payments(self, as_of: Optional[date] = None, within_days: Optional[int] = None) -> List[DuePayment]:
        """Pending payments on active loans falling due within the reminder window"""
        as_of = as_of or utcnow().date()
        if within_days is None:
            within_days = settings.payment_reminder_days
        installments = self.installments.get_for_active_loans(
            InstallmentStatus.PENDING, due_from=as_of, due_to=add_days(as_of, within_days)
        )
        return self._by_loan_month(installments, as_of)

    def overdue_payments(self, as_of: Optional[date] = None) -> List[DuePayment]:
        as_of = as_of or utcnow().date()
        return self._by_loan_month(self.installments.get_for_active_loans(InstallmentStatus.LATE), as_of)

    def _by_loan_month(self, installments: List[Installment], as_of: date) -> List[DuePayment]:
        payments: Dict[Tuple[uuid.UUID, int], DuePayment] = {}
        for installment in installments:
            key = (installment.loan_id, installment.installment_number)
            if key not in payments:
                payments[key] = DuePayment(
                    loan_id=installment.loan_id,
                    borrower_id=self.get_loan(installment.loan_id).borrower_id,
                    installment_number=installment.installment_number,
                    due_date=installment.due_date,
                    days_late=max(days_between(installment.due_date, as_of), 0),
                )
            payments[key].amount_due_cents += installment.amount_due_cents
        return list(payments.values())

    def mark_defaulted(self, loan_id: uuid.UUID) -> Loan:
        loan = self.get_loan(loan_id)
        with atomic(self.db):
            if not self.loans.transition_loan(loan.id, (LoanStatus.ACTIVE,), LoanStatus.DEFAULTED):
                raise StateConflictError("Only active loans can default", {"loan_id": str(loan.id), "status": loan.status.value})
        self.db.refresh(loan)
        logger.warning("Loan defaulted", extra={"loan_id": str(loan.id), "user_id": loan.borrower_id})
        return loan

    def distribute_recovery(self, loan_id: uuid.UUID, collected_cents: int) -> List[LenderRecovery]:
        """
        Pay out money collected on a defaulted loan.

        Each current holder gets their pro-rata share net of the recovery fee;
        the platform keeps the fee and any rounding remainder.
        """
        if collected_cents <= 0:
            raise InvalidAmountError("Collected amount must be greater than 0", {"collected_cents": collected_cents})
        loan = self.get_loan(loan_id)
        if loan.status != LoanStatus.DEFAULTED:
            raise StateConflictError("Recovery applies to defaulted loans only", {"loan_id": str(loan.id)})

        reference = str(loan.id)
        recoveries = []
        with atomic(self.db):
            paid_out = 0
            for holding in self.holdings.get_for_loan(loan.id, status=HoldingStatus.ACTIVE):
                share = recovery_fee(
                    from_cents(collected_cents), from_cents(holding.principal_cents), from_cents(loan.principal_cents)
                )
                net_cents = to_cents(share.lender_net_share)
                if net_cents > 0:
                    self.ledger.credit(holding.lender_id, WalletType.CASH, net_cents, LedgerEntryType.RECOVERY, reference)
                    paid_out += net_cents
                recoveries.append(LenderRecovery(holding_id=holding.id, lender_id=holding.lender_id, share=share))

            platform_cut = collected_cents - paid_out
            if platform_cut > 0:
                self.ledger.credit(
                    settings.platform_user_id, WalletType.CASH, platform_cut, LedgerEntryType.RECOVERY, reference,
                    notes="Recovery fee",
                )

        log_settlement("default_recovery", reference, collected_cents, fee_cents=collected_cents - paid_out)
        return recoveries
