"""Integration tests for installment payments, lateness, default and recovery"""

import pytest
from datetime import timedelta
from decimal import Decimal
from zimcrowd_gateway.config import settings
from zimcrowd_gateway.domain.exceptions import (
    AuthorizationError,
    InsufficientFundsError,
    InvalidAmountError,
    StateConflictError,
)
from zimcrowd_gateway.domain.models import (
    HoldingStatus,
    InstallmentStatus,
    LedgerEntryType,
    ListingStatus,
    LoanStatus,
    WalletType,
)
from zimcrowd_gateway.services.ledger import LedgerService
from zimcrowd_gateway.services.primary_market import PrimaryMarketService
from zimcrowd_gateway.services.repayments import RepaymentService

PLATFORM = settings.platform_user_id


@pytest.fixture
def loan(funded_loan):
    return funded_loan()


def _installment(service, loan):
    (installment,) = service.get_schedule(loan.id)
    return installment


def test_on_time_payment_splits_between_lender_and_platform(db, fund, loan):
    """$100 due: borrower pays $106, lender nets $95, platform keeps $11"""
    fund("borrower_1", 2_100)
    service = RepaymentService(db)
    ledger = LedgerService(db)
    installment = _installment(service, loan)
    platform_before = ledger.get_balance(PLATFORM, WalletType.CASH)

    receipt = service.pay_installment("borrower_1", installment.id, as_of=installment.due_date)

    assert receipt.total_paid_cents == 10_600
    assert receipt.monthly_fees_cents == 600
    assert receipt.late_fee_cents == 0
    assert receipt.lender_cents == 9_500
    assert receipt.platform_cents == 1_100
    assert ledger.get_balance("borrower_1", WalletType.CASH) == 0
    assert ledger.get_balance("lender_1", WalletType.CASH) == 9_500
    assert ledger.get_balance(PLATFORM, WalletType.CASH) - platform_before == 1_100
    assert ledger.get_history("lender_1")[0].entry_type == LedgerEntryType.REPAYMENT_RECEIVED


def test_last_payment_closes_holding_and_completes_loan(db, fund, loan):
    fund("borrower_1", 2_100)
    service = RepaymentService(db)
    installment = _installment(service, loan)

    receipt = service.pay_installment("borrower_1", installment.id, as_of=installment.due_date)

    db.refresh(loan)
    db.refresh(installment)
    assert receipt.holding_closed is True
    assert receipt.loan_completed is True
    assert installment.status == InstallmentStatus.PAID
    assert loan.status == LoanStatus.COMPLETED
    assert loan.holdings[0].status == HoldingStatus.CLOSED
    assert loan.holdings[0].outstanding_cents == 0

    # a completed loan lifts the first-time ceiling
    listing = PrimaryMarketService(db).create_listing("borrower_1", 50_000, 6, Decimal("0.05"))
    assert listing.is_first_time_borrower is False
    assert listing.status == ListingStatus.ACTIVE


def test_late_payment_adds_late_fee(db, fund, loan):
    """Late fee is the $50 minimum; the lender gets 5% of it"""
    fund("borrower_1", 7_100)
    service = RepaymentService(db)
    installment = _installment(service, loan)

    receipt = service.pay_installment("borrower_1", installment.id, as_of=installment.due_date + timedelta(days=3))

    assert receipt.late_fee_cents == 5_000
    assert receipt.total_paid_cents == 15_600
    assert receipt.lender_cents == 9_750
    assert receipt.platform_cents == 5_850
    history = LedgerService(db).get_history("lender_1")
    assert history[0].entry_type == LedgerEntryType.LATE_FEE_SHARE
    assert history[0].amount_cents == 250


@pytest.fixture
def shared_loan(db, fund):
    """$100, one-month, zero-rate loan split evenly across four lenders"""
    market = PrimaryMarketService(db)
    listing = market.create_listing("borrower_1", 10_000, 1, "0")
    for lender in ("lender_a", "lender_b", "lender_c", "lender_d"):
        fund(lender, 2_500)
        offer = market.submit_offer(lender, listing.id, 2_500, "0")
        market.accept_offer("borrower_1", offer.id)
    db.refresh(listing)
    assert listing.status == ListingStatus.FUNDED
    return listing.loan


def test_late_fee_charged_once_per_month_across_holdings(db, fund, shared_loan):
    """Four $25 installments paid late share a single $50 fee"""
    fund("borrower_1", 15_600)
    service = RepaymentService(db)
    installments = service.get_schedule(shared_loan.id)
    assert len(installments) == 4

    receipts = [
        service.pay_installment("borrower_1", i.id, as_of=i.due_date + timedelta(days=1)) for i in installments
    ]

    assert [r.late_fee_cents for r in receipts] == [1_250] * 4
    assert sum(r.late_fee_cents for r in receipts) == 5_000
    assert sum(r.total_paid_cents for r in receipts) == 15_600
    for lender in ("lender_a", "lender_b", "lender_c", "lender_d"):
        history = LedgerService(db).get_history(lender)
        assert history[0].entry_type == LedgerEntryType.LATE_FEE_SHARE
        assert history[0].amount_cents == 63


def test_payment_guards(db, fund, loan):
    service = RepaymentService(db)
    installment = _installment(service, loan)

    with pytest.raises(AuthorizationError):
        service.pay_installment("lender_1", installment.id)
    with pytest.raises(InsufficientFundsError):
        service.pay_installment("borrower_1", installment.id, as_of=installment.due_date)

    db.refresh(installment)
    assert installment.status == InstallmentStatus.PENDING

    fund("borrower_1", 2_100)
    service.pay_installment("borrower_1", installment.id, as_of=installment.due_date)
    with pytest.raises(StateConflictError):
        service.pay_installment("borrower_1", installment.id, as_of=installment.due_date)


def test_mark_late_installments(db, loan):
    service = RepaymentService(db)
    installment = _installment(service, loan)

    assert service.mark_late_installments(as_of=installment.due_date) == 0
    assert service.mark_late_installments(as_of=installment.due_date + timedelta(days=4)) == 1

    db.refresh(installment)
    assert installment.status == InstallmentStatus.LATE
    assert installment.days_late == 4

    # rerunning refreshes the day count
    service.mark_late_installments(as_of=installment.due_date + timedelta(days=9))
    db.refresh(installment)
    assert installment.days_late == 9


def test_due_payments_grouped_per_loan_month(db, shared_loan):
    """Four holdings' installments make one borrower payment"""
    service = RepaymentService(db)
    due = service.get_schedule(shared_loan.id)[0].due_date

    assert service.upcoming_payments(as_of=due - timedelta(days=settings.payment_reminder_days + 1)) == []
    (upcoming,) = service.upcoming_payments(as_of=due - timedelta(days=2))
    assert upcoming.loan_id == shared_loan.id
    assert upcoming.borrower_id == "borrower_1"
    assert upcoming.amount_due_cents == 10_000
    assert upcoming.days_late == 0
    assert service.overdue_payments(as_of=due) == []

    service.mark_late_installments(as_of=due + timedelta(days=5))

    assert service.upcoming_payments(as_of=due) == []
    (overdue,) = service.overdue_payments(as_of=due + timedelta(days=5))
    assert overdue.amount_due_cents == 10_000
    assert overdue.days_late == 5


def test_default_and_recovery_distribution(db, loan):
    """$50 collected on a $100 loan held by one lender: $35 to the lender, $15 to the platform"""
    service = RepaymentService(db)
    ledger = LedgerService(db)
    platform_before = ledger.get_balance(PLATFORM, WalletType.CASH)

    defaulted = service.mark_defaulted(loan.id)
    assert defaulted.status == LoanStatus.DEFAULTED
    with pytest.raises(StateConflictError):
        service.mark_defaulted(loan.id)

    (recovery,) = service.distribute_recovery(loan.id, 5_000)

    assert recovery.lender_id == "lender_1"
    assert recovery.share.lender_net_share == Decimal("35.00")
    assert recovery.share.lender_loss == Decimal("65.00")
    assert ledger.get_balance("lender_1", WalletType.CASH) == 3_500
    assert ledger.get_balance(PLATFORM, WalletType.CASH) - platform_before == 1_500
    assert ledger.get_history("lender_1")[0].entry_type == LedgerEntryType.RECOVERY


def test_recovery_requires_defaulted_loan_and_positive_amount(db, loan):
    service = RepaymentService(db)

    with pytest.raises(StateConflictError):
        service.distribute_recovery(loan.id, 5_000)

    service.mark_defaulted(loan.id)
    with pytest.raises(InvalidAmountError):
        service.distribute_recovery(loan.id, 0)
