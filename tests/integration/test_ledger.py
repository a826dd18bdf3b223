"""Integration tests for the dual-wallet ledger"""

import pytest
from sqlalchemy.exc import IntegrityError
from zimcrowd_gateway.domain.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    StateConflictError,
    ValidationError,
)
from zimcrowd_gateway.domain.models import LedgerEntryType, WalletType
from zimcrowd_gateway.infrastructure.database.session import atomic
from zimcrowd_gateway.services.ledger import LedgerService


def test_deposit_and_withdraw_update_balance_and_history(db):
    ledger = LedgerService(db)

    assert ledger.deposit("alice", 5_000) == 5_000
    assert ledger.withdraw("alice", 1_500) == 3_500

    entries = ledger.get_history("alice")
    assert [e.amount_cents for e in entries] == [-1_500, 5_000]
    assert entries[0].entry_type == LedgerEntryType.WITHDRAWAL
    assert entries[0].balance_after_cents == 3_500
    assert ledger.reconcile("alice", WalletType.CASH).consistent


def test_debit_refused_when_balance_too_low(db):
    ledger = LedgerService(db)
    ledger.deposit("alice", 1_000)

    with pytest.raises(InsufficientFundsError) as exc_info:
        with atomic(db):
            ledger.debit("alice", WalletType.CASH, 1_001, LedgerEntryType.INVESTMENT)

    assert exc_info.value.details["available_cents"] == 1_000
    assert ledger.get_balance("alice", WalletType.CASH) == 1_000
    assert len(ledger.get_history("alice")) == 1


def test_debit_of_unknown_wallet_is_insufficient(db):
    with pytest.raises(InsufficientFundsError):
        LedgerService(db).debit("nobody", WalletType.CASH, 1, LedgerEntryType.INVESTMENT)


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amounts_rejected(db, amount):
    ledger = LedgerService(db)
    with pytest.raises(InvalidAmountError):
        ledger.credit("alice", WalletType.CASH, amount, LedgerEntryType.DEPOSIT)
    with pytest.raises(InvalidAmountError):
        ledger.debit("alice", WalletType.CASH, amount, LedgerEntryType.WITHDRAWAL)


def test_wallets_are_independent(db):
    ledger = LedgerService(db)
    ledger.deposit("alice", 2_000)
    ledger.award_signup_bonus("alice")

    assert ledger.get_balance("alice", WalletType.CASH) == 2_000
    assert ledger.get_balance("alice", WalletType.CREDIT) == 2_500

    with pytest.raises(InsufficientFundsError):
        with atomic(db):
            ledger.debit("alice", WalletType.CREDIT, 3_000, LedgerEntryType.FEE_PAYMENT)
    assert ledger.get_balance("alice", WalletType.CASH) == 2_000


def test_credit_wallet_cannot_be_withdrawn(db):
    ledger = LedgerService(db)
    ledger.award_signup_bonus("alice")

    with pytest.raises(ValidationError):
        ledger.withdraw("alice", 100, wallet_type=WalletType.CREDIT)


def test_signup_bonus_awarded_once(db):
    ledger = LedgerService(db)
    ledger.award_signup_bonus("alice")

    with pytest.raises(StateConflictError):
        ledger.award_signup_bonus("alice")
    assert ledger.get_balance("alice", WalletType.CREDIT) == 2_500


def test_concurrent_signup_bonus_claim_is_a_conflict(db, monkeypatch):
    """A claim that raced past the existence check is refused when it writes"""
    ledger = LedgerService(db)
    ledger.award_signup_bonus("alice")
    # the second request checked before the first one committed
    monkeypatch.setattr(ledger.wallets, "has_entry_of_type", lambda user_id, entry_type: False)

    with pytest.raises(StateConflictError):
        ledger.award_signup_bonus("alice")

    assert ledger.get_balance("alice", WalletType.CREDIT) == 2_500
    assert ledger.reconcile("alice", WalletType.CREDIT).consistent


def test_second_signup_bonus_entry_refused_by_database(db, other_session):
    LedgerService(db).award_signup_bonus("alice")

    with pytest.raises(IntegrityError):
        with atomic(other_session):
            LedgerService(other_session).credit("alice", WalletType.CREDIT, 2_500, LedgerEntryType.SIGNUP_BONUS)

    # other users are unaffected
    assert LedgerService(db).award_signup_bonus("bob") == 2_500


def test_credit_statistics(db):
    ledger = LedgerService(db)
    ledger.award_signup_bonus("alice")
    with atomic(db):
        ledger.credit("alice", WalletType.CREDIT, 6_000, LedgerEntryType.PAYMENT_COVERAGE)
        ledger.debit("alice", WalletType.CREDIT, 1_000, LedgerEntryType.FEE_PAYMENT)

    stats = ledger.get_statistics("alice", WalletType.CREDIT)
    assert stats.total_earned_cents == 8_500
    assert stats.total_spent_cents == 1_000
    assert stats.net_earnings_cents == 7_500
    assert stats.current_balance_cents == 7_500
    assert stats.by_type["PAYMENT_COVERAGE"] == 6_000


def test_failed_settlement_rolls_back_every_mutation(db):
    """A debit failing after a credit in the same transaction leaves no trace"""
    ledger = LedgerService(db)
    ledger.deposit("alice", 500)

    with pytest.raises(InsufficientFundsError):
        with atomic(db):
            ledger.credit("bob", WalletType.CASH, 700, LedgerEntryType.SALE_PROCEEDS)
            ledger.debit("alice", WalletType.CASH, 700, LedgerEntryType.PURCHASE)

    assert ledger.get_balance("bob", WalletType.CASH) == 0
    assert ledger.get_history("bob") == []
    assert ledger.get_balance("alice", WalletType.CASH) == 500


def test_concurrent_debits_cannot_overdraw(db, other_session):
    """Two requests both read a sufficient balance; only one debit lands"""
    first, second = LedgerService(db), LedgerService(other_session)
    first.deposit("alice", 1_000)

    # both requests see 1000 available before either writes
    assert first.get_balance("alice", WalletType.CASH) == 1_000
    assert second.get_balance("alice", WalletType.CASH) == 1_000

    with atomic(db):
        first.debit("alice", WalletType.CASH, 800, LedgerEntryType.WITHDRAWAL)

    with pytest.raises(InsufficientFundsError):
        with atomic(other_session):
            second.debit("alice", WalletType.CASH, 800, LedgerEntryType.WITHDRAWAL)

    assert first.get_balance("alice", WalletType.CASH) == 200
    assert first.reconcile("alice", WalletType.CASH).consistent
