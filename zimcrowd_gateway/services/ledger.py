"""Dual-wallet ledger: the only path through which balances change"""

import logging
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from zimcrowd_gateway.config import settings
from zimcrowd_gateway.domain.exceptions import InsufficientFundsError, InvalidAmountError, StateConflictError, ValidationError
from zimcrowd_gateway.domain.models import CreditStatistics, LedgerEntryType, WalletReconciliation, WalletType
from zimcrowd_gateway.infrastructure.database.models import LedgerEntry
from zimcrowd_gateway.infrastructure.database.repositories import WalletRepository
from zimcrowd_gateway.infrastructure.database.session import atomic
from zimcrowd_gateway.infrastructure.observability.metrics import ledger_mutation_counter, ledger_rejection_counter

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Atomic credit/debit for the Cash and Credit wallets.

    `credit` and `debit` join the caller's transaction so that a settlement
    touching several wallets commits or rolls back as one unit. Each mutation
    writes the balance and its ledger entry together; a debit's sufficiency
    check and write are a single conditional UPDATE.
    """

    def __init__(self, db: Session):
        self.db = db
        self.wallets = WalletRepository(db)

    def credit(
        self,
        user_id: str,
        wallet_type: WalletType,
        amount_cents: int,
        entry_type: LedgerEntryType,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        """Add funds to a wallet and return the new balance"""
        self._require_positive(amount_cents)

        new_balance = self.wallets.increment(user_id, wallet_type, amount_cents)
        self.wallets.add_entry(user_id, wallet_type, amount_cents, new_balance, entry_type, reference_id, notes)

        ledger_mutation_counter.labels(wallet=wallet_type.value, direction="credit").inc()
        logger.info(
            "Wallet credited",
            extra={
                "user_id": user_id,
                "wallet": wallet_type.value,
                "amount_cents": amount_cents,
                "entry_type": entry_type.value,
                "reference_id": reference_id,
            },
        )
        return new_balance

    def debit(
        self,
        user_id: str,
        wallet_type: WalletType,
        amount_cents: int,
        entry_type: LedgerEntryType,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        """
        Remove funds from a wallet and return the new balance.

        Raises:
            InsufficientFundsError: the wallet cannot cover the amount
        """
        self._require_positive(amount_cents)

        new_balance = self.wallets.decrement_if_sufficient(user_id, wallet_type, amount_cents)
        if new_balance is None:
            available = self.wallets.get_balance(user_id, wallet_type)
            ledger_rejection_counter.labels(reason="insufficient_funds").inc()
            logger.info(
                "Debit refused: insufficient funds",
                extra={"user_id": user_id, "wallet": wallet_type.value, "amount_cents": amount_cents, "available_cents": available},
            )
            raise InsufficientFundsError(
                f"Insufficient {wallet_type.value} balance",
                {"wallet": wallet_type.value, "available_cents": available, "requested_cents": amount_cents},
            )

        self.wallets.add_entry(user_id, wallet_type, -amount_cents, new_balance, entry_type, reference_id, notes)

        ledger_mutation_counter.labels(wallet=wallet_type.value, direction="debit").inc()
        logger.info(
            "Wallet debited",
            extra={
                "user_id": user_id,
                "wallet": wallet_type.value,
                "amount_cents": amount_cents,
                "entry_type": entry_type.value,
                "reference_id": reference_id,
            },
        )
        return new_balance

    def get_balance(self, user_id: str, wallet_type: WalletType) -> int:
        return self.wallets.get_balance(user_id, wallet_type)

    def get_history(self, user_id: str, wallet_type: Optional[WalletType] = None, limit: int = 50) -> List[LedgerEntry]:
        return self.wallets.get_entries(user_id, wallet_type, limit)

    def get_statistics(self, user_id: str, wallet_type: WalletType = WalletType.CREDIT) -> CreditStatistics:
        """Totals earned and spent per entry type"""
        stats = CreditStatistics(current_balance_cents=self.wallets.get_balance(user_id, wallet_type))
        for entry_type, total in self.wallets.totals_by_type(user_id, wallet_type):
            stats.by_type[entry_type.value] = total
            if total > 0:
                stats.total_earned_cents += total
            else:
                stats.total_spent_cents += -total
        return stats

    def reconcile(self, user_id: str, wallet_type: WalletType) -> WalletReconciliation:
        result = WalletReconciliation(
            user_id=user_id,
            wallet_type=wallet_type,
            cached_balance_cents=self.wallets.get_balance(user_id, wallet_type),
            ledger_balance_cents=self.wallets.sum_entries(user_id, wallet_type),
        )
        if not result.consistent:
            logger.error(
                "Wallet balance does not match ledger",
                extra={
                    "user_id": user_id,
                    "wallet": wallet_type.value,
                    "cached_cents": result.cached_balance_cents,
                    "ledger_cents": result.ledger_balance_cents,
                },
            )
        return result

    def deposit(self, user_id: str, amount_cents: int, reference_id: Optional[str] = None) -> int:
        """Record funds that arrived in the Cash wallet from outside the platform"""
        with atomic(self.db):
            return self.credit(user_id, WalletType.CASH, amount_cents, LedgerEntryType.DEPOSIT, reference_id)

    def withdraw(
        self,
        user_id: str,
        amount_cents: int,
        wallet_type: WalletType = WalletType.CASH,
        reference_id: Optional[str] = None,
    ) -> int:
        if wallet_type != WalletType.CASH:
            raise ValidationError("Credit balance cannot be withdrawn", {"wallet": wallet_type.value})
        with atomic(self.db):
            return self.debit(user_id, WalletType.CASH, amount_cents, LedgerEntryType.WITHDRAWAL, reference_id)

    def award_signup_bonus(self, user_id: str) -> int:
        """Once per user; a unique index on the bonus entry settles concurrent claims"""
        try:
            with atomic(self.db):
                if self.wallets.has_entry_of_type(user_id, LedgerEntryType.SIGNUP_BONUS):
                    raise StateConflictError("Signup bonus already awarded", {"user_id": user_id})
                return self.credit(
                    user_id,
                    WalletType.CREDIT,
                    settings.signup_bonus_cents,
                    LedgerEntryType.SIGNUP_BONUS,
                    notes="Welcome bonus",
                )
        except IntegrityError:
            raise StateConflictError("Signup bonus already awarded", {"user_id": user_id})

    @staticmethod
    def _require_positive(amount_cents: int) -> None:
        if amount_cents is None or amount_cents <= 0:
            ledger_rejection_counter.labels(reason="invalid_amount").inc()
            raise InvalidAmountError("Amount must be greater than 0", {"amount_cents": amount_cents})
