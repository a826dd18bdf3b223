"""Domain models - enums and pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar


class WalletType(str, Enum):
    CASH = "cash"  # Wallet 1, withdrawable
    CREDIT = "credit"  # Wallet 2, non-withdrawable platform credit


class LedgerEntryType(str, Enum):
    # Credit wallet
    SIGNUP_BONUS = "SIGNUP_BONUS"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    PAYMENT_COVERAGE = "PAYMENT_COVERAGE"
    FEE_PAYMENT = "FEE_PAYMENT"
    LOAN_FUNDING = "LOAN_FUNDING"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    # Cash wallet
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    INVESTMENT = "INVESTMENT"
    INVESTMENT_REFUND = "INVESTMENT_REFUND"
    DISBURSEMENT = "DISBURSEMENT"
    REPAYMENT = "REPAYMENT"
    REPAYMENT_RECEIVED = "REPAYMENT_RECEIVED"
    SALE_PROCEEDS = "SALE_PROCEEDS"
    PURCHASE = "PURCHASE"
    PLATFORM_FEE = "PLATFORM_FEE"
    LATE_FEE_SHARE = "LATE_FEE_SHARE"
    RECOVERY = "RECOVERY"


class ListingStatus(str, Enum):
    ACTIVE = "active"
    PARTIALLY_FUNDED = "partially_funded"
    FUNDED = "funded"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


FUNDABLE_LISTING_STATUSES = (ListingStatus.ACTIVE, ListingStatus.PARTIALLY_FUNDED)


class LoanStatus(str, Enum):
    PENDING = "pending"  # still being funded on the marketplace
    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class FundingOfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


class HoldingStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
    CLOSED = "closed"


class AcquisitionMethod(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class SecondaryListingStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PurchaseOfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    LATE = "late"
    COVERED_BY_PLATFORM = "covered_by_platform"


class CoverageOfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class DirectOfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class DirectLoanStatus(str, Enum):
    OFFERED = "offered"
    SIGNED = "signed"
    DISBURSED = "disbursed"
    REPAID = "repaid"
    LATE = "late"
    DEFAULTED = "defaulted"


class NotificationEvent(str, Enum):
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    INVESTMENT_MATURED = "investment_matured"
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_OVERDUE = "payment_overdue"
    REFERRAL_BONUS = "referral_bonus"
    KYC_APPROVED = "kyc_approved"
    KYC_REJECTED = "kyc_rejected"
    ACCOUNT_FLAG = "account_flag"
    ACCOUNT_RESTRICTION = "account_restriction"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"


@dataclass
class BorrowerFees:
    """Upfront and monthly borrower costs for a loan"""

    principal: Decimal
    service_fee: Decimal
    insurance_fee: Decimal
    total_upfront_fees: Decimal
    net_amount: Decimal  # disbursed to the borrower
    monthly_payment: Decimal  # amortized, before fees
    tenure_fee: Decimal
    collection_fee: Decimal
    total_monthly_payment: Decimal


@dataclass
class LenderFees:
    """Upfront fees and monthly return for one investment"""

    investment_amount: Decimal
    service_fee: Decimal
    insurance_fee: Decimal
    total_upfront_fees: Decimal
    net_investment: Decimal
    gross_monthly_return: Decimal
    collection_fee: Decimal
    net_monthly_return: Decimal
    total_net_return: Decimal  # over the full term


@dataclass
class LateFee:
    total: Decimal
    platform_share: Decimal
    lender_share: Decimal


@dataclass
class RecoveryShare:
    """Recovery proceeds for the pool and one lender's pro-rata part"""

    collected_amount: Decimal
    pool_recovery_fee: Decimal
    pool_net_recovery: Decimal
    lender_gross_share: Decimal
    lender_recovery_fee: Decimal
    lender_net_share: Decimal
    lender_loss: Decimal


@dataclass
class ScheduledInstallment:
    """Single payment in a repayment schedule"""

    due_date: date
    amount_cents: int
    principal_cents: int
    interest_cents: int


@dataclass
class MarketplaceFilters:
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None
    max_rate: Optional[Decimal] = None
    term_months: Optional[int] = None
    page: int = 1
    limit: int = 20


T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass
class PortfolioSummary:
    """A lender's holdings with totals across the active ones"""

    lender_id: str
    holdings: list
    total_invested_cents: int = 0
    total_outstanding_cents: int = 0
    active_count: int = 0


@dataclass
class WalletReconciliation:
    """Cached balance compared against the sum of its ledger entries"""

    user_id: str
    wallet_type: WalletType
    cached_balance_cents: int
    ledger_balance_cents: int

    @property
    def consistent(self) -> bool:
        return self.cached_balance_cents == self.ledger_balance_cents


@dataclass
class CreditStatistics:
    total_earned_cents: int = 0
    total_spent_cents: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    current_balance_cents: int = 0

    @property
    def net_earnings_cents(self) -> int:
        return self.total_earned_cents - self.total_spent_cents
