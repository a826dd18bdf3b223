"""Fee structure and program constants.

All rates are fractions (0.10 == 10%). Call sites reference these named values
so a product-tier change is a single, auditable edit.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple


@dataclass(frozen=True)
class BorrowerFeeRates:
    service: Decimal = Decimal("0.10")  # upfront, deducted from disbursement
    insurance: Decimal = Decimal("0.05")  # upfront
    tenure: Decimal = Decimal("0.01")  # monthly, of principal
    collection: Decimal = Decimal("0.05")  # monthly, of amortized payment


@dataclass(frozen=True)
class LenderFeeRates:
    service: Decimal = Decimal("0.10")
    insurance: Decimal = Decimal("0.05")
    collection: Decimal = Decimal("0.05")  # of gross monthly return


@dataclass(frozen=True)
class LateFeeRates:
    rate: Decimal = Decimal("0.10")  # of remaining balance
    minimum: Decimal = Decimal("50.00")
    platform_share: Decimal = Decimal("0.95")
    lender_share: Decimal = Decimal("0.05")


@dataclass(frozen=True)
class SecondaryFeeRates:
    deal: Decimal = Decimal("0.02")  # of sale price, paid by the seller


@dataclass(frozen=True)
class RecoveryFeeRates:
    rate: Decimal = Decimal("0.30")  # of anything collected after default


@dataclass(frozen=True)
class CoverageTerms:
    start_percentage: int = 80
    decay_per_day: int = 2
    floor_percentage: int = 50


BORROWER_FEES = BorrowerFeeRates()
LENDER_FEES = LenderFeeRates()
# Newer investment-creation path charges 3% insurance
LENDER_FEES_INVESTMENT_CREATION = LenderFeeRates(insurance=Decimal("0.03"))
LATE_FEES = LateFeeRates()
SECONDARY_FEES = SecondaryFeeRates()
RECOVERY_FEES = RecoveryFeeRates()
COVERAGE_TERMS = CoverageTerms()

MAX_LISTING_RATE = Decimal("0.10")

# (minimum ZimScore, fee percentage); first match in descending order wins
DIRECT_LOAN_FEE_TIERS: Tuple[Tuple[int, int], ...] = (
    (90, 5),
    (80, 6),
    (70, 7),
    (60, 8),
    (50, 9),
    (40, 10),
    (0, 12),
)

# (minimum ZimScore, max loan amount)
MAX_LOAN_TIERS: Tuple[Tuple[int, Decimal], ...] = (
    (75, Decimal("1000.00")),
    (65, Decimal("500.00")),
    (55, Decimal("250.00")),
    (45, Decimal("100.00")),
    (0, Decimal("50.00")),
)
