"""Pricing for platform-funded direct loans, keyed by ZimScore"""

from decimal import Decimal, ROUND_HALF_UP
from zimcrowd_gateway.domain.constants import DIRECT_LOAN_FEE_TIERS, MAX_LOAN_TIERS
from zimcrowd_gateway.domain.exceptions import InvalidAmountError
from zimcrowd_gateway.utils.money import quantize


def fee_percentage(score: int) -> int:
    """First tier whose minimum score the user meets, scanning high to low"""
    for min_score, percentage in DIRECT_LOAN_FEE_TIERS:
        if score >= min_score:
            return percentage
    return DIRECT_LOAN_FEE_TIERS[-1][1]


def calculate_fixed_fee(amount: Decimal, score: int) -> Decimal:
    return quantize(Decimal(amount) * fee_percentage(score) / 100)


def calculate_apr(principal: Decimal, fee: Decimal, days: int) -> Decimal:
    """
    Annualized cost for disclosure: (fee / principal × 100) × (365 / days).

    Not used for settlement.
    """
    principal = Decimal(principal)
    if principal <= 0 or days <= 0:
        raise InvalidAmountError("Principal and duration must be positive")
    apr = (Decimal(fee) / principal * 100) * (Decimal(365) / days)
    return apr.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def max_loan_amount(score: int) -> Decimal:
    for min_score, limit in MAX_LOAN_TIERS:
        if score >= min_score:
            return limit
    return MAX_LOAN_TIERS[-1][1]
