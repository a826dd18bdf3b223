"""Payment coverage pricing for late installments"""

from decimal import Decimal
from zimcrowd_gateway.domain.constants import COVERAGE_TERMS
from zimcrowd_gateway.utils.money import quantize


def coverage_percentage(days_late: int) -> int:
    """
    Share of the missed installment the platform offers as credit.

    80% at zero days late, down 2 points per day, never below 50%.
    """
    days_late = max(days_late, 0)
    percentage = COVERAGE_TERMS.start_percentage - COVERAGE_TERMS.decay_per_day * days_late
    return max(percentage, COVERAGE_TERMS.floor_percentage)


def coverage_amount(amount_due: Decimal, percentage: int) -> Decimal:
    return quantize(Decimal(amount_due) * percentage / 100)
