"""Unit tests for direct loan pricing"""

import pytest
from decimal import Decimal
from zimcrowd_gateway.domain.direct_lending import calculate_apr, calculate_fixed_fee, fee_percentage, max_loan_amount
from zimcrowd_gateway.domain.exceptions import InvalidAmountError


@pytest.mark.parametrize(
    "score,percentage",
    [(100, 5), (90, 5), (89, 6), (80, 6), (75, 7), (65, 8), (55, 9), (45, 10), (39, 12), (0, 12)],
)
def test_fee_percentage_tiers(score, percentage):
    assert fee_percentage(score) == percentage


def test_fixed_fee():
    assert calculate_fixed_fee(Decimal("100"), 95) == Decimal("5.00")
    assert calculate_fixed_fee(Decimal("250"), 62) == Decimal("20.00")


def test_apr_annualizes_fee():
    # 5% over 30 days -> 5 * 365 / 30
    assert calculate_apr(Decimal("100"), Decimal("5"), 30) == Decimal("60.83")


def test_apr_requires_positive_inputs():
    with pytest.raises(InvalidAmountError):
        calculate_apr(Decimal("100"), Decimal("5"), 0)
    with pytest.raises(InvalidAmountError):
        calculate_apr(Decimal("0"), Decimal("5"), 30)


@pytest.mark.parametrize(
    "score,limit",
    [(75, "1000.00"), (74, "500.00"), (65, "500.00"), (55, "250.00"), (45, "100.00"), (44, "50.00")],
)
def test_max_loan_amount_tiers(score, limit):
    assert max_loan_amount(score) == Decimal(limit)
