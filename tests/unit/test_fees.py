"""Unit tests for the fee calculator"""

import pytest
from decimal import Decimal
from zimcrowd_gateway.domain.exceptions import InvalidAmountError, ValidationError
from zimcrowd_gateway.domain.fees import (
    borrower_fees,
    deal_fee,
    late_fee,
    lender_fees,
    lender_fees_investment_creation,
    minimum_loan_for_net,
    monthly_payment,
    recovery_fee,
    true_annual_effective_rate,
)


def test_borrower_fees_thousand_at_eight_percent():
    """$1000 at 8% over 12 months"""
    fees = borrower_fees(Decimal("1000"), 12, Decimal("8"))

    assert fees.service_fee == Decimal("100.00")
    assert fees.insurance_fee == Decimal("50.00")
    assert fees.total_upfront_fees == Decimal("150.00")
    assert fees.net_amount == Decimal("850.00")
    assert fees.monthly_payment == Decimal("86.99")
    assert fees.tenure_fee == Decimal("10.00")
    assert fees.collection_fee == Decimal("4.35")  # 5% of 86.99, half-up
    assert fees.total_monthly_payment == Decimal("101.34")


def test_borrower_fees_rejects_non_positive_amount():
    with pytest.raises(InvalidAmountError):
        borrower_fees(Decimal("0"), 12, Decimal("8"))


def test_monthly_payment_zero_rate_is_straight_line():
    assert monthly_payment(Decimal("1200"), Decimal("0"), 12) == Decimal("100.00")


def test_monthly_payment_requires_a_term():
    with pytest.raises(ValidationError):
        monthly_payment(Decimal("1200"), Decimal("8"), 0)


def test_lender_fees_marketplace():
    fees = lender_fees(Decimal("100"), Decimal("1000"), Decimal("86.99"), 12)

    assert fees.service_fee == Decimal("10.00")
    assert fees.insurance_fee == Decimal("5.00")
    assert fees.net_investment == Decimal("85.00")
    assert fees.gross_monthly_return == Decimal("7.39")
    assert fees.collection_fee == Decimal("0.37")
    assert fees.net_monthly_return == Decimal("7.02")
    assert fees.total_net_return == Decimal("84.24")


def test_lender_fees_investment_creation_uses_lower_insurance():
    fees = lender_fees_investment_creation(Decimal("100"), Decimal("1000"), Decimal("86.99"), 12)

    assert fees.insurance_fee == Decimal("3.00")
    assert fees.net_investment == Decimal("87.00")


def test_lender_fees_reject_zero_loan_amount():
    with pytest.raises(InvalidAmountError):
        lender_fees(Decimal("100"), Decimal("0"), Decimal("86.99"), 12)


@pytest.mark.parametrize(
    "balance,total,platform,lender",
    [
        (Decimal("1000"), Decimal("100.00"), Decimal("95.00"), Decimal("5.00")),
        (Decimal("100"), Decimal("50.00"), Decimal("47.50"), Decimal("2.50")),  # minimum applies
    ],
)
def test_late_fee_split(balance, total, platform, lender):
    fee = late_fee(balance)

    assert fee.total == total
    assert fee.platform_share == platform
    assert fee.lender_share == lender
    assert fee.platform_share + fee.lender_share == fee.total


def test_deal_fee_on_five_hundred():
    assert deal_fee(Decimal("500")) == Decimal("10.00")


def test_recovery_fee_pro_rata():
    share = recovery_fee(Decimal("1000"), Decimal("250"), Decimal("1000"))

    assert share.pool_recovery_fee == Decimal("300.00")
    assert share.pool_net_recovery == Decimal("700.00")
    assert share.lender_gross_share == Decimal("250.00")
    assert share.lender_recovery_fee == Decimal("75.00")
    assert share.lender_net_share == Decimal("175.00")
    assert share.lender_loss == Decimal("75.00")


def test_true_annual_effective_rate():
    assert true_annual_effective_rate(Decimal("1100"), Decimal("1000"), 12) == Decimal("10.00")
    assert true_annual_effective_rate(Decimal("1050"), Decimal("1000"), 6) == Decimal("10.00")


def test_minimum_loan_for_net_rounds_up():
    assert minimum_loan_for_net(Decimal("850")) == Decimal("1000")
    assert minimum_loan_for_net(Decimal("100")) == Decimal("118")
