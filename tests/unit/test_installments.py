"""Unit tests for repayment schedule generation"""

from datetime import date
from decimal import Decimal
from zimcrowd_gateway.domain.installments import generate_repayment_schedule


def test_schedule_zero_rate_equal_split():
    """Test plan with evenly divisible amount"""
    installments = generate_repayment_schedule(120_000, Decimal("0"), 12, start_date=date(2026, 1, 15))

    assert len(installments) == 12
    assert all(inst.amount_cents == 10_000 for inst in installments)
    assert all(inst.interest_cents == 0 for inst in installments)


def test_schedule_rounding():
    """Test last installment absorbs remainder"""
    installments = generate_repayment_schedule(10_000, Decimal("0"), 3, start_date=date(2026, 1, 15))

    assert [inst.amount_cents for inst in installments] == [3_333, 3_333, 3_334]
    assert sum(inst.principal_cents for inst in installments) == 10_000


def test_schedule_monthly_due_dates_clamp_to_month_end():
    installments = generate_repayment_schedule(30_000, Decimal("0"), 3, start_date=date(2026, 1, 31))

    assert [inst.due_date for inst in installments] == [date(2026, 2, 28), date(2026, 3, 31), date(2026, 4, 30)]


def test_schedule_with_interest_amortizes_principal():
    installments = generate_repayment_schedule(100_000, Decimal("0.08"), 12, start_date=date(2026, 1, 1))

    assert len(installments) == 12
    assert sum(inst.principal_cents for inst in installments) == 100_000
    assert installments[0].amount_cents == 8_699
    assert installments[0].interest_cents == 667  # 1000 * 0.08 / 12
    # interest falls as the balance shrinks
    assert installments[-1].interest_cents < installments[0].interest_cents
    assert all(inst.amount_cents == inst.principal_cents + inst.interest_cents for inst in installments)


def test_schedule_zero_principal():
    """Test handling of zero amount"""
    assert generate_repayment_schedule(0, Decimal("0.08"), 12) == []
