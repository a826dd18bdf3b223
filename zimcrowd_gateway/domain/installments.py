"""Repayment schedule generation for marketplace loans"""

from datetime import date
from decimal import Decimal
from typing import List
from zimcrowd_gateway.domain.fees import monthly_payment
from zimcrowd_gateway.domain.models import ScheduledInstallment
from zimcrowd_gateway.utils.date_utils import add_months
from zimcrowd_gateway.utils.money import from_cents, to_cents


def generate_repayment_schedule(
    principal_cents: int,
    annual_rate: Decimal,
    term_months: int,
    start_date: date | None = None,
) -> List[ScheduledInstallment]:
    """
    Generate a monthly amortized schedule for one share of a loan.

    Requirements:
    - `term_months` installments, one calendar month apart
    - Each payment = amortized payment on the share; interest on the running balance
    - Last installment absorbs rounding so principal portions sum to the share exactly

    Args:
        principal_cents: Principal of the share being scheduled
        annual_rate: Annual rate as a fraction (0.08 == 8%)
        term_months: Number of monthly payments
        start_date: Origination date; first due date is one month later (default: today)

    Example:
        $100.00 at 0% over 3 months → [$33.33, $33.33, $33.34]
    """
    if principal_cents <= 0 or term_months <= 0:
        return []

    if start_date is None:
        start_date = date.today()

    monthly_rate = Decimal(annual_rate) / 12
    payment_cents = to_cents(monthly_payment(from_cents(principal_cents), Decimal(annual_rate) * 100, term_months))

    installments = []
    balance = principal_cents
    for i in range(1, term_months + 1):
        interest = to_cents(from_cents(balance) * monthly_rate)
        if i == term_months:
            # Last installment clears whatever principal is left
            principal = balance
        else:
            principal = min(payment_cents - interest, balance)
        balance -= principal

        installments.append(
            ScheduledInstallment(
                due_date=add_months(start_date, i),
                amount_cents=principal + interest,
                principal_cents=principal,
                interest_cents=interest,
            )
        )

    return installments
