"""Fee calculator - pure functions over Decimal currency amounts

Every result is rounded to cents, half-up. Rates come from
`zimcrowd_gateway.domain.constants`; nothing here touches storage.
"""

from decimal import Decimal, ROUND_CEILING
from zimcrowd_gateway.domain.constants import (
    BORROWER_FEES,
    LENDER_FEES,
    LENDER_FEES_INVESTMENT_CREATION,
    LATE_FEES,
    SECONDARY_FEES,
    RECOVERY_FEES,
    LenderFeeRates,
)
from zimcrowd_gateway.domain.exceptions import InvalidAmountError, ValidationError
from zimcrowd_gateway.domain.models import BorrowerFees, LenderFees, LateFee, RecoveryShare
from zimcrowd_gateway.utils.money import quantize


def monthly_payment(principal: Decimal, annual_rate_percent: Decimal, term_months: int) -> Decimal:
    """
    Standard amortized payment: P × r(1+r)^n / ((1+r)^n - 1), r = monthly rate.

    A zero rate degrades to straight-line principal (P / n).
    """
    if term_months <= 0:
        raise ValidationError("Term must be at least one month", {"term_months": term_months})

    principal = Decimal(principal)
    rate = Decimal(annual_rate_percent) / 100 / 12
    if rate == 0:
        return quantize(principal / term_months)

    growth = (1 + rate) ** term_months
    return quantize(principal * rate * growth / (growth - 1))


def borrower_fees(amount: Decimal, term_months: int, annual_rate_percent: Decimal) -> BorrowerFees:
    """
    Borrower costs for a loan.

    Upfront: 10% service + 5% insurance, deducted from the disbursed amount.
    Monthly: 1% of principal (tenure) + 5% of the amortized payment
    (collection), both added on top of the amortized payment.
    """
    amount = Decimal(amount)
    if amount <= 0:
        raise InvalidAmountError("Loan amount must be greater than 0", {"amount": str(amount)})

    service_fee = quantize(amount * BORROWER_FEES.service)
    insurance_fee = quantize(amount * BORROWER_FEES.insurance)
    total_upfront = service_fee + insurance_fee

    payment = monthly_payment(amount, annual_rate_percent, term_months)
    tenure_fee = quantize(amount * BORROWER_FEES.tenure)
    collection_fee = quantize(payment * BORROWER_FEES.collection)

    return BorrowerFees(
        principal=quantize(amount),
        service_fee=service_fee,
        insurance_fee=insurance_fee,
        total_upfront_fees=total_upfront,
        net_amount=quantize(amount) - total_upfront,
        monthly_payment=payment,
        tenure_fee=tenure_fee,
        collection_fee=collection_fee,
        total_monthly_payment=payment + tenure_fee + collection_fee,
    )


def _lender_fees(
    rates: LenderFeeRates,
    investment_amount: Decimal,
    loan_amount: Decimal,
    monthly_payment_amount: Decimal,
    term_months: int,
) -> LenderFees:
    investment_amount = Decimal(investment_amount)
    loan_amount = Decimal(loan_amount)
    if investment_amount <= 0 or loan_amount <= 0:
        raise InvalidAmountError(
            "Investment and loan amounts must be greater than 0",
            {"investment_amount": str(investment_amount), "loan_amount": str(loan_amount)},
        )

    service_fee = quantize(investment_amount * rates.service)
    insurance_fee = quantize(investment_amount * rates.insurance)
    total_upfront = service_fee + insurance_fee
    net_investment = quantize(investment_amount) - total_upfront

    gross_return = quantize(Decimal(monthly_payment_amount) * (net_investment / loan_amount))
    collection_fee = quantize(gross_return * rates.collection)
    net_return = gross_return - collection_fee

    return LenderFees(
        investment_amount=quantize(investment_amount),
        service_fee=service_fee,
        insurance_fee=insurance_fee,
        total_upfront_fees=total_upfront,
        net_investment=net_investment,
        gross_monthly_return=gross_return,
        collection_fee=collection_fee,
        net_monthly_return=net_return,
        total_net_return=net_return * term_months,
    )


def lender_fees(
    investment_amount: Decimal,
    loan_amount: Decimal,
    monthly_payment_amount: Decimal,
    term_months: int,
) -> LenderFees:
    """Marketplace funding offer: 10% service + 5% insurance upfront, 5% collection monthly"""
    return _lender_fees(LENDER_FEES, investment_amount, loan_amount, monthly_payment_amount, term_months)


def lender_fees_investment_creation(
    investment_amount: Decimal,
    loan_amount: Decimal,
    monthly_payment_amount: Decimal,
    term_months: int,
) -> LenderFees:
    """Direct investment-creation path: 10% service + 3% insurance upfront"""
    return _lender_fees(
        LENDER_FEES_INVESTMENT_CREATION, investment_amount, loan_amount, monthly_payment_amount, term_months
    )


def late_fee(remaining_balance: Decimal) -> LateFee:
    """10% of the remaining balance with a flat minimum, split platform / lender"""
    fee = max(quantize(Decimal(remaining_balance) * LATE_FEES.rate), LATE_FEES.minimum)
    lender_share = quantize(fee * LATE_FEES.lender_share)
    return LateFee(total=fee, platform_share=fee - lender_share, lender_share=lender_share)


def deal_fee(sale_price: Decimal) -> Decimal:
    """Secondary-market deal fee, deducted from the seller's proceeds"""
    return quantize(Decimal(sale_price) * SECONDARY_FEES.deal)


def recovery_fee(
    collected_amount: Decimal,
    lender_investment: Decimal,
    total_loan_amount: Decimal,
) -> RecoveryShare:
    """
    Split money collected after default.

    The recovery fee applies to the whole pool and, pro-rata by investment,
    to each lender's slice. Loss = investment - net recovered share.
    """
    collected_amount = Decimal(collected_amount)
    lender_investment = Decimal(lender_investment)
    total_loan_amount = Decimal(total_loan_amount)
    if total_loan_amount <= 0:
        raise InvalidAmountError("Total loan amount must be greater than 0")

    pool_fee = quantize(collected_amount * RECOVERY_FEES.rate)
    gross_share = quantize(collected_amount * lender_investment / total_loan_amount)
    lender_fee = quantize(gross_share * RECOVERY_FEES.rate)
    net_share = gross_share - lender_fee

    return RecoveryShare(
        collected_amount=quantize(collected_amount),
        pool_recovery_fee=pool_fee,
        pool_net_recovery=quantize(collected_amount) - pool_fee,
        lender_gross_share=gross_share,
        lender_recovery_fee=lender_fee,
        lender_net_share=net_share,
        lender_loss=quantize(lender_investment) - net_share,
    )


def true_annual_effective_rate(total_paid: Decimal, net_received: Decimal, term_months: int) -> Decimal:
    """Total cost over the net amount received, annualized (disclosure only)"""
    cost_percentage = (Decimal(total_paid) - Decimal(net_received)) / Decimal(net_received) * 100
    return quantize(cost_percentage / term_months * 12)


def minimum_loan_for_net(desired_net: Decimal) -> Decimal:
    """Smallest whole loan amount whose net disbursement covers `desired_net`"""
    net_fraction = 1 - BORROWER_FEES.service - BORROWER_FEES.insurance
    return (Decimal(desired_net) / net_fraction).to_integral_value(rounding=ROUND_CEILING)
