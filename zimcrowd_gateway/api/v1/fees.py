"""/v1/fees - Fee quotes for borrowers, lenders, late payments, resales and direct loans"""

from decimal import Decimal
from enum import Enum
from fastapi import APIRouter, Query

from zimcrowd_gateway.api.v1.schemas import (
    AmountResponse,
    BorrowerFeesResponse,
    CoverageQuoteResponse,
    DirectLoanQuoteResponse,
    LateFeeResponse,
    LenderFeesResponse,
    RecoveryShareResponse,
)
from zimcrowd_gateway.domain import direct_lending
from zimcrowd_gateway.domain.coverage import coverage_amount, coverage_percentage
from zimcrowd_gateway.domain.fees import (
    borrower_fees,
    deal_fee,
    late_fee,
    lender_fees,
    lender_fees_investment_creation,
    minimum_loan_for_net,
    recovery_fee,
    true_annual_effective_rate,
)

router = APIRouter()


class LenderFeeVariant(str, Enum):
    MARKETPLACE = "marketplace"
    INVESTMENT_CREATION = "investment_creation"


@router.get("/fees/borrower", response_model=BorrowerFeesResponse)
def quote_borrower_fees(
    amount: Decimal = Query(..., gt=0),
    term_months: int = Query(..., gt=0),
    annual_rate_percent: Decimal = Query(..., ge=0, le=10),
):
    fees = borrower_fees(amount, term_months, annual_rate_percent)
    response = BorrowerFeesResponse.model_validate(fees)
    response.true_annual_effective_rate = true_annual_effective_rate(
        fees.total_monthly_payment * term_months, fees.net_amount, term_months
    )
    return response


@router.get("/fees/lender", response_model=LenderFeesResponse)
def quote_lender_fees(
    investment_amount: Decimal = Query(..., gt=0),
    loan_amount: Decimal = Query(..., gt=0),
    monthly_payment: Decimal = Query(..., ge=0),
    term_months: int = Query(..., gt=0),
    variant: LenderFeeVariant = Query(LenderFeeVariant.MARKETPLACE),
):
    calculate = lender_fees if variant == LenderFeeVariant.MARKETPLACE else lender_fees_investment_creation
    return LenderFeesResponse.model_validate(calculate(investment_amount, loan_amount, monthly_payment, term_months))


@router.get("/fees/late", response_model=LateFeeResponse)
def quote_late_fee(remaining_balance: Decimal = Query(..., ge=0)):
    return LateFeeResponse.model_validate(late_fee(remaining_balance))


@router.get("/fees/deal", response_model=AmountResponse)
def quote_deal_fee(sale_price: Decimal = Query(..., gt=0)):
    return AmountResponse(amount=deal_fee(sale_price))


@router.get("/fees/recovery", response_model=RecoveryShareResponse)
def quote_recovery(
    collected_amount: Decimal = Query(..., ge=0),
    lender_investment: Decimal = Query(..., ge=0),
    total_loan_amount: Decimal = Query(..., gt=0),
):
    return RecoveryShareResponse.model_validate(recovery_fee(collected_amount, lender_investment, total_loan_amount))


@router.get("/fees/minimum-loan", response_model=AmountResponse)
def quote_minimum_loan(desired_net: Decimal = Query(..., gt=0)):
    """Loan size whose net disbursement covers the amount the borrower needs in hand"""
    return AmountResponse(amount=minimum_loan_for_net(desired_net))


@router.get("/fees/coverage", response_model=CoverageQuoteResponse)
def quote_coverage(
    amount_due: Decimal = Query(..., gt=0),
    days_late: int = Query(..., ge=0),
):
    percentage = coverage_percentage(days_late)
    return CoverageQuoteResponse(
        days_late=days_late,
        coverage_percentage=percentage,
        offer_amount_credits=coverage_amount(amount_due, percentage),
    )


@router.get("/fees/direct", response_model=DirectLoanQuoteResponse)
def quote_direct_loan(
    amount: Decimal = Query(..., gt=0),
    score: int = Query(..., ge=0, le=100),
    days: int = Query(30, gt=0),
):
    fee = direct_lending.calculate_fixed_fee(amount, score)
    return DirectLoanQuoteResponse(
        score=score,
        fee_percentage=direct_lending.fee_percentage(score),
        fixed_fee=fee,
        total_repayment=amount + fee,
        apr=direct_lending.calculate_apr(amount, fee, days),
        max_loan_amount=direct_lending.max_loan_amount(score),
    )
