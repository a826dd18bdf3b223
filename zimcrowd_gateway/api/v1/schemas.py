"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field

from zimcrowd_gateway.domain.models import (
    AcquisitionMethod,
    CoverageOfferStatus,
    DirectLoanStatus,
    DirectOfferStatus,
    FundingOfferStatus,
    HoldingStatus,
    InstallmentStatus,
    LedgerEntryType,
    ListingStatus,
    LoanStatus,
    PurchaseOfferStatus,
    SecondaryListingStatus,
    WalletType,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Errors


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Dict = {}


# Wallets


class AmountRequest(BaseModel):
    """Request body for deposits and withdrawals"""

    amount_cents: int = Field(..., gt=0, description="Amount in cents")
    reference_id: Optional[str] = Field(None, description="External payment reference")


class WalletBalanceResponse(BaseModel):
    user_id: str
    cash_cents: int
    credit_cents: int


class LedgerEntrySchema(ORMModel):
    id: UUID
    wallet_type: WalletType
    amount_cents: int
    balance_after_cents: int
    entry_type: LedgerEntryType
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class LedgerHistoryResponse(BaseModel):
    user_id: str
    entries: List[LedgerEntrySchema]


class WalletStatisticsResponse(BaseModel):
    wallet_type: WalletType
    total_earned_cents: int
    total_spent_cents: int
    net_earnings_cents: int
    current_balance_cents: int
    by_type: Dict[str, int]


class ReconciliationResponse(BaseModel):
    wallet_type: WalletType
    cached_balance_cents: int
    ledger_balance_cents: int
    consistent: bool


# Fees


class BorrowerFeesResponse(ORMModel):
    principal: Decimal
    service_fee: Decimal
    insurance_fee: Decimal
    total_upfront_fees: Decimal
    net_amount: Decimal
    monthly_payment: Decimal
    tenure_fee: Decimal
    collection_fee: Decimal
    total_monthly_payment: Decimal
    true_annual_effective_rate: Optional[Decimal] = None


class LenderFeesResponse(ORMModel):
    investment_amount: Decimal
    service_fee: Decimal
    insurance_fee: Decimal
    total_upfront_fees: Decimal
    net_investment: Decimal
    gross_monthly_return: Decimal
    collection_fee: Decimal
    net_monthly_return: Decimal
    total_net_return: Decimal


class LateFeeResponse(ORMModel):
    total: Decimal
    platform_share: Decimal
    lender_share: Decimal


class RecoveryShareResponse(ORMModel):
    collected_amount: Decimal
    pool_recovery_fee: Decimal
    pool_net_recovery: Decimal
    lender_gross_share: Decimal
    lender_recovery_fee: Decimal
    lender_net_share: Decimal
    lender_loss: Decimal


class AmountResponse(BaseModel):
    amount: Decimal


class CoverageQuoteResponse(BaseModel):
    days_late: int
    coverage_percentage: int
    offer_amount_credits: Decimal


class DirectLoanQuoteResponse(BaseModel):
    score: int
    fee_percentage: int
    fixed_fee: Decimal
    total_repayment: Decimal
    apr: Decimal
    max_loan_amount: Decimal


# Primary market


class CreateListingRequest(BaseModel):
    amount_cents: int = Field(..., gt=0)
    term_months: int = Field(..., gt=0)
    rate: Decimal = Field(..., description="Annual rate as a fraction, 0 to 0.10")
    purpose: Optional[str] = Field(None, max_length=500)


class ListingSchema(ORMModel):
    id: UUID
    loan_id: UUID
    borrower_id: str
    principal_requested_cents: int
    term_months: int
    requested_rate: Decimal
    funding_goal_cents: int
    amount_funded_cents: int
    purpose: Optional[str] = None
    is_first_time_borrower: bool
    status: ListingStatus
    funding_deadline: datetime
    created_at: datetime


class ListingPageResponse(BaseModel):
    items: List[ListingSchema]
    page: int
    limit: int
    total: int
    total_pages: int


class SubmitOfferRequest(BaseModel):
    offer_amount_cents: int = Field(..., gt=0)
    offered_rate: Decimal
    funding_wallet: WalletType = WalletType.CASH


class FundingOfferSchema(ORMModel):
    id: UUID
    listing_id: UUID
    lender_id: str
    offer_amount_cents: int
    funded_amount_cents: Optional[int] = None
    offered_rate: Decimal
    funding_wallet: WalletType
    status: FundingOfferStatus
    expires_at: datetime
    responded_at: Optional[datetime] = None


class HoldingSchema(ORMModel):
    id: UUID
    loan_id: UUID
    lender_id: str
    principal_cents: int
    outstanding_cents: int
    share_percentage: Decimal
    acquisition_method: AcquisitionMethod
    status: HoldingStatus
    is_for_sale: bool


class PortfolioResponse(ORMModel):
    lender_id: str
    holdings: List[HoldingSchema]
    total_invested_cents: int
    total_outstanding_cents: int
    active_count: int


# Secondary market


class ListForSaleRequest(BaseModel):
    holding_id: UUID
    asking_price_cents: int = Field(..., gt=0)


class SecondaryListingSchema(ORMModel):
    id: UUID
    holding_id: UUID
    seller_id: str
    asking_price_cents: int
    outstanding_cents: int
    status: SecondaryListingStatus
    listing_expiry: datetime
    created_at: datetime


class SecondaryListingPageResponse(BaseModel):
    items: List[SecondaryListingSchema]
    page: int
    limit: int
    total: int
    total_pages: int


class PurchaseOfferRequest(BaseModel):
    offer_price_cents: int = Field(..., gt=0)


class PurchaseOfferSchema(ORMModel):
    id: UUID
    secondary_listing_id: UUID
    buyer_id: str
    offer_price_cents: int
    status: PurchaseOfferStatus
    expires_at: datetime


class TransferSchema(ORMModel):
    id: UUID
    holding_id: UUID
    secondary_listing_id: UUID
    from_lender_id: str
    to_lender_id: str
    price_cents: int
    deal_fee_cents: int
    transferred_at: datetime


# Installments and coverage


class InstallmentSchema(ORMModel):
    id: UUID
    loan_id: UUID
    holding_id: UUID
    installment_number: int
    due_date: date
    amount_due_cents: int
    principal_cents: int
    interest_cents: int
    status: InstallmentStatus
    days_late: int
    paid_amount_cents: int


class ScheduleResponse(BaseModel):
    loan_id: UUID
    loan_status: LoanStatus
    installments: List[InstallmentSchema]


class PaymentReceiptSchema(ORMModel):
    installment_id: UUID
    holding_id: UUID
    lender_id: str
    total_paid_cents: int
    installment_cents: int
    monthly_fees_cents: int
    late_fee_cents: int
    lender_cents: int
    platform_cents: int
    holding_closed: bool
    loan_completed: bool


class CoverageOfferSchema(ORMModel):
    id: UUID
    installment_id: UUID
    loan_id: UUID
    lender_id: str
    borrower_id: str
    original_amount_due_cents: int
    coverage_percentage: int
    offer_amount_credits_cents: int
    days_late: int
    status: CoverageOfferStatus
    expires_at: datetime
    accepted_at: Optional[datetime] = None


# Direct loans


class RecordScoreRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    score: int = Field(..., ge=0, le=100)


class ScoreResponse(ORMModel):
    user_id: str
    score_value: int
    max_loan_amount_cents: int


class DirectOfferRequest(BaseModel):
    amount_cents: Optional[int] = Field(None, gt=0)
    duration_days: Optional[int] = Field(None, gt=0)


class DirectOfferSchema(ORMModel):
    id: UUID
    borrower_id: str
    principal_cents: int
    fixed_fee_cents: int
    total_repayment_cents: int
    duration_days: int
    apr: Decimal
    zimscore: int
    status: DirectOfferStatus
    expires_at: datetime


class SignOfferRequest(BaseModel):
    signature_name: str


class DirectLoanSchema(ORMModel):
    id: UUID
    offer_id: UUID
    borrower_id: str
    principal_cents: int
    fixed_finance_fee_cents: int
    total_repayment_cents: int
    apr: Decimal
    due_date: date
    status: DirectLoanStatus
    amount_paid_cents: int
    signature_name: str
    signed_at: datetime
    disbursed_at: Optional[datetime] = None
    repaid_at: Optional[datetime] = None


class RepaymentRequest(BaseModel):
    amount_cents: int = Field(..., gt=0)
    payment_method: str = Field("wallet", min_length=1)
    transaction_reference: Optional[str] = None


# Jobs


class JobResult(BaseModel):
    job: str
    affected: int


class RecoveryRequest(BaseModel):
    collected_cents: int = Field(..., gt=0)


class LenderRecoverySchema(BaseModel):
    holding_id: UUID
    lender_id: str
    net_share: Decimal
    loss: Decimal
