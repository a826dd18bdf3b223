"""SQLAlchemy ORM models for the marketplace settlement tables"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    Numeric,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    Enum as SAEnum,
    UniqueConstraint,
    Index,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from zimcrowd_gateway.utils.date_utils import utcnow
from zimcrowd_gateway.domain.models import (
    WalletType,
    LedgerEntryType,
    ListingStatus,
    LoanStatus,
    FundingOfferStatus,
    HoldingStatus,
    AcquisitionMethod,
    SecondaryListingStatus,
    PurchaseOfferStatus,
    InstallmentStatus,
    CoverageOfferStatus,
    DirectOfferStatus,
    DirectLoanStatus,
)

Base = declarative_base()


def enum_column(enum_cls, **kwargs) -> Column:
    """Status column stored as its string value, checked in Python"""
    return Column(
        SAEnum(
            enum_cls,
            native_enum=False,
            length=32,
            validate_strings=True,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs,
    )


class WalletBalance(Base):
    """Cached balance for one user wallet; always equals the sum of its ledger entries"""

    __tablename__ = "wallet_balance"

    user_id = Column(Text, primary_key=True)
    wallet_type = enum_column(WalletType, primary_key=True)
    balance_cents = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class LedgerEntry(Base):
    """Append-only record of every wallet mutation"""

    __tablename__ = "ledger_entry"
    __table_args__ = (
        # The signup bonus is paid once per user
        Index(
            "uq_ledger_entry_signup_bonus",
            "user_id",
            unique=True,
            postgresql_where=text("entry_type = 'SIGNUP_BONUS'"),
            sqlite_where=text("entry_type = 'SIGNUP_BONUS'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    wallet_type = enum_column(WalletType, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)  # signed
    balance_after_cents = Column(BigInteger, nullable=False)
    entry_type = enum_column(LedgerEntryType, nullable=False)
    reference_id = Column(Text, nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class ZimScore(Base):
    """Current credit score snapshot for a user"""

    __tablename__ = "zimscore"

    user_id = Column(Text, primary_key=True)
    score_value = Column(Integer, nullable=False)
    max_loan_amount_cents = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Loan(Base):
    """Marketplace loan; funded by holdings, repaid through installments"""

    __tablename__ = "loan"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    borrower_id = Column(Text, nullable=False, index=True)
    principal_cents = Column(BigInteger, nullable=False)
    annual_rate = Column(Numeric(6, 4), nullable=False)
    term_months = Column(Integer, nullable=False)
    monthly_payment_cents = Column(BigInteger, nullable=False)
    purpose = Column(Text, nullable=True)
    status = enum_column(LoanStatus, nullable=False, default=LoanStatus.PENDING)
    originated_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    listing = relationship("LoanListing", back_populates="loan", uselist=False)
    holdings = relationship("LoanHolding", back_populates="loan")


class LoanListing(Base):
    """Primary-market request for funding"""

    __tablename__ = "loan_listing"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False, unique=True)
    borrower_id = Column(Text, nullable=False, index=True)
    principal_requested_cents = Column(BigInteger, nullable=False)
    term_months = Column(Integer, nullable=False)
    requested_rate = Column(Numeric(6, 4), nullable=False)
    funding_goal_cents = Column(BigInteger, nullable=False)
    amount_funded_cents = Column(BigInteger, nullable=False, default=0)
    purpose = Column(Text, nullable=True)
    is_first_time_borrower = Column(Boolean, nullable=False, default=False)
    status = enum_column(ListingStatus, nullable=False, default=ListingStatus.ACTIVE, index=True)
    funding_deadline = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)

    loan = relationship("Loan", back_populates="listing")
    offers = relationship("FundingOffer", back_populates="listing", cascade="all, delete-orphan")


class FundingOffer(Base):
    """Lender's offer to fund part of a listing"""

    __tablename__ = "funding_offer"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    listing_id = Column(UUID(as_uuid=True), ForeignKey("loan_listing.id", ondelete="CASCADE"), nullable=False, index=True)
    lender_id = Column(Text, nullable=False, index=True)
    offer_amount_cents = Column(BigInteger, nullable=False)
    funded_amount_cents = Column(BigInteger, nullable=True)  # set on acceptance, may be capped
    offered_rate = Column(Numeric(6, 4), nullable=False)
    funding_wallet = enum_column(WalletType, nullable=False, default=WalletType.CASH)
    status = enum_column(FundingOfferStatus, nullable=False, default=FundingOfferStatus.PENDING)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    listing = relationship("LoanListing", back_populates="offers")


class LoanHolding(Base):
    """A lender's fractional ownership of a loan"""

    __tablename__ = "loan_holding"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False, index=True)
    lender_id = Column(Text, nullable=False, index=True)
    funding_offer_id = Column(UUID(as_uuid=True), ForeignKey("funding_offer.id"), nullable=True)
    funding_wallet = enum_column(WalletType, nullable=False, default=WalletType.CASH)
    principal_cents = Column(BigInteger, nullable=False)
    outstanding_cents = Column(BigInteger, nullable=False)
    share_percentage = Column(Numeric(12, 10), nullable=False)
    acquisition_method = enum_column(AcquisitionMethod, nullable=False, default=AcquisitionMethod.PRIMARY)
    status = enum_column(HoldingStatus, nullable=False, default=HoldingStatus.ACTIVE)
    is_for_sale = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    loan = relationship("Loan", back_populates="holdings")
    installments = relationship("Installment", back_populates="holding", order_by="Installment.installment_number")
    transfers = relationship("HoldingTransfer", back_populates="holding", order_by="HoldingTransfer.transferred_at")


class HoldingTransfer(Base):
    """Ownership change of a holding through the secondary market"""

    __tablename__ = "holding_transfer"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    holding_id = Column(UUID(as_uuid=True), ForeignKey("loan_holding.id", ondelete="CASCADE"), nullable=False, index=True)
    secondary_listing_id = Column(UUID(as_uuid=True), ForeignKey("secondary_listing.id"), nullable=False)
    from_lender_id = Column(Text, nullable=False)
    to_lender_id = Column(Text, nullable=False)
    price_cents = Column(BigInteger, nullable=False)
    deal_fee_cents = Column(BigInteger, nullable=False)
    transferred_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    holding = relationship("LoanHolding", back_populates="transfers")


class SecondaryListing(Base):
    """Holding offered for resale"""

    __tablename__ = "secondary_listing"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    holding_id = Column(UUID(as_uuid=True), ForeignKey("loan_holding.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(Text, nullable=False, index=True)
    asking_price_cents = Column(BigInteger, nullable=False)
    outstanding_cents = Column(BigInteger, nullable=False)  # snapshot at listing time
    status = enum_column(SecondaryListingStatus, nullable=False, default=SecondaryListingStatus.ACTIVE, index=True)
    listing_expiry = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)

    holding = relationship("LoanHolding")
    offers = relationship("PurchaseOffer", back_populates="listing", cascade="all, delete-orphan")


class PurchaseOffer(Base):
    """Buyer's bid on a secondary listing"""

    __tablename__ = "purchase_offer"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    secondary_listing_id = Column(
        UUID(as_uuid=True), ForeignKey("secondary_listing.id", ondelete="CASCADE"), nullable=False, index=True
    )
    buyer_id = Column(Text, nullable=False, index=True)
    offer_price_cents = Column(BigInteger, nullable=False)
    status = enum_column(PurchaseOfferStatus, nullable=False, default=PurchaseOfferStatus.PENDING)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    listing = relationship("SecondaryListing", back_populates="offers")


class Installment(Base):
    """Monthly repayment owed on one holding"""

    __tablename__ = "installment"
    __table_args__ = (UniqueConstraint("holding_id", "installment_number"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False, index=True)
    holding_id = Column(UUID(as_uuid=True), ForeignKey("loan_holding.id", ondelete="CASCADE"), nullable=False)
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    amount_due_cents = Column(BigInteger, nullable=False)
    principal_cents = Column(BigInteger, nullable=False)
    interest_cents = Column(BigInteger, nullable=False)
    status = enum_column(InstallmentStatus, nullable=False, default=InstallmentStatus.PENDING, index=True)
    days_late = Column(Integer, nullable=False, default=0)
    paid_amount_cents = Column(BigInteger, nullable=False, default=0)
    borrower_paid_cents = Column(BigInteger, nullable=False, default=0)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    holding = relationship("LoanHolding", back_populates="installments")


class CoverageOffer(Base):
    """Platform credit offered to a lender in place of a late cash installment"""

    __tablename__ = "coverage_offer"
    __table_args__ = (
        # At most one pending offer per installment
        Index(
            "uq_coverage_offer_pending_installment",
            "installment_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    installment_id = Column(UUID(as_uuid=True), ForeignKey("installment.id", ondelete="CASCADE"), nullable=False, index=True)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False)
    lender_id = Column(Text, nullable=False, index=True)
    borrower_id = Column(Text, nullable=False)
    original_amount_due_cents = Column(BigInteger, nullable=False)
    coverage_percentage = Column(Integer, nullable=False)
    offer_amount_credits_cents = Column(BigInteger, nullable=False)
    days_late = Column(Integer, nullable=False)
    status = enum_column(CoverageOfferStatus, nullable=False, default=CoverageOfferStatus.PENDING, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class DirectLoanOffer(Base):
    """Time-limited platform loan offer"""

    __tablename__ = "direct_loan_offer"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    borrower_id = Column(Text, nullable=False, index=True)
    principal_cents = Column(BigInteger, nullable=False)
    fixed_fee_cents = Column(BigInteger, nullable=False)
    total_repayment_cents = Column(BigInteger, nullable=False)
    duration_days = Column(Integer, nullable=False)
    apr = Column(Numeric(10, 2), nullable=False)
    zimscore = Column(Integer, nullable=False)
    status = enum_column(DirectOfferStatus, nullable=False, default=DirectOfferStatus.PENDING)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class DirectLoan(Base):
    """Signed platform-funded loan"""

    __tablename__ = "direct_loan"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    offer_id = Column(UUID(as_uuid=True), ForeignKey("direct_loan_offer.id"), nullable=False, unique=True)
    borrower_id = Column(Text, nullable=False, index=True)
    principal_cents = Column(BigInteger, nullable=False)
    fixed_finance_fee_cents = Column(BigInteger, nullable=False)
    total_repayment_cents = Column(BigInteger, nullable=False)
    apr = Column(Numeric(10, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    status = enum_column(DirectLoanStatus, nullable=False, default=DirectLoanStatus.SIGNED)
    amount_paid_cents = Column(BigInteger, nullable=False, default=0)
    signature_name = Column(String(200), nullable=False)
    signature_ip = Column(String(64), nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=False)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    repaid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    repayments = relationship("DirectLoanRepayment", back_populates="loan", cascade="all, delete-orphan")


class DirectLoanRepayment(Base):
    """Payment received against a direct loan"""

    __tablename__ = "direct_loan_repayment"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    direct_loan_id = Column(UUID(as_uuid=True), ForeignKey("direct_loan.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_cents = Column(BigInteger, nullable=False)
    payment_method = Column(Text, nullable=False)
    transaction_reference = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    loan = relationship("DirectLoan", back_populates="repayments")
