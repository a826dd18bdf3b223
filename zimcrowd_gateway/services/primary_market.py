"""Primary marketplace: listings, funding offers, acceptance and origination"""

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Optional
from sqlalchemy.orm import Session

from zimcrowd_gateway.config import settings, OvershootPolicy
from zimcrowd_gateway.domain.constants import MAX_LISTING_RATE
from zimcrowd_gateway.domain.exceptions import (
    AuthorizationError,
    ColdStartLimitExceededError,
    ExpiredError,
    FundingGoalExceededError,
    InvalidAmountError,
    InvalidRateError,
    ListingNotFundableError,
    NotFoundError,
    OfferExpiredError,
    OfferNotPendingError,
    StateConflictError,
    ValidationError,
)
from zimcrowd_gateway.domain.fees import borrower_fees, monthly_payment
from zimcrowd_gateway.domain.installments import generate_repayment_schedule
from zimcrowd_gateway.domain.models import (
    FUNDABLE_LISTING_STATUSES,
    FundingOfferStatus,
    HoldingStatus,
    LedgerEntryType,
    ListingStatus,
    LoanStatus,
    MarketplaceFilters,
    Page,
    PortfolioSummary,
    WalletType,
)
from zimcrowd_gateway.infrastructure.database.models import FundingOffer, LoanListing
from zimcrowd_gateway.infrastructure.database.repositories import (
    HoldingRepository,
    InstallmentRepository,
    ListingRepository,
)
from zimcrowd_gateway.infrastructure.database.session import atomic
from zimcrowd_gateway.infrastructure.observability.logging import log_settlement
from zimcrowd_gateway.infrastructure.observability.metrics import (
    funding_offer_counter,
    listing_counter,
    record_funding_outcome,
)
from zimcrowd_gateway.services.ledger import LedgerService
from zimcrowd_gateway.utils.date_utils import is_past, utcnow
from zimcrowd_gateway.utils.money import from_cents, to_cents

logger = logging.getLogger(__name__)

SHARE_PRECISION = Decimal("0.0000000001")


def validate_rate(rate) -> Decimal:
    """Rates are fractions; anything outside [0, 0.10] is refused"""
    try:
        value = Decimal(str(rate))
    except ArithmeticError:
        raise InvalidRateError("Rate is not a number", {"rate": str(rate)})
    if value < 0 or value > MAX_LISTING_RATE:
        raise InvalidRateError(
            f"Rate must be between 0 and {MAX_LISTING_RATE}",
            {"rate": str(value), "max_rate": str(MAX_LISTING_RATE)},
        )
    return value


class PrimaryMarketService:
    """
    Listing and funding-offer state machines.

    Listing: active -> partially_funded -> funded, or -> expired / cancelled.
    Offer:   pending -> accepted | rejected | withdrawn | expired.
    """

    def __init__(self, db: Session, overshoot_policy: Optional[OvershootPolicy] = None):
        self.db = db
        self.listings = ListingRepository(db)
        self.holdings = HoldingRepository(db)
        self.installments = InstallmentRepository(db)
        self.ledger = LedgerService(db)
        self.overshoot_policy = overshoot_policy or settings.funding_overshoot_policy

    # Listings

    def create_listing(
        self,
        borrower_id: str,
        amount_cents: int,
        term_months: int,
        rate,
        purpose: Optional[str] = None,
    ) -> LoanListing:
        """
        Open a funding request on the marketplace.

        Raises:
            InvalidAmountError, InvalidRateError, ValidationError: bad input
            ColdStartLimitExceededError: borrower has no completed loan and asked for more than the ceiling
        """
        if amount_cents <= 0:
            raise InvalidAmountError("Loan amount must be greater than 0", {"amount_cents": amount_cents})
        rate = validate_rate(rate)
        if term_months <= 0 or term_months > settings.max_term_months:
            raise ValidationError(
                f"Term must be between 1 and {settings.max_term_months} months", {"term_months": term_months}
            )

        first_time = not self.listings.has_completed_loan(borrower_id)
        if first_time and amount_cents > settings.cold_start_ceiling_cents:
            listing_counter.labels(event="cold_start_rejected").inc()
            logger.info(
                "Listing refused: cold-start ceiling",
                extra={"user_id": borrower_id, "amount_cents": amount_cents, "ceiling_cents": settings.cold_start_ceiling_cents},
            )
            raise ColdStartLimitExceededError(settings.cold_start_ceiling_cents, amount_cents)

        payment = monthly_payment(from_cents(amount_cents), rate * 100, term_months)

        with atomic(self.db):
            listing = self.listings.create_listing(
                borrower_id=borrower_id,
                amount_cents=amount_cents,
                term_months=term_months,
                rate=rate,
                monthly_payment_cents=to_cents(payment),
                purpose=purpose,
                is_first_time=first_time,
                funding_deadline=utcnow() + timedelta(days=settings.listing_funding_days),
            )

        listing_counter.labels(event="created").inc()
        logger.info(
            "Listing created",
            extra={"user_id": borrower_id, "listing_id": str(listing.id), "amount_cents": amount_cents},
        )
        return listing

    def get_listing(self, listing_id: uuid.UUID) -> LoanListing:
        listing = self.listings.get_listing(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found", {"listing_id": str(listing_id)})
        return listing

    def browse_marketplace(self, filters: MarketplaceFilters) -> Page:
        return self.listings.browse(filters)

    def cancel_listing(self, borrower_id: str, listing_id: uuid.UUID) -> LoanListing:
        """Borrower withdraws the listing; only allowed while nothing has been accepted"""
        listing = self.get_listing(listing_id)
        if listing.borrower_id != borrower_id:
            raise AuthorizationError("Only the borrower can cancel this listing")

        now = utcnow()
        with atomic(self.db):
            if not self.listings.transition_listing(
                listing.id, FUNDABLE_LISTING_STATUSES, ListingStatus.CANCELLED, require_unfunded=True
            ):
                self.db.refresh(listing)
                raise StateConflictError(
                    "Listing can only be cancelled while no offers are accepted",
                    {"status": listing.status.value, "amount_funded_cents": listing.amount_funded_cents},
                )
            self.listings.reject_pending_offers(listing.id, now)
            listing.loan.status = LoanStatus.CANCELLED

        self.db.refresh(listing)
        listing_counter.labels(event="cancelled").inc()
        logger.info("Listing cancelled", extra={"user_id": borrower_id, "listing_id": str(listing.id)})
        return listing

    # Funding offers

    def submit_offer(
        self,
        lender_id: str,
        listing_id: uuid.UUID,
        offer_amount_cents: int,
        offered_rate,
        funding_wallet: WalletType = WalletType.CASH,
    ) -> FundingOffer:
        if offer_amount_cents <= 0:
            raise InvalidAmountError("Offer amount must be greater than 0", {"offer_amount_cents": offer_amount_cents})
        offered_rate = validate_rate(offered_rate)

        listing = self.get_listing(listing_id)
        if listing.status not in FUNDABLE_LISTING_STATUSES:
            raise ListingNotFundableError(
                "Listing is not accepting offers", {"listing_id": str(listing.id), "status": listing.status.value}
            )
        if is_past(listing.funding_deadline):
            raise ExpiredError("Listing funding deadline has passed", {"listing_id": str(listing.id)})
        if listing.borrower_id == lender_id:
            raise ValidationError("Borrowers cannot fund their own listing")

        with atomic(self.db):
            offer = self.listings.create_offer(
                listing_id=listing.id,
                lender_id=lender_id,
                offer_amount_cents=offer_amount_cents,
                offered_rate=offered_rate,
                funding_wallet=funding_wallet,
                expires_at=utcnow() + timedelta(days=settings.funding_offer_expiry_days),
            )

        record_funding_outcome("submitted")
        logger.info(
            "Funding offer submitted",
            extra={"user_id": lender_id, "listing_id": str(listing.id), "offer_id": str(offer.id), "amount_cents": offer_amount_cents},
        )
        return offer

    def _get_offer(self, offer_id: uuid.UUID) -> FundingOffer:
        offer = self.listings.get_offer(offer_id)
        if offer is None:
            raise NotFoundError("Funding offer not found", {"offer_id": str(offer_id)})
        return offer

    def accept_offer(self, borrower_id: str, offer_id: uuid.UUID) -> FundingOffer:
        """
        Borrower accepts a pending funding offer.

        The funding-goal check and increment are one conditional UPDATE, so
        concurrent accepts on the same listing can never overshoot the goal.
        When an offer no longer fits, the configured overshoot policy either
        refuses it (FundingGoalExceededError) or funds only what remains.
        The lender's wallet is debited, a holding is created, and the loan is
        originated when the goal is reached, all in one transaction.
        """
        offer = self._get_offer(offer_id)
        listing = offer.listing
        if listing.borrower_id != borrower_id:
            raise AuthorizationError("Only the listing's borrower can accept offers")
        if offer.status != FundingOfferStatus.PENDING:
            raise OfferNotPendingError("Offer is not pending", {"offer_id": str(offer.id), "status": offer.status.value})
        if is_past(offer.expires_at):
            raise OfferExpiredError("Offer has expired", {"offer_id": str(offer.id)})

        now = utcnow()
        if is_past(listing.funding_deadline, now):
            raise ExpiredError("Listing funding deadline has passed", {"listing_id": str(listing.id)})

        capped = False
        with atomic(self.db):
            amount = offer.offer_amount_cents
            while not self.listings.try_add_funding(listing.id, amount, now):
                self.db.refresh(listing)
                if listing.status not in FUNDABLE_LISTING_STATUSES:
                    raise ListingNotFundableError(
                        "Listing is not accepting offers", {"listing_id": str(listing.id), "status": listing.status.value}
                    )
                if is_past(listing.funding_deadline, now):
                    raise ExpiredError("Listing funding deadline has passed", {"listing_id": str(listing.id)})
                remaining = listing.funding_goal_cents - listing.amount_funded_cents
                if self.overshoot_policy == OvershootPolicy.CAP and 0 < remaining < amount:
                    amount = remaining
                    capped = True
                    continue
                record_funding_outcome("overshoot_rejected")
                logger.info(
                    "Offer refused: funding goal would be exceeded",
                    extra={"offer_id": str(offer.id), "listing_id": str(listing.id), "remaining_cents": remaining},
                )
                raise FundingGoalExceededError(remaining, offer.offer_amount_cents)

            if not self.listings.transition_offer(offer.id, FundingOfferStatus.ACCEPTED, now, funded_amount_cents=amount):
                raise OfferNotPendingError("Offer is no longer pending", {"offer_id": str(offer.id)})

            entry_type = LedgerEntryType.LOAN_FUNDING if offer.funding_wallet == WalletType.CREDIT else LedgerEntryType.INVESTMENT
            self.ledger.debit(offer.lender_id, offer.funding_wallet, amount, entry_type, reference_id=str(listing.loan_id))

            share = (Decimal(amount) / Decimal(listing.funding_goal_cents)).quantize(SHARE_PRECISION, rounding=ROUND_DOWN)
            self.holdings.create_holding(
                loan_id=listing.loan_id,
                lender_id=offer.lender_id,
                principal_cents=amount,
                share_percentage=share,
                funding_offer_id=offer.id,
                funding_wallet=offer.funding_wallet,
            )

            self.db.refresh(listing)
            if listing.status == ListingStatus.FUNDED:
                self._originate(listing, now)

        self.db.refresh(offer)
        record_funding_outcome("capped" if capped else "accepted")
        log_settlement("funding_offer_accepted", str(offer.id), amount, payer_id=offer.lender_id, payee_id=borrower_id)
        return offer

    def _originate(self, listing: LoanListing, now: datetime) -> None:
        """Disburse a fully funded loan and lay down every holding's schedule"""
        loan = listing.loan
        fees = borrower_fees(from_cents(loan.principal_cents), loan.term_months, Decimal(loan.annual_rate) * 100)
        reference = str(loan.id)

        self.ledger.credit(
            loan.borrower_id, WalletType.CASH, to_cents(fees.net_amount), LedgerEntryType.DISBURSEMENT, reference
        )
        self.ledger.credit(
            settings.platform_user_id,
            WalletType.CASH,
            to_cents(fees.total_upfront_fees),
            LedgerEntryType.PLATFORM_FEE,
            reference,
            notes="Borrower service and insurance fees",
        )

        loan.status = LoanStatus.ACTIVE
        loan.originated_at = now
        for holding in self.holdings.get_for_loan(loan.id):
            schedule = generate_repayment_schedule(
                holding.principal_cents, Decimal(loan.annual_rate), loan.term_months, start_date=now.date()
            )
            self.installments.create_schedule(loan.id, holding.id, schedule)
        self.db.flush()

        listing_counter.labels(event="funded").inc()
        logger.info(
            "Loan originated",
            extra={"loan_id": reference, "user_id": loan.borrower_id, "amount_cents": loan.principal_cents},
        )

    def reject_offer(self, borrower_id: str, offer_id: uuid.UUID) -> FundingOffer:
        offer = self._get_offer(offer_id)
        if offer.listing.borrower_id != borrower_id:
            raise AuthorizationError("Only the listing's borrower can reject offers")
        with atomic(self.db):
            if not self.listings.transition_offer(offer.id, FundingOfferStatus.REJECTED, utcnow()):
                raise OfferNotPendingError("Offer is not pending", {"offer_id": str(offer.id)})
        self.db.refresh(offer)
        record_funding_outcome("rejected")
        return offer

    def withdraw_offer(self, lender_id: str, offer_id: uuid.UUID) -> FundingOffer:
        offer = self._get_offer(offer_id)
        if offer.lender_id != lender_id:
            raise AuthorizationError("Only the lender can withdraw this offer")
        with atomic(self.db):
            if not self.listings.transition_offer(offer.id, FundingOfferStatus.WITHDRAWN, utcnow()):
                raise OfferNotPendingError("Offer is not pending", {"offer_id": str(offer.id)})
        self.db.refresh(offer)
        record_funding_outcome("withdrawn")
        return offer

    # Sweeps

    def expire_offers(self, now: Optional[datetime] = None) -> int:
        with atomic(self.db):
            count = self.listings.expire_offers(now or utcnow())
        if count:
            funding_offer_counter.labels(outcome="expired").inc(count)
            logger.info("Funding offers expired", extra={"count": count})
        return count

    def expire_listings(self, now: Optional[datetime] = None) -> int:
        """
        Close listings whose funding deadline passed before reaching the goal.

        Each holding's current owner is refunded its principal and the holding
        closed. The original funder gets it back in the wallet they funded
        from; a holder who bought the position gets Cash.
        """
        now = now or utcnow()
        expired = 0
        for listing in self.listings.get_expired_listings(now):
            with atomic(self.db):
                if not self.listings.transition_listing(listing.id, FUNDABLE_LISTING_STATUSES, ListingStatus.EXPIRED):
                    continue
                for holding in self.holdings.get_for_loan(listing.loan_id):
                    wallet = WalletType.CASH if holding.transfers else holding.funding_wallet
                    self.ledger.credit(
                        holding.lender_id,
                        wallet,
                        holding.principal_cents,
                        LedgerEntryType.INVESTMENT_REFUND,
                        reference_id=str(listing.loan_id),
                    )
                    self.holdings.close(holding.id)
                self.listings.reject_pending_offers(listing.id, now)
                listing.loan.status = LoanStatus.EXPIRED
            expired += 1
            listing_counter.labels(event="expired").inc()
            logger.info("Listing expired", extra={"listing_id": str(listing.id)})
        return expired

    # Lender views

    def get_lender_portfolio(self, lender_id: str) -> PortfolioSummary:
        holdings = self.holdings.get_for_lender(lender_id)
        summary = PortfolioSummary(lender_id=lender_id, holdings=holdings)
        for holding in holdings:
            if holding.status == HoldingStatus.ACTIVE:
                summary.active_count += 1
                summary.total_invested_cents += holding.principal_cents
                summary.total_outstanding_cents += holding.outstanding_cents
        return summary
