"""Secondary market: resale of loan holdings between lenders"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy.orm import Session

from zimcrowd_gateway.config import settings
from zimcrowd_gateway.domain.exceptions import (
    AuthorizationError,
    ExpiredError,
    HoldingNotSellableError,
    InvalidAmountError,
    NotFoundError,
    OfferExpiredError,
    OfferNotPendingError,
    StateConflictError,
    ValidationError,
)
from zimcrowd_gateway.domain.fees import deal_fee
from zimcrowd_gateway.domain.models import (
    HoldingStatus,
    LedgerEntryType,
    LoanStatus,
    Page,
    PurchaseOfferStatus,
    SecondaryListingStatus,
    WalletType,
)
from zimcrowd_gateway.infrastructure.database.models import HoldingTransfer, PurchaseOffer, SecondaryListing
from zimcrowd_gateway.infrastructure.database.repositories import (
    CoverageOfferRepository,
    HoldingRepository,
    SecondaryMarketRepository,
)
from zimcrowd_gateway.infrastructure.database.session import atomic
from zimcrowd_gateway.infrastructure.observability.logging import log_settlement
from zimcrowd_gateway.infrastructure.observability.metrics import record_secondary_sale
from zimcrowd_gateway.services.ledger import LedgerService
from zimcrowd_gateway.utils.date_utils import is_past, utcnow
from zimcrowd_gateway.utils.money import from_cents, to_cents

logger = logging.getLogger(__name__)


@dataclass
class ExpirySweep:
    listings: int = 0
    offers: int = 0


class SecondaryMarketService:
    """Secondary listing: active -> sold | expired | cancelled"""

    def __init__(self, db: Session):
        self.db = db
        self.market = SecondaryMarketRepository(db)
        self.holdings = HoldingRepository(db)
        self.coverage_offers = CoverageOfferRepository(db)
        self.ledger = LedgerService(db)

    def list_for_sale(self, seller_id: str, holding_id: uuid.UUID, asking_price_cents: int) -> SecondaryListing:
        """
        Put an active holding up for resale.

        Raises:
            HoldingNotSellableError: not owned by the seller, not active, already
                listed, or its loan has not been originated yet
        """
        if asking_price_cents <= 0:
            raise InvalidAmountError("Asking price must be greater than 0", {"asking_price_cents": asking_price_cents})

        holding = self.holdings.get(holding_id)
        if holding is None:
            raise NotFoundError("Holding not found", {"holding_id": str(holding_id)})
        if holding.lender_id != seller_id or holding.status != HoldingStatus.ACTIVE:
            raise HoldingNotSellableError(
                "Holding is not an active holding of the seller",
                {"holding_id": str(holding_id), "status": holding.status.value},
            )
        if holding.loan.status != LoanStatus.ACTIVE:
            raise HoldingNotSellableError(
                "Only holdings in active loans can be resold",
                {"holding_id": str(holding_id), "loan_status": holding.loan.status.value},
            )

        with atomic(self.db):
            if not self.holdings.set_for_sale(holding.id, seller_id, True):
                raise HoldingNotSellableError("Holding is already listed for sale", {"holding_id": str(holding_id)})
            self.db.refresh(holding)
            listing = self.market.create_listing(
                holding,
                asking_price_cents,
                listing_expiry=utcnow() + timedelta(days=settings.secondary_listing_expiry_days),
            )

        logger.info(
            "Holding listed for sale",
            extra={"user_id": seller_id, "holding_id": str(holding_id), "listing_id": str(listing.id), "amount_cents": asking_price_cents},
        )
        return listing

    def get_listing(self, listing_id: uuid.UUID) -> SecondaryListing:
        listing = self.market.get_listing(listing_id)
        if listing is None:
            raise NotFoundError("Secondary listing not found", {"listing_id": str(listing_id)})
        return listing

    def browse(self, max_price_cents: Optional[int] = None, page: int = 1, limit: Optional[int] = None) -> Page:
        return self.market.browse(max_price_cents, page, limit or settings.marketplace_page_size)

    def submit_purchase_offer(self, buyer_id: str, listing_id: uuid.UUID, offer_price_cents: int) -> PurchaseOffer:
        if offer_price_cents <= 0:
            raise InvalidAmountError("Offer price must be greater than 0", {"offer_price_cents": offer_price_cents})

        listing = self.get_listing(listing_id)
        if listing.status != SecondaryListingStatus.ACTIVE:
            raise StateConflictError("Listing is not active", {"listing_id": str(listing.id), "status": listing.status.value})
        if is_past(listing.listing_expiry):
            raise ExpiredError("Listing has expired", {"listing_id": str(listing.id)})
        if listing.seller_id == buyer_id:
            raise ValidationError("Sellers cannot bid on their own listing")

        with atomic(self.db):
            offer = self.market.create_offer(
                listing.id,
                buyer_id,
                offer_price_cents,
                expires_at=utcnow() + timedelta(days=settings.purchase_offer_expiry_days),
            )

        logger.info(
            "Purchase offer submitted",
            extra={"user_id": buyer_id, "listing_id": str(listing.id), "offer_id": str(offer.id), "amount_cents": offer_price_cents},
        )
        return offer

    def get_purchase_offers(self, buyer_id: str) -> List[PurchaseOffer]:
        return self.market.get_offers_for_buyer(buyer_id)

    def accept_purchase_offer(self, seller_id: str, offer_id: uuid.UUID) -> HoldingTransfer:
        """
        Settle a resale in one transaction.

        The buyer is debited the offer price first, so a buyer who cannot pay
        stops the sale before anything else changes. The holding then moves to
        the buyer, the seller is credited the price less the deal fee, and the
        fee goes to the platform account. Pending coverage offers on the
        holding's installments pass to the buyer and remaining bids are rejected.
        """
        offer = self.market.get_offer(offer_id)
        if offer is None:
            raise NotFoundError("Purchase offer not found", {"offer_id": str(offer_id)})
        listing = offer.listing
        if listing.seller_id != seller_id:
            raise AuthorizationError("Only the seller can accept purchase offers")
        if offer.status != PurchaseOfferStatus.PENDING:
            raise OfferNotPendingError("Offer is not pending", {"offer_id": str(offer.id), "status": offer.status.value})
        if is_past(offer.expires_at):
            raise OfferExpiredError("Offer has expired", {"offer_id": str(offer.id)})
        if listing.status != SecondaryListingStatus.ACTIVE:
            raise StateConflictError("Listing is not active", {"listing_id": str(listing.id), "status": listing.status.value})

        price = offer.offer_price_cents
        fee = to_cents(deal_fee(from_cents(price)))
        reference = str(listing.id)
        now = utcnow()

        with atomic(self.db):
            self.ledger.debit(offer.buyer_id, WalletType.CASH, price, LedgerEntryType.PURCHASE, reference)

            if not self.market.transition_offer(offer.id, PurchaseOfferStatus.ACCEPTED, now):
                raise OfferNotPendingError("Offer is no longer pending", {"offer_id": str(offer.id)})
            if not self.market.transition_listing(listing.id, SecondaryListingStatus.SOLD):
                raise StateConflictError("Listing is no longer active", {"listing_id": reference})
            if not self.holdings.try_transfer(listing.holding_id, seller_id, offer.buyer_id):
                raise HoldingNotSellableError("Holding can no longer be transferred", {"holding_id": str(listing.holding_id)})
            self.coverage_offers.reassign_pending_for_holding(listing.holding_id, seller_id, offer.buyer_id)

            transfer = self.holdings.record_transfer(
                holding_id=listing.holding_id,
                secondary_listing_id=listing.id,
                from_lender_id=seller_id,
                to_lender_id=offer.buyer_id,
                price_cents=price,
                deal_fee_cents=fee,
            )
            self.ledger.credit(seller_id, WalletType.CASH, price - fee, LedgerEntryType.SALE_PROCEEDS, reference)
            if fee > 0:
                self.ledger.credit(
                    settings.platform_user_id, WalletType.CASH, fee, LedgerEntryType.PLATFORM_FEE, reference, notes="Deal fee"
                )
            self.market.reject_pending_offers(listing.id, now, except_offer_id=offer.id)

        record_secondary_sale(fee)
        log_settlement("secondary_sale", reference, price, payer_id=offer.buyer_id, payee_id=seller_id, fee_cents=fee)
        return transfer

    def cancel_sale_listing(self, seller_id: str, listing_id: uuid.UUID) -> SecondaryListing:
        listing = self.get_listing(listing_id)
        if listing.seller_id != seller_id:
            raise AuthorizationError("Only the seller can cancel this listing")

        with atomic(self.db):
            if not self.market.transition_listing(listing.id, SecondaryListingStatus.CANCELLED):
                raise StateConflictError("Listing is not active", {"listing_id": str(listing.id)})
            self.holdings.set_for_sale(listing.holding_id, seller_id, False)
            self.market.reject_pending_offers(listing.id, utcnow())

        self.db.refresh(listing)
        logger.info("Secondary listing cancelled", extra={"user_id": seller_id, "listing_id": str(listing.id)})
        return listing

    def expire_listings(self, now: Optional[datetime] = None) -> ExpirySweep:
        """Expire stale resale listings (releasing their holdings) and stale bids"""
        now = now or utcnow()
        sweep = ExpirySweep()
        for listing in self.market.get_expired_listings(now):
            with atomic(self.db):
                if not self.market.transition_listing(listing.id, SecondaryListingStatus.EXPIRED):
                    continue
                self.holdings.set_for_sale(listing.holding_id, listing.seller_id, False)
                self.market.reject_pending_offers(listing.id, now)
            sweep.listings += 1

        with atomic(self.db):
            sweep.offers = self.market.expire_offers(now)

        if sweep.listings or sweep.offers:
            logger.info("Secondary market expired", extra={"listings": sweep.listings, "offers": sweep.offers})
        return sweep
