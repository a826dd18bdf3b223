"""/v1/primary - Loan listings, funding offers and lender portfolios"""

import uuid
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query

from zimcrowd_gateway.api.dependencies import (
    get_current_user_id,
    get_notification_client,
    get_primary_market_service,
)
from zimcrowd_gateway.api.v1.schemas import (
    CreateListingRequest,
    FundingOfferSchema,
    HoldingSchema,
    ListingPageResponse,
    ListingSchema,
    PortfolioResponse,
    SubmitOfferRequest,
)
from zimcrowd_gateway.domain.models import ListingStatus, MarketplaceFilters, NotificationEvent
from zimcrowd_gateway.infrastructure.clients.notifications import NotificationClient
from zimcrowd_gateway.services.primary_market import PrimaryMarketService

router = APIRouter()


@router.post("/primary/listings", response_model=ListingSchema, status_code=201)
def create_listing(
    body: CreateListingRequest,
    user_id: str = Depends(get_current_user_id),
    service: PrimaryMarketService = Depends(get_primary_market_service),
):
    """
    Open a funding request.

    First-time borrowers are limited to the cold-start ceiling until one of
    their loans completes.
    """
    listing = service.create_listing(user_id, body.amount_cents, body.term_months, body.rate, body.purpose)
    return ListingSchema.model_validate(listing)


@router.get("/primary/listings", response_model=ListingPageResponse)
def browse_listings(
    min_amount_cents: Optional[int] = Query(None, ge=0),
    max_amount_cents: Optional[int] = Query(None, ge=0),
    max_rate: Optional[Decimal] = Query(None, ge=0),
    term_months: Optional[int] = Query(None, gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: PrimaryMarketService = Depends(get_primary_market_service),
):
    result = service.browse_marketplace(
        MarketplaceFilters(
            min_amount_cents=min_amount_cents,
            max_amount_cents=max_amount_cents,
            max_rate=max_rate,
            term_months=term_months,
            page=page,
            limit=limit,
        )
    )
    return ListingPageResponse(
        items=[ListingSchema.model_validate(item) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        total_pages=result.total_pages,
    )


@router.get("/primary/listings/{listing_id}", response_model=ListingSchema)
def get_listing(listing_id: uuid.UUID, service: PrimaryMarketService = Depends(get_primary_market_service)):
    return ListingSchema.model_validate(service.get_listing(listing_id))


@router.post("/primary/listings/{listing_id}/cancel", response_model=ListingSchema)
def cancel_listing(
    listing_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    service: PrimaryMarketService = Depends(get_primary_market_service),
):
    return ListingSchema.model_validate(service.cancel_listing(user_id, listing_id))


@router.post("/primary/listings/{listing_id}/offers", response_model=FundingOfferSchema, status_code=201)
def submit_offer(
    listing_id: uuid.UUID,
    body: SubmitOfferRequest,
    user_id: str = Depends(get_current_user_id),
    service: PrimaryMarketService = Depends(get_primary_market_service),
):
    offer = service.submit_offer(user_id, listing_id, body.offer_amount_cents, body.offered_rate, body.funding_wallet)
    return FundingOfferSchema.model_validate(offer)


@router.post("/primary/offers/{offer_id}/accept", response_model=FundingOfferSchema)
def accept_offer(
    offer_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    service: PrimaryMarketService = Depends(get_primary_market_service),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Borrower accepts an offer; the loan is originated when this one completes funding"""
    offer = service.accept_offer(user_id, offer_id)
    listing = offer.listing
    if listing.status == ListingStatus.FUNDED:
        background_tasks.add_task(
            notifier.notify,
            user_id,
            NotificationEvent.LOAN_APPROVED,
            {"loan_id": str(listing.loan_id), "amount_cents": listing.funding_goal_cents},
        )
    return FundingOfferSchema.model_validate(offer)


@router.post("/primary/offers/{offer_id}/reject", response_model=FundingOfferSchema)
def reject_offer(
    offer_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    service: PrimaryMarketService = Depends(get_primary_market_service),
):
    return FundingOfferSchema.model_validate(service.reject_offer(user_id, offer_id))


@router.post("/primary/offers/{offer_id}/withdraw", response_model=FundingOfferSchema)
def withdraw_offer(
    offer_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    service: PrimaryMarketService = Depends(get_primary_market_service),
):
    return FundingOfferSchema.model_validate(service.withdraw_offer(user_id, offer_id))


@router.get("/primary/portfolio", response_model=PortfolioResponse)
def get_portfolio(
    user_id: str = Depends(get_current_user_id),
    service: PrimaryMarketService = Depends(get_primary_market_service),
):
    summary = service.get_lender_portfolio(user_id)
    return PortfolioResponse(
        lender_id=summary.lender_id,
        holdings=[HoldingSchema.model_validate(h) for h in summary.holdings],
        total_invested_cents=summary.total_invested_cents,
        total_outstanding_cents=summary.total_outstanding_cents,
        active_count=summary.active_count,
    )
