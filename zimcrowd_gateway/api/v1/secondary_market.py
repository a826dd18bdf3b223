"""/v1/secondary - Resale of loan holdings between lenders"""

import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from zimcrowd_gateway.api.dependencies import get_current_user_id, get_secondary_market_service
from zimcrowd_gateway.api.v1.schemas import (
    ListForSaleRequest,
    PurchaseOfferRequest,
    PurchaseOfferSchema,
    SecondaryListingPageResponse,
    SecondaryListingSchema,
    TransferSchema,
)
from zimcrowd_gateway.services.secondary_market import SecondaryMarketService

router = APIRouter()


@router.post("/secondary/listings", response_model=SecondaryListingSchema, status_code=201)
def list_for_sale(
    body: ListForSaleRequest,
    user_id: str = Depends(get_current_user_id),
    service: SecondaryMarketService = Depends(get_secondary_market_service),
):
    listing = service.list_for_sale(user_id, body.holding_id, body.asking_price_cents)
    return SecondaryListingSchema.model_validate(listing)


@router.get("/secondary/listings", response_model=SecondaryListingPageResponse)
def browse_listings(
    max_price_cents: Optional[int] = Query(None, gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: SecondaryMarketService = Depends(get_secondary_market_service),
):
    result = service.browse(max_price_cents, page, limit)
    return SecondaryListingPageResponse(
        items=[SecondaryListingSchema.model_validate(item) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        total_pages=result.total_pages,
    )


@router.get("/secondary/listings/{listing_id}", response_model=SecondaryListingSchema)
def get_listing(listing_id: uuid.UUID, service: SecondaryMarketService = Depends(get_secondary_market_service)):
    return SecondaryListingSchema.model_validate(service.get_listing(listing_id))


@router.post("/secondary/listings/{listing_id}/cancel", response_model=SecondaryListingSchema)
def cancel_listing(
    listing_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    service: SecondaryMarketService = Depends(get_secondary_market_service),
):
    return SecondaryListingSchema.model_validate(service.cancel_sale_listing(user_id, listing_id))


@router.post("/secondary/listings/{listing_id}/offers", response_model=PurchaseOfferSchema, status_code=201)
def submit_purchase_offer(
    listing_id: uuid.UUID,
    body: PurchaseOfferRequest,
    user_id: str = Depends(get_current_user_id),
    service: SecondaryMarketService = Depends(get_secondary_market_service),
):
    offer = service.submit_purchase_offer(user_id, listing_id, body.offer_price_cents)
    return PurchaseOfferSchema.model_validate(offer)


@router.get("/secondary/offers", response_model=List[PurchaseOfferSchema])
def get_my_offers(
    user_id: str = Depends(get_current_user_id),
    service: SecondaryMarketService = Depends(get_secondary_market_service),
):
    return [PurchaseOfferSchema.model_validate(offer) for offer in service.get_purchase_offers(user_id)]


@router.post("/secondary/offers/{offer_id}/accept", response_model=TransferSchema)
def accept_purchase_offer(
    offer_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    service: SecondaryMarketService = Depends(get_secondary_market_service),
):
    """Seller accepts a bid; the holding, the price and the deal fee all move together"""
    return TransferSchema.model_validate(service.accept_purchase_offer(user_id, offer_id))
