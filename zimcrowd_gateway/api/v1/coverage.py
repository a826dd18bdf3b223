"""/v1/coverage - Platform credit offered to lenders for late installments"""

import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from zimcrowd_gateway.api.dependencies import get_coverage_service, get_current_user_id
from zimcrowd_gateway.api.v1.schemas import CoverageOfferSchema
from zimcrowd_gateway.services.coverage import CoverageService

router = APIRouter()


@router.get("/coverage/offers", response_model=List[CoverageOfferSchema])
def get_pending_offers(
    user_id: str = Depends(get_current_user_id),
    service: CoverageService = Depends(get_coverage_service),
):
    return [CoverageOfferSchema.model_validate(offer) for offer in service.get_pending_offers(user_id)]


@router.post("/coverage/installments/{installment_id}/offers", response_model=CoverageOfferSchema, status_code=201)
def create_offer(
    installment_id: uuid.UUID,
    days_late: Optional[int] = Query(None, ge=0),
    service: CoverageService = Depends(get_coverage_service),
):
    """Operator endpoint; the scan job normally creates these"""
    return CoverageOfferSchema.model_validate(service.create_offer(installment_id, days_late))


@router.post("/coverage/offers/{offer_id}/accept", response_model=CoverageOfferSchema)
def accept_offer(
    offer_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    service: CoverageService = Depends(get_coverage_service),
):
    return CoverageOfferSchema.model_validate(service.accept_offer(offer_id, user_id))


@router.post("/coverage/offers/{offer_id}/decline", response_model=CoverageOfferSchema)
def decline_offer(
    offer_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    service: CoverageService = Depends(get_coverage_service),
):
    return CoverageOfferSchema.model_validate(service.decline_offer(offer_id, user_id))
