"""/v1/direct-loans - Platform-funded loans priced by ZimScore"""

import uuid
from typing import List
from fastapi import APIRouter, BackgroundTasks, Depends, Request

from zimcrowd_gateway.api.dependencies import (
    get_current_user_id,
    get_direct_loan_service,
    get_notification_client,
)
from zimcrowd_gateway.api.v1.schemas import (
    DirectLoanSchema,
    DirectOfferRequest,
    DirectOfferSchema,
    RecordScoreRequest,
    RepaymentRequest,
    ScoreResponse,
    SignOfferRequest,
)
from zimcrowd_gateway.domain.exceptions import AuthorizationError
from zimcrowd_gateway.domain.models import NotificationEvent
from zimcrowd_gateway.infrastructure.clients.notifications import NotificationClient
from zimcrowd_gateway.infrastructure.database.models import DirectLoan
from zimcrowd_gateway.services.direct_loans import DirectLoanService

router = APIRouter()


def _own_loan(service: DirectLoanService, user_id: str, direct_loan_id: uuid.UUID) -> DirectLoan:
    loan = service.get_loan(direct_loan_id)
    if loan.borrower_id != user_id:
        raise AuthorizationError("Direct loan belongs to another user")
    return loan


@router.post("/direct-loans/scores", response_model=ScoreResponse)
def record_score(body: RecordScoreRequest, service: DirectLoanService = Depends(get_direct_loan_service)):
    """Scores are computed upstream and pushed here"""
    return ScoreResponse.model_validate(service.record_score(body.user_id, body.score))


@router.post("/direct-loans/offers", response_model=DirectOfferSchema, status_code=201)
def create_offer(
    body: DirectOfferRequest,
    user_id: str = Depends(get_current_user_id),
    service: DirectLoanService = Depends(get_direct_loan_service),
):
    return DirectOfferSchema.model_validate(service.create_offer(user_id, body.amount_cents, body.duration_days))


@router.post("/direct-loans/offers/{offer_id}/accept", response_model=DirectLoanSchema, status_code=201)
def accept_offer(
    offer_id: uuid.UUID,
    body: SignOfferRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: DirectLoanService = Depends(get_direct_loan_service),
):
    ip_address = request.client.host if request.client else None
    loan = service.accept_offer(user_id, offer_id, body.signature_name, ip_address)
    return DirectLoanSchema.model_validate(loan)


@router.get("/direct-loans", response_model=List[DirectLoanSchema])
def get_loans(
    user_id: str = Depends(get_current_user_id),
    service: DirectLoanService = Depends(get_direct_loan_service),
):
    return [DirectLoanSchema.model_validate(loan) for loan in service.get_loans(user_id)]


@router.get("/direct-loans/{direct_loan_id}", response_model=DirectLoanSchema)
def get_loan(
    direct_loan_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    service: DirectLoanService = Depends(get_direct_loan_service),
):
    return DirectLoanSchema.model_validate(_own_loan(service, user_id, direct_loan_id))


@router.post("/direct-loans/{direct_loan_id}/disburse", response_model=DirectLoanSchema)
def disburse(
    direct_loan_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    service: DirectLoanService = Depends(get_direct_loan_service),
    notifier: NotificationClient = Depends(get_notification_client),
):
    _own_loan(service, user_id, direct_loan_id)
    loan = service.disburse(direct_loan_id)
    background_tasks.add_task(
        notifier.notify,
        user_id,
        NotificationEvent.LOAN_APPROVED,
        {"direct_loan_id": str(loan.id), "amount_cents": loan.principal_cents},
    )
    return DirectLoanSchema.model_validate(loan)


@router.post("/direct-loans/{direct_loan_id}/repayments", response_model=DirectLoanSchema)
def record_repayment(
    direct_loan_id: uuid.UUID,
    body: RepaymentRequest,
    user_id: str = Depends(get_current_user_id),
    service: DirectLoanService = Depends(get_direct_loan_service),
):
    _own_loan(service, user_id, direct_loan_id)
    loan = service.record_repayment(direct_loan_id, body.amount_cents, body.payment_method, body.transaction_reference)
    return DirectLoanSchema.model_validate(loan)
