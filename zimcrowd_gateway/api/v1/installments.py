"""/v1/installments - Repayment schedules and borrower payments"""

import uuid
from fastapi import APIRouter, BackgroundTasks, Depends

from zimcrowd_gateway.api.dependencies import (
    get_current_user_id,
    get_notification_client,
    get_repayment_service,
)
from zimcrowd_gateway.api.v1.schemas import InstallmentSchema, PaymentReceiptSchema, ScheduleResponse
from zimcrowd_gateway.domain.models import NotificationEvent
from zimcrowd_gateway.infrastructure.clients.notifications import NotificationClient
from zimcrowd_gateway.services.repayments import RepaymentService

router = APIRouter()


@router.get("/installments/loans/{loan_id}", response_model=ScheduleResponse)
def get_schedule(loan_id: uuid.UUID, service: RepaymentService = Depends(get_repayment_service)):
    """
    Every installment of a loan, grouped by holding and ordered by number.

    Raises 404 when the loan does not exist.
    """
    loan = service.get_loan(loan_id)
    return ScheduleResponse(
        loan_id=loan.id,
        loan_status=loan.status,
        installments=[InstallmentSchema.model_validate(i) for i in service.get_schedule(loan.id)],
    )


@router.post("/installments/{installment_id}/pay", response_model=PaymentReceiptSchema)
def pay_installment(
    installment_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    service: RepaymentService = Depends(get_repayment_service),
    notifier: NotificationClient = Depends(get_notification_client),
):
    receipt = service.pay_installment(user_id, installment_id)
    if receipt.holding_closed:
        background_tasks.add_task(
            notifier.notify,
            receipt.lender_id,
            NotificationEvent.INVESTMENT_MATURED,
            {"holding_id": str(receipt.holding_id), "installment_id": str(receipt.installment_id)},
        )
    return PaymentReceiptSchema.model_validate(receipt)
