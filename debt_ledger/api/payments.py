"""
Payment endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_manager, http_error
from .schemas import PaymentRequest, parse_moment, payment_to_response
from ..debts import DebtManager


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_payment(
    request: PaymentRequest,
    manager: DebtManager = Depends(get_manager)
):
    """Record a payment and reconcile the debt"""
    try:
        event, result = manager.record_payment(
            debt_id=request.debt_id,
            amount=request.amount,
            paid_at=parse_moment(request.paid_at) if request.paid_at else None,
            installment_id=request.installment_id,
            is_extra_amortization=request.is_extra_amortization,
            note=request.note,
            interest_portion=request.interest_portion,
            principal_portion=request.principal_portion,
            fees_portion=request.fees_portion,
            penalty_portion=request.penalty_portion
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "payment": payment_to_response(event),
        "reconciliation": result.to_dict(),
        "message": "Payment recorded successfully"
    }


@router.get("")
async def list_payments(
    debt_id: str,
    manager: DebtManager = Depends(get_manager)
):
    """Payment history of a debt in replay order"""
    try:
        manager.require_debt(debt_id)
    except ValueError as e:
        raise http_error(e)
    return {"payments": [payment_to_response(e) for e in manager.get_payment_events(debt_id)]}
