"""
Debt endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Response, status

from .dependencies import get_manager, http_error
from .schemas import (
    CreateDebtRequest, OverdueRequest, debt_to_response, installment_to_response,
    parse_moment, summary_to_response
)
from ..debts import DebtManager
from ..exceptions import DebtNotFoundError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_debt(
    request: CreateDebtRequest,
    manager: DebtManager = Depends(get_manager)
):
    """Create a debt and project its schedule"""
    try:
        debt, installments = manager.create_debt(
            title=request.title,
            terms=request.terms.to_debt_terms(),
            debt_type=request.debt_type,
            owner_id=request.owner_id,
            rate_lookup=request.terms.to_rate_lookup()
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "debt": debt_to_response(debt),
        "installments": [installment_to_response(i) for i in installments],
        "message": "Debt created successfully"
    }


@router.get("")
async def list_debts(
    owner_id: Optional[str] = None,
    manager: DebtManager = Depends(get_manager)
):
    """List debts, optionally of one owner"""
    return {"debts": [debt_to_response(d) for d in manager.list_debts(owner_id)]}


@router.get("/{debt_id}")
async def get_debt(
    debt_id: str,
    manager: DebtManager = Depends(get_manager)
):
    """Get debt details"""
    debt = manager.get_debt(debt_id)
    if not debt:
        raise http_error(DebtNotFoundError(debt_id))
    return debt_to_response(debt)


@router.delete("/{debt_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_debt(
    debt_id: str,
    manager: DebtManager = Depends(get_manager)
):
    """Delete a debt with its schedule and payment history"""
    try:
        manager.delete_debt(debt_id)
    except ValueError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{debt_id}/summary")
async def get_debt_summary(
    debt_id: str,
    manager: DebtManager = Depends(get_manager)
):
    """Key figures of one debt"""
    try:
        return summary_to_response(manager.get_summary(debt_id))
    except ValueError as e:
        raise http_error(e)


@router.post("/{debt_id}/reconcile")
async def reconcile_debt(
    debt_id: str,
    manager: DebtManager = Depends(get_manager)
):
    """Replay the payment history of a debt"""
    try:
        result = manager.reconcile_debt(debt_id)
    except ValueError as e:
        raise http_error(e)
    return result.to_dict()


@router.post("/{debt_id}/overdue")
async def mark_overdue(
    debt_id: str,
    request: Optional[OverdueRequest] = None,
    manager: DebtManager = Depends(get_manager)
):
    """Flag installments past their due date"""
    try:
        as_of = parse_moment(request.as_of) if request and request.as_of else None
        flagged = manager.mark_overdue(debt_id, as_of)
    except ValueError as e:
        raise http_error(e)
    return {"debt_id": debt_id, "flagged": flagged}
