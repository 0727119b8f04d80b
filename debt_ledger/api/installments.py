"""
Installment endpoints
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from .dependencies import get_manager, http_error
from .schemas import installment_to_response, page_to_response
from ..debts import DebtManager


router = APIRouter()


@router.get("")
async def list_installments(
    debt_id: str,
    status: Optional[List[str]] = Query(None),
    page: int = 1,
    page_size: Optional[int] = None,
    order: str = "asc",
    manager: DebtManager = Depends(get_manager)
):
    """Page through the installments of a debt"""
    try:
        result = manager.list_installments(
            debt_id,
            statuses=status,
            page=page,
            page_size=page_size,
            order=order
        )
    except ValueError as e:
        raise http_error(e)
    return page_to_response(result)


@router.get("/{installment_id}")
async def get_installment(installment_id: str, manager: DebtManager = Depends(get_manager)):
    """Get a single installment"""
    try:
        installment = manager.get_installment(installment_id)
    except ValueError as e:
        raise http_error(e)
    return installment_to_response(installment)
