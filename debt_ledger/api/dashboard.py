"""
Dashboard endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .dependencies import get_manager
from .schemas import dashboard_to_response
from ..debts import DebtManager


router = APIRouter()


@router.get("/summary")
async def get_dashboard_summary(
    owner_id: Optional[str] = None,
    debt_limit: Optional[int] = None,
    upcoming_limit: Optional[int] = None,
    manager: DebtManager = Depends(get_manager)
):
    """Portfolio figures across debts"""
    dashboard = manager.get_dashboard(
        owner_id=owner_id,
        debt_limit=debt_limit,
        upcoming_limit=upcoming_limit
    )
    return dashboard_to_response(dashboard)
