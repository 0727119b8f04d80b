"""
Pydantic schemas for API requests and responses
"""

from datetime import date, datetime
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, Field

from ..money import money_to_string, to_decimal
from ..models import DebtTerms, Installment, PaymentEvent
from ..rates import RateLookup, index_plus_spread
from ..debts import Debt, DebtSummary, DashboardSummary, DebtOverview, InstallmentPage


def parse_moment(value: str) -> Union[date, datetime]:
    """ISO date or datetime string"""
    if "T" in value:
        return datetime.fromisoformat(value)
    return date.fromisoformat(value)


# Debt schemas
class DebtTermsModel(BaseModel):
    principal: str = Field(..., description="Decimal amount as string")
    rate_type: str = Field(..., description="fixed_nominal_year, fixed_nominal_month or indexed_variable")
    amortization_system: str = Field(..., description="PRICE or SAC")
    term_months: int
    start_date: str  # ISO date string
    nominal_rate: Optional[str] = None  # Decimal as string, e.g. "0.12"
    spread_rate: Optional[str] = None
    payment_day: Optional[int] = None
    grace_months: int = 0
    monthly_fees: str = "0"
    index_rate: Optional[str] = Field(None, description="Monthly index rate for indexed debts")

    def to_debt_terms(self) -> DebtTerms:
        return DebtTerms(
            principal=self.principal,
            rate_type=self.rate_type,
            amortization_system=self.amortization_system,
            term_months=self.term_months,
            start_date=parse_moment(self.start_date),
            nominal_rate=self.nominal_rate,
            spread_rate=self.spread_rate,
            payment_day=self.payment_day,
            grace_months=self.grace_months,
            monthly_fees=self.monthly_fees,
        )

    def to_rate_lookup(self) -> Optional[RateLookup]:
        if self.index_rate is None:
            return None
        return index_plus_spread(to_decimal(self.index_rate), to_decimal(self.spread_rate))


class CreateDebtRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    debt_type: str = "loan"
    owner_id: Optional[str] = None
    terms: DebtTermsModel


# Payment schemas
class PaymentRequest(BaseModel):
    debt_id: str
    amount: str = Field(..., description="Decimal amount as string")
    paid_at: Optional[str] = None  # ISO date or datetime string
    installment_id: Optional[str] = None
    is_extra_amortization: bool = False
    note: Optional[str] = Field(None, max_length=300)
    interest_portion: str = "0"
    principal_portion: str = "0"
    fees_portion: str = "0"
    penalty_portion: str = "0"


class OverdueRequest(BaseModel):
    as_of: Optional[str] = None  # ISO date or datetime string


def money(value) -> str:
    return money_to_string(value)


def installment_to_response(installment: Installment) -> Dict[str, Any]:
    return {
        "id": installment.id,
        "debt_id": installment.debt_id,
        "number": installment.number,
        "due_date": installment.due_date.isoformat(),
        "expected_interest": money(installment.expected_interest),
        "expected_principal": money(installment.expected_principal),
        "expected_fees": money(installment.expected_fees),
        "expected_total": money(installment.expected_total),
        "paid_interest": money(installment.paid_interest),
        "paid_principal": money(installment.paid_principal),
        "paid_fees": money(installment.paid_fees),
        "paid_total": money(installment.paid_total),
        "extra_principal_paid": money(installment.extra_principal_paid),
        "remaining_principal_after": money(installment.remaining_principal_after),
        "status": installment.status.value,
    }


def debt_to_response(debt: Debt) -> Dict[str, Any]:
    terms = debt.terms
    return {
        "id": debt.id,
        "title": debt.title,
        "debt_type": debt.debt_type.value,
        "owner_id": debt.owner_id,
        "is_closed": debt.is_closed,
        "created_at": debt.created_at.isoformat(),
        "terms": {
            "principal": money(terms.principal),
            "rate_type": terms.rate_type.value,
            "nominal_rate": str(terms.nominal_rate) if terms.nominal_rate is not None else None,
            "spread_rate": str(terms.spread_rate) if terms.spread_rate is not None else None,
            "amortization_system": terms.amortization_system.value,
            "term_months": terms.term_months,
            "payment_day": terms.payment_day,
            "start_date": terms.start_date.isoformat(),
            "grace_months": terms.grace_months,
            "monthly_fees": money(terms.monthly_fees),
        },
    }


def payment_to_response(event: PaymentEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "debt_id": event.debt_id,
        "installment_id": event.installment_id,
        "amount": money(event.amount),
        "paid_at": event.paid_at.isoformat(),
        "is_extra_amortization": event.is_extra_amortization,
        "note": event.note,
    }


def page_to_response(page: InstallmentPage) -> Dict[str, Any]:
    return {
        "items": [installment_to_response(i) for i in page.items],
        "page": page.page,
        "page_size": page.page_size,
        "total_items": page.total_items,
        "expected_total": money(page.expected_total),
        "paid_total": money(page.paid_total),
    }


def summary_to_response(summary: DebtSummary) -> Dict[str, Any]:
    return {
        "debt": debt_to_response(summary.debt),
        "total_expected": money(summary.total_expected),
        "total_paid": money(summary.total_paid),
        "interest_paid": money(summary.interest_paid),
        "fees_paid": money(summary.fees_paid),
        "principal_paid": money(summary.principal_paid),
        "remaining_principal": money(summary.remaining_principal),
        "overdue_count": summary.overdue_count,
        "next_due": installment_to_response(summary.next_due) if summary.next_due else None,
    }


def overview_to_response(overview: DebtOverview) -> Dict[str, Any]:
    return {
        "debt_id": overview.debt_id,
        "title": overview.title,
        "total_expected": money(overview.total_expected),
        "total_paid": money(overview.total_paid),
        "overdue_count": overview.overdue_count,
        "remaining_principal": money(overview.remaining_principal),
        "next_due": installment_to_response(overview.next_due) if overview.next_due else None,
    }


def dashboard_to_response(dashboard: DashboardSummary) -> Dict[str, Any]:
    return {
        "kpis": {
            "total_expected": money(dashboard.total_expected),
            "total_paid": money(dashboard.total_paid),
            "remaining_principal": money(dashboard.remaining_principal),
            "overdue_count": dashboard.overdue_count,
        },
        "paid_breakdown": {
            "principal": money(dashboard.principal_paid),
            "interest": money(dashboard.interest_paid),
            "fees": money(dashboard.fees_paid),
        },
        "debts": [overview_to_response(o) for o in dashboard.debts],
        "upcoming_dues": [
            {
                "debt_id": due.debt_id,
                "debt_title": due.debt_title,
                **installment_to_response(due.installment),
            }
            for due in dashboard.upcoming_dues
        ],
    }
