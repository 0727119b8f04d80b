"""
Debt Ledger Data Model

Debt terms, schedule installments and payment events. Installments and
events are immutable; the reconciler produces new installment instances
instead of mutating the ones it was given.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple, Union
from enum import Enum

from .money import ZERO, CENTS, to_decimal
from .exceptions import InvalidTermsError, InvalidPaymentError


class RateType(Enum):
    """How the nominal rate of a debt is expressed"""
    FIXED_NOMINAL_YEAR = "fixed_nominal_year"      # Annual nominal, compounded to monthly
    FIXED_NOMINAL_MONTH = "fixed_nominal_month"    # Monthly nominal, used as is
    INDEXED_VARIABLE = "indexed_variable"          # External index + spread, resolved by caller


class AmortizationSystem(Enum):
    """Amortization conventions"""
    PRICE = "PRICE"    # Constant installment (annuity)
    SAC = "SAC"        # Constant principal portion


class InstallmentStatus(Enum):
    """Installment payment states"""
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"                # Time-based, set outside the reconciler


class DebtType(Enum):
    """Kinds of debt tracked by the ledger"""
    LOAN = "loan"
    FINANCING = "financing"
    STUDENT = "student"
    CREDIT_CARD = "credit_card"
    OTHER = "other"


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidTermsError(f"Invalid {field_name} '{value}', expected one of: {allowed}")


def ensure_aware(moment: Union[datetime, date]) -> datetime:
    """Promote dates and naive datetimes to UTC-aware datetimes"""
    if not isinstance(moment, datetime):
        return datetime(moment.year, moment.month, moment.day, tzinfo=timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass(frozen=True)
class DebtTerms:
    """Terms of a debt, immutable once the debt is created"""
    principal: Decimal
    rate_type: RateType
    amortization_system: AmortizationSystem
    term_months: int
    start_date: Union[date, datetime]
    nominal_rate: Optional[Decimal] = None    # e.g. 0.145 for 14.5%
    spread_rate: Optional[Decimal] = None     # markup over an external index
    payment_day: Optional[int] = None         # 1..28
    grace_months: int = 0
    monthly_fees: Decimal = ZERO

    def __post_init__(self):
        object.__setattr__(self, 'rate_type', _coerce_enum(RateType, self.rate_type, "rate type"))
        object.__setattr__(
            self, 'amortization_system',
            _coerce_enum(AmortizationSystem, self.amortization_system, "amortization system")
        )
        try:
            object.__setattr__(self, 'principal', to_decimal(self.principal))
            object.__setattr__(self, 'monthly_fees', to_decimal(self.monthly_fees))
            if self.nominal_rate is not None:
                object.__setattr__(self, 'nominal_rate', to_decimal(self.nominal_rate))
            if self.spread_rate is not None:
                object.__setattr__(self, 'spread_rate', to_decimal(self.spread_rate))
        except ValueError as e:
            raise InvalidTermsError(str(e))

        self.validate()

    def validate(self) -> None:
        """Reject terms that cannot produce a schedule"""
        if self.principal <= ZERO:
            raise InvalidTermsError("Principal must be positive", {"principal": str(self.principal)})
        if isinstance(self.term_months, bool) or not isinstance(self.term_months, int) or self.term_months <= 0:
            raise InvalidTermsError("Term must be a positive number of months", {"term_months": self.term_months})
        if self.grace_months < 0:
            raise InvalidTermsError("Grace months cannot be negative", {"grace_months": self.grace_months})
        if self.monthly_fees < ZERO:
            raise InvalidTermsError("Monthly fees cannot be negative", {"monthly_fees": str(self.monthly_fees)})
        if self.payment_day is not None and not 1 <= self.payment_day <= 28:
            raise InvalidTermsError("Payment day must be between 1 and 28", {"payment_day": self.payment_day})
        if self.nominal_rate is not None and self.nominal_rate < ZERO:
            raise InvalidTermsError("Nominal rate cannot be negative", {"nominal_rate": str(self.nominal_rate)})
        if self.spread_rate is not None and self.spread_rate < ZERO:
            raise InvalidTermsError("Spread rate cannot be negative", {"spread_rate": str(self.spread_rate)})

    @property
    def is_indexed(self) -> bool:
        return self.rate_type == RateType.INDEXED_VARIABLE


@dataclass(frozen=True)
class Installment:
    """Single schedule position with its expected and paid amounts"""
    number: int
    due_date: datetime

    # Expected amounts, fixed when the schedule is built
    expected_interest: Decimal
    expected_principal: Decimal
    expected_fees: Decimal
    expected_total: Decimal

    # Paid amounts, recomputed on every reconciliation
    paid_interest: Decimal = ZERO
    paid_principal: Decimal = ZERO
    paid_fees: Decimal = ZERO
    paid_total: Decimal = ZERO
    extra_principal_paid: Decimal = ZERO

    remaining_principal_after: Decimal = ZERO
    status: InstallmentStatus = InstallmentStatus.PENDING

    id: Optional[str] = None
    debt_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'status', InstallmentStatus(self.status))

    @property
    def is_fully_paid(self) -> bool:
        """Every bucket meets or exceeds its expected counterpart"""
        return (
            self.paid_fees >= self.expected_fees
            and self.paid_interest >= self.expected_interest
            and self.paid_principal >= self.expected_principal
        )

    @property
    def outstanding_fees(self) -> Decimal:
        return max(ZERO, self.expected_fees - self.paid_fees)

    @property
    def outstanding_interest(self) -> Decimal:
        return max(ZERO, self.expected_interest - self.paid_interest)

    @property
    def outstanding_principal(self) -> Decimal:
        return max(ZERO, self.expected_principal - self.paid_principal)

    def cleared(self) -> 'Installment':
        """Copy with paid amounts zeroed; overdue survives, anything else becomes pending"""
        status = InstallmentStatus.OVERDUE if self.status == InstallmentStatus.OVERDUE else InstallmentStatus.PENDING
        return replace(
            self,
            paid_interest=ZERO,
            paid_principal=ZERO,
            paid_fees=ZERO,
            paid_total=ZERO,
            extra_principal_paid=ZERO,
            status=status,
        )


@dataclass(frozen=True)
class PaymentEvent:
    """Append-only record of money received against a debt"""
    id: str
    debt_id: str
    amount: Decimal
    paid_at: datetime
    installment_id: Optional[str] = None
    is_extra_amortization: bool = False

    # Informational breakdown supplied by the payer; never used for allocation
    interest_portion: Decimal = ZERO
    principal_portion: Decimal = ZERO
    fees_portion: Decimal = ZERO
    penalty_portion: Decimal = ZERO

    note: Optional[str] = None

    def __post_init__(self):
        try:
            object.__setattr__(self, 'amount', to_decimal(self.amount))
            for name in ('interest_portion', 'principal_portion', 'fees_portion', 'penalty_portion'):
                object.__setattr__(self, name, to_decimal(getattr(self, name)))
        except ValueError as e:
            raise InvalidPaymentError(str(e), {"payment_id": self.id})
        object.__setattr__(self, 'paid_at', ensure_aware(self.paid_at))

    @property
    def replay_key(self) -> Tuple[datetime, Any]:
        """Total order used to replay events"""
        return (self.paid_at, self.id)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of replaying a debt's payment history"""
    debt_id: str
    installments: Tuple[Installment, ...]
    remaining_principal: Decimal
    extra_amortization: Decimal = ZERO   # Applied directly to principal
    absorbed_excess: Decimal = ZERO      # Received but attached to nothing

    @property
    def updated_count(self) -> int:
        return len(self.installments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "debt_id": self.debt_id,
            "updated_count": self.updated_count,
            "remaining_principal": CENTS.to_string(self.remaining_principal),
            "extra_amortization": CENTS.to_string(self.extra_amortization),
            "absorbed_excess": CENTS.to_string(self.absorbed_excess),
        }
