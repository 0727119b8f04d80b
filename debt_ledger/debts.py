"""
Debt Module

Handles debt creation, schedule persistence, payment recording, replay of
payment history, overdue classification and portfolio summaries. This is the
caller of the schedule builder and the reconciler: it loads snapshots,
persists results atomically and serializes replays per debt.
"""

from decimal import Decimal
from datetime import datetime, timezone, timedelta, date
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple, Union
from contextlib import contextmanager
from zoneinfo import ZoneInfo
import threading
import uuid
import logging

from .money import ZERO, CENTS, floor_zero, to_decimal
from .models import (
    DebtTerms, DebtType, Installment, InstallmentStatus, PaymentEvent,
    ReconcileResult, ensure_aware
)
from .rates import RateLookup
from .schedule import build_schedule
from .reconcile import reconcile
from .storage import StorageInterface, StorageRecord
from .config import DebtLedgerConfig, get_config
from .logging_config import log_action
from .exceptions import (
    DebtLedgerError, DebtNotFoundError, InstallmentNotFoundError, InvalidPaymentError
)

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 300


@dataclass
class Debt(StorageRecord):
    """Debt with its terms; the schedule lives in the installments table"""
    title: str
    terms: DebtTerms
    debt_type: DebtType = DebtType.LOAN
    owner_id: Optional[str] = None
    is_closed: bool = False

    def __post_init__(self):
        if not self.title or not self.title.strip():
            raise DebtLedgerError("Debt title is required")
        self.debt_type = DebtType(self.debt_type)


@dataclass(frozen=True)
class InstallmentPage:
    """One page of a debt's installments with totals over every match"""
    items: List[Installment]
    page: int
    page_size: int
    total_items: int
    expected_total: Decimal
    paid_total: Decimal


@dataclass(frozen=True)
class DebtSummary:
    """Key figures of a single debt"""
    debt: Debt
    total_expected: Decimal
    total_paid: Decimal
    interest_paid: Decimal
    fees_paid: Decimal
    principal_paid: Decimal
    remaining_principal: Decimal
    overdue_count: int
    next_due: Optional[Installment]


@dataclass(frozen=True)
class DebtOverview:
    """Per-debt line of the portfolio dashboard"""
    debt_id: str
    title: str
    total_expected: Decimal
    total_paid: Decimal
    overdue_count: int
    remaining_principal: Decimal
    next_due: Optional[Installment]


@dataclass(frozen=True)
class UpcomingDue:
    """Open installment on the portfolio dashboard"""
    debt_id: str
    debt_title: str
    installment: Installment


@dataclass(frozen=True)
class DashboardSummary:
    """Portfolio-wide figures across every debt of an owner"""
    total_expected: Decimal
    total_paid: Decimal
    remaining_principal: Decimal
    overdue_count: int
    principal_paid: Decimal
    interest_paid: Decimal
    fees_paid: Decimal
    debts: List[DebtOverview] = field(default_factory=list)
    upcoming_dues: List[UpcomingDue] = field(default_factory=list)


OPEN_STATUSES = (InstallmentStatus.PENDING, InstallmentStatus.PARTIALLY_PAID)


def _sum(values: Iterable[Decimal]) -> Decimal:
    return CENTS.quantize(sum(values, ZERO))


class DebtManager:
    """
    Manages debts from creation through payment reconciliation
    """

    def __init__(
        self,
        storage: StorageInterface,
        config: Optional[DebtLedgerConfig] = None
    ):
        self.storage = storage
        self.config = config or get_config()

        self.debts_table = "debts"
        self.installments_table = "installments"
        self.payments_table = "payment_events"

        self._reference_tz = ZoneInfo(self.config.reference_timezone)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _debt_lock(self, debt_id: str):
        """Serialize every read-compute-write cycle of one debt"""
        with self._locks_guard:
            lock = self._locks.setdefault(debt_id, threading.RLock())
        with lock:
            yield

    def create_debt(
        self,
        title: str,
        terms: DebtTerms,
        debt_type: Union[DebtType, str] = DebtType.LOAN,
        owner_id: Optional[str] = None,
        rate_lookup: Optional[RateLookup] = None
    ) -> Tuple[Debt, List[Installment]]:
        """
        Create a debt and persist its projected schedule

        Args:
            title: Display name of the debt
            terms: Debt terms
            debt_type: Kind of debt
            owner_id: Owner used to scope listings and dashboards
            rate_lookup: Monthly rate per due date, required for indexed debts

        Returns:
            Created Debt and its installments
        """
        now = datetime.now(timezone.utc)
        debt = Debt(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            title=title,
            terms=terms,
            debt_type=debt_type,
            owner_id=owner_id,
        )

        schedule = build_schedule(
            terms,
            rate_lookup=rate_lookup,
            reference_tz=self._reference_tz,
            due_hour=self.config.due_date_hour,
            precision=self.config.calculation_precision,
        )
        installments = [
            replace(row, id=self._installment_id(debt.id, row.number), debt_id=debt.id)
            for row in schedule
        ]

        with self.storage.atomic():
            self.storage.save(self.debts_table, debt.id, self._debt_to_dict(debt))
            for installment in installments:
                self._save_installment(installment)

        log_action(
            logger, "info", "Debt created",
            debt_id=debt.id, action="create_debt", resource="debt",
            extra={
                "principal": CENTS.to_string(terms.principal),
                "amortization_system": terms.amortization_system.value,
                "term_months": terms.term_months,
            }
        )

        return debt, installments

    def record_payment(
        self,
        debt_id: str,
        amount: Union[Decimal, str, int],
        paid_at: Optional[Union[datetime, date]] = None,
        installment_id: Optional[str] = None,
        is_extra_amortization: bool = False,
        note: Optional[str] = None,
        interest_portion: Union[Decimal, str, int] = ZERO,
        principal_portion: Union[Decimal, str, int] = ZERO,
        fees_portion: Union[Decimal, str, int] = ZERO,
        penalty_portion: Union[Decimal, str, int] = ZERO
    ) -> Tuple[PaymentEvent, ReconcileResult]:
        """
        Append a payment event and replay the debt's history

        Args:
            debt_id: Debt receiving the payment
            amount: Amount paid, must be positive
            paid_at: When the money was received (defaults to now)
            installment_id: Installment the payer meant to settle
            is_extra_amortization: Leftover goes to principal instead of future installments
            note: Free text, up to 300 characters

        Returns:
            The stored event and the reconciliation result
        """
        try:
            amount = to_decimal(amount)
        except ValueError as e:
            raise InvalidPaymentError(str(e), {"debt_id": debt_id})
        if amount <= ZERO:
            raise InvalidPaymentError("Payment amount must be positive", {"amount": str(amount)})
        if note is not None and len(note) > MAX_NOTE_LENGTH:
            raise InvalidPaymentError(f"Note cannot exceed {MAX_NOTE_LENGTH} characters")

        with self._debt_lock(debt_id):
            self.require_debt(debt_id)

            if installment_id is not None:
                target = self.storage.load(self.installments_table, installment_id)
                if not target or target.get('debt_id') != debt_id:
                    raise InstallmentNotFoundError(installment_id, debt_id)

            sequence = len(self.storage.find(self.payments_table, {"debt_id": debt_id})) + 1
            event = PaymentEvent(
                id=f"{debt_id}_{sequence:08d}",
                debt_id=debt_id,
                amount=CENTS.quantize(amount),
                paid_at=ensure_aware(paid_at or datetime.now(timezone.utc)),
                installment_id=installment_id,
                is_extra_amortization=is_extra_amortization,
                interest_portion=interest_portion,
                principal_portion=principal_portion,
                fees_portion=fees_portion,
                penalty_portion=penalty_portion,
                note=note,
            )

            with self.storage.atomic():
                self.storage.save(self.payments_table, event.id, self._event_to_dict(event))
                result = self.reconcile_debt(debt_id)

        log_action(
            logger, "info", "Payment recorded",
            debt_id=debt_id, action="record_payment", resource="payment_event",
            extra={
                "payment_id": event.id,
                "amount": CENTS.to_string(event.amount),
                "is_extra_amortization": is_extra_amortization,
                "remaining_principal": CENTS.to_string(result.remaining_principal),
            }
        )

        return event, result

    def reconcile_debt(self, debt_id: str) -> ReconcileResult:
        """
        Recompute every installment of a debt from its full payment history

        Args:
            debt_id: Debt to reconcile

        Returns:
            ReconcileResult; the recomputed rows are persisted in one transaction
        """
        with self._debt_lock(debt_id):
            debt = self.require_debt(debt_id)
            installments = self.get_installments(debt_id)
            events = self.get_payment_events(debt_id)

            result = reconcile(
                debt_id,
                debt.terms.principal,
                installments,
                events,
                precision=self.config.calculation_precision,
            )

            with self.storage.atomic():
                for installment in result.installments:
                    self._save_installment(installment)
                debt.updated_at = datetime.now(timezone.utc)
                self.storage.save(self.debts_table, debt.id, self._debt_to_dict(debt))

        logger.debug("Reconciled %d installments of debt %s", result.updated_count, debt_id)
        return result

    def mark_overdue(self, debt_id: str, as_of: Optional[Union[datetime, date]] = None) -> int:
        """
        Flag open installments whose due date has passed

        An installment is overdue when it is not fully paid and its due date
        plus the configured grace days is before ``as_of``.

        Returns:
            Number of installments newly flagged
        """
        as_of = ensure_aware(as_of or datetime.now(timezone.utc))
        grace = timedelta(days=self.config.overdue_grace_days)

        with self._debt_lock(debt_id):
            self.require_debt(debt_id)
            flagged = [
                replace(installment, status=InstallmentStatus.OVERDUE)
                for installment in self.get_installments(debt_id)
                if installment.status in OPEN_STATUSES
                and not installment.is_fully_paid
                and installment.due_date + grace < as_of
            ]

            with self.storage.atomic():
                for installment in flagged:
                    self._save_installment(installment)

        if flagged:
            log_action(
                logger, "info", "Installments flagged overdue",
                debt_id=debt_id, action="mark_overdue", resource="installment",
                extra={"count": len(flagged), "as_of": as_of.isoformat()}
            )
        return len(flagged)

    def get_debt(self, debt_id: str) -> Optional[Debt]:
        """Get debt by ID"""
        debt_dict = self.storage.load(self.debts_table, debt_id)
        if debt_dict:
            return self._debt_from_dict(debt_dict)
        return None

    def list_debts(self, owner_id: Optional[str] = None) -> List[Debt]:
        """Get all debts, optionally only those of one owner"""
        filters = {"owner_id": owner_id} if owner_id is not None else {}
        debts = [self._debt_from_dict(data) for data in self.storage.find(self.debts_table, filters)]
        debts.sort(key=lambda d: d.created_at)
        return debts

    def delete_debt(self, debt_id: str) -> None:
        """Delete a debt with its installments and payment events"""
        with self._debt_lock(debt_id):
            self.require_debt(debt_id)
            with self.storage.atomic():
                for data in self.storage.find(self.payments_table, {"debt_id": debt_id}):
                    self.storage.delete(self.payments_table, data['id'])
                for data in self.storage.find(self.installments_table, {"debt_id": debt_id}):
                    self.storage.delete(self.installments_table, data['id'])
                self.storage.delete(self.debts_table, debt_id)

        with self._locks_guard:
            self._locks.pop(debt_id, None)

        log_action(logger, "info", "Debt deleted", debt_id=debt_id, action="delete_debt", resource="debt")

    def get_installment(self, installment_id: str) -> Installment:
        """Get installment by ID"""
        data = self.storage.load(self.installments_table, installment_id)
        if not data:
            raise InstallmentNotFoundError(installment_id)
        return self._installment_from_dict(data)

    def get_installments(self, debt_id: str) -> List[Installment]:
        """Get the schedule of a debt, ordered by installment number"""
        rows = self.storage.find(self.installments_table, {"debt_id": debt_id})
        installments = [self._installment_from_dict(data) for data in rows]
        installments.sort(key=lambda i: i.number)
        return installments

    def get_payment_events(self, debt_id: str) -> List[PaymentEvent]:
        """Get payment history of a debt in replay order"""
        rows = self.storage.find(self.payments_table, {"debt_id": debt_id})
        events = [self._event_from_dict(data) for data in rows]
        events.sort(key=lambda e: e.replay_key)
        return events

    def list_installments(
        self,
        debt_id: str,
        statuses: Optional[Iterable[Union[InstallmentStatus, str]]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        order: str = "asc"
    ) -> InstallmentPage:
        """
        Page through a debt's installments

        Args:
            debt_id: Debt whose installments are listed
            statuses: Keep only installments in these statuses
            page: 1-based page number
            page_size: Items per page (defaults to configuration)
            order: "asc" or "desc" by installment number

        Returns:
            InstallmentPage with expected/paid totals over every matching row
        """
        page_size = page_size or self.config.default_page_size
        if page < 1:
            raise DebtLedgerError("Page must be at least 1", {"page": page})
        if not 1 <= page_size <= self.config.max_page_size:
            raise DebtLedgerError(
                f"Page size must be between 1 and {self.config.max_page_size}",
                {"page_size": page_size}
            )
        if order not in ("asc", "desc"):
            raise DebtLedgerError("Order must be 'asc' or 'desc'", {"order": order})

        self.require_debt(debt_id)
        wanted = {InstallmentStatus(s) for s in statuses} if statuses else None

        matching = [
            installment for installment in self.get_installments(debt_id)
            if wanted is None or installment.status in wanted
        ]
        if order == "desc":
            matching.reverse()

        offset = (page - 1) * page_size
        return InstallmentPage(
            items=matching[offset:offset + page_size],
            page=page,
            page_size=page_size,
            total_items=len(matching),
            expected_total=_sum(i.expected_total for i in matching),
            paid_total=_sum(i.paid_total for i in matching),
        )

    def get_summary(self, debt_id: str) -> DebtSummary:
        """Key figures of one debt as of its last reconciliation"""
        debt = self.require_debt(debt_id)
        installments = self.get_installments(debt_id)

        return DebtSummary(
            debt=debt,
            total_expected=_sum(i.expected_total for i in installments),
            total_paid=_sum(i.paid_total for i in installments),
            interest_paid=_sum(i.paid_interest for i in installments),
            fees_paid=_sum(i.paid_fees for i in installments),
            principal_paid=_sum(i.paid_principal for i in installments),
            remaining_principal=self._remaining_principal(debt, installments),
            overdue_count=sum(1 for i in installments if i.status == InstallmentStatus.OVERDUE),
            next_due=self._next_due(installments),
        )

    def get_dashboard(
        self,
        owner_id: Optional[str] = None,
        debt_limit: Optional[int] = None,
        upcoming_limit: Optional[int] = None
    ) -> DashboardSummary:
        """
        Portfolio figures across debts

        Debts are ordered by remaining principal, largest first; upcoming
        dues are the earliest open installments across all debts.
        """
        debt_limit = debt_limit if debt_limit is not None else self.config.dashboard_debt_limit
        upcoming_limit = upcoming_limit if upcoming_limit is not None else self.config.dashboard_upcoming_limit

        overviews: List[DebtOverview] = []
        upcoming: List[UpcomingDue] = []
        all_installments: List[Installment] = []

        for debt in self.list_debts(owner_id):
            installments = self.get_installments(debt.id)
            all_installments.extend(installments)
            overviews.append(DebtOverview(
                debt_id=debt.id,
                title=debt.title,
                total_expected=_sum(i.expected_total for i in installments),
                total_paid=_sum(i.paid_total for i in installments),
                overdue_count=sum(1 for i in installments if i.status == InstallmentStatus.OVERDUE),
                remaining_principal=self._remaining_principal(debt, installments),
                next_due=self._next_due(installments),
            ))
            upcoming.extend(
                UpcomingDue(debt_id=debt.id, debt_title=debt.title, installment=i)
                for i in installments if i.status in OPEN_STATUSES
            )

        remaining = _sum(o.remaining_principal for o in overviews)
        overviews.sort(key=lambda o: o.remaining_principal, reverse=True)
        upcoming.sort(key=lambda u: (u.installment.due_date, u.debt_id, u.installment.number))

        return DashboardSummary(
            total_expected=_sum(i.expected_total for i in all_installments),
            total_paid=_sum(i.paid_total for i in all_installments),
            remaining_principal=remaining,
            overdue_count=sum(1 for i in all_installments if i.status == InstallmentStatus.OVERDUE),
            principal_paid=_sum(i.paid_principal for i in all_installments),
            interest_paid=_sum(i.paid_interest for i in all_installments),
            fees_paid=_sum(i.paid_fees for i in all_installments),
            debts=overviews[:debt_limit] if debt_limit > 0 else overviews,
            upcoming_dues=upcoming[:upcoming_limit],
        )

    def require_debt(self, debt_id: str) -> Debt:
        """Get debt by ID, raising DebtNotFoundError when missing"""
        debt = self.get_debt(debt_id)
        if not debt:
            raise DebtNotFoundError(debt_id)
        return debt

    def _remaining_principal(self, debt: Debt, installments: List[Installment]) -> Decimal:
        """Principal left after what was actually paid, never the projection"""
        paid = _sum(i.paid_principal + i.extra_principal_paid for i in installments)
        return CENTS.quantize(floor_zero(debt.terms.principal - paid))

    def _next_due(self, installments: List[Installment]) -> Optional[Installment]:
        for installment in installments:
            if installment.status in OPEN_STATUSES:
                return installment
        return None

    def _installment_id(self, debt_id: str, number: int) -> str:
        return f"{debt_id}_{number}"

    def _save_installment(self, installment: Installment) -> None:
        self.storage.save(self.installments_table, installment.id, self._installment_to_dict(installment))

    def _debt_to_dict(self, debt: Debt) -> Dict:
        """Convert debt to dictionary"""
        terms = debt.terms
        return {
            'id': debt.id,
            'created_at': debt.created_at.isoformat(),
            'updated_at': debt.updated_at.isoformat(),
            'title': debt.title,
            'debt_type': debt.debt_type.value,
            'owner_id': debt.owner_id,
            'is_closed': debt.is_closed,
            'terms': {
                'principal': str(terms.principal),
                'rate_type': terms.rate_type.value,
                'nominal_rate': str(terms.nominal_rate) if terms.nominal_rate is not None else None,
                'spread_rate': str(terms.spread_rate) if terms.spread_rate is not None else None,
                'amortization_system': terms.amortization_system.value,
                'term_months': terms.term_months,
                'payment_day': terms.payment_day,
                'start_date': terms.start_date.isoformat(),
                'grace_months': terms.grace_months,
                'monthly_fees': str(terms.monthly_fees),
            }
        }

    def _debt_from_dict(self, data: Dict) -> Debt:
        """Convert dictionary to debt"""
        terms_data = data['terms']
        start = terms_data['start_date']
        start_date = datetime.fromisoformat(start) if 'T' in start else date.fromisoformat(start)

        terms = DebtTerms(
            principal=Decimal(terms_data['principal']),
            rate_type=terms_data['rate_type'],
            nominal_rate=Decimal(terms_data['nominal_rate']) if terms_data.get('nominal_rate') else None,
            spread_rate=Decimal(terms_data['spread_rate']) if terms_data.get('spread_rate') else None,
            amortization_system=terms_data['amortization_system'],
            term_months=terms_data['term_months'],
            payment_day=terms_data.get('payment_day'),
            start_date=start_date,
            grace_months=terms_data.get('grace_months', 0),
            monthly_fees=Decimal(terms_data.get('monthly_fees', '0')),
        )

        return Debt(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            title=data['title'],
            terms=terms,
            debt_type=DebtType(data.get('debt_type', DebtType.LOAN.value)),
            owner_id=data.get('owner_id'),
            is_closed=data.get('is_closed', False),
        )

    def _installment_to_dict(self, installment: Installment) -> Dict:
        """Convert installment to dictionary"""
        return {
            'id': installment.id,
            'debt_id': installment.debt_id,
            'number': installment.number,
            'due_date': installment.due_date.isoformat(),
            'expected_interest': str(installment.expected_interest),
            'expected_principal': str(installment.expected_principal),
            'expected_fees': str(installment.expected_fees),
            'expected_total': str(installment.expected_total),
            'paid_interest': str(installment.paid_interest),
            'paid_principal': str(installment.paid_principal),
            'paid_fees': str(installment.paid_fees),
            'paid_total': str(installment.paid_total),
            'extra_principal_paid': str(installment.extra_principal_paid),
            'remaining_principal_after': str(installment.remaining_principal_after),
            'status': installment.status.value,
        }

    def _installment_from_dict(self, data: Dict) -> Installment:
        """Convert dictionary to installment"""
        return Installment(
            id=data['id'],
            debt_id=data['debt_id'],
            number=data['number'],
            due_date=datetime.fromisoformat(data['due_date']),
            expected_interest=to_decimal(data['expected_interest']),
            expected_principal=to_decimal(data['expected_principal']),
            expected_fees=to_decimal(data['expected_fees']),
            expected_total=to_decimal(data['expected_total']),
            paid_interest=to_decimal(data.get('paid_interest')),
            paid_principal=to_decimal(data.get('paid_principal')),
            paid_fees=to_decimal(data.get('paid_fees')),
            paid_total=to_decimal(data.get('paid_total')),
            extra_principal_paid=to_decimal(data.get('extra_principal_paid')),
            remaining_principal_after=to_decimal(data.get('remaining_principal_after')),
            status=InstallmentStatus(data.get('status', InstallmentStatus.PENDING.value)),
        )

    def _event_to_dict(self, event: PaymentEvent) -> Dict:
        """Convert payment event to dictionary"""
        return {
            'id': event.id,
            'debt_id': event.debt_id,
            'installment_id': event.installment_id,
            'amount': str(event.amount),
            'paid_at': event.paid_at.isoformat(),
            'is_extra_amortization': event.is_extra_amortization,
            'interest_portion': str(event.interest_portion),
            'principal_portion': str(event.principal_portion),
            'fees_portion': str(event.fees_portion),
            'penalty_portion': str(event.penalty_portion),
            'note': event.note,
        }

    def _event_from_dict(self, data: Dict) -> PaymentEvent:
        """Convert dictionary to payment event"""
        return PaymentEvent(
            id=data['id'],
            debt_id=data['debt_id'],
            installment_id=data.get('installment_id'),
            amount=Decimal(data['amount']),
            paid_at=datetime.fromisoformat(data['paid_at']),
            is_extra_amortization=data.get('is_extra_amortization', False),
            interest_portion=to_decimal(data.get('interest_portion')),
            principal_portion=to_decimal(data.get('principal_portion')),
            fees_portion=to_decimal(data.get('fees_portion')),
            penalty_portion=to_decimal(data.get('penalty_portion')),
            note=data.get('note'),
        )
