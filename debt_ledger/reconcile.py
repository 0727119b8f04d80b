"""
Ledger Reconciler Module

Replays the complete payment history of a debt against its schedule and
produces the paid amounts, status and remaining principal of every
installment. The replay is a pure function of its inputs: the same
installments and events always produce the same result, however many times
it runs. Callers must serialize replays per debt.
"""

from decimal import Decimal
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from .money import ZERO, CENTS, DEFAULT_PRECISION, floor_zero, full_precision, to_decimal
from .models import Installment, InstallmentStatus, PaymentEvent, ReconcileResult
from .exceptions import DebtNotFoundError, InvalidPaymentError

logger = logging.getLogger(__name__)


# Buckets in waterfall order; never reorder
WATERFALL = (
    ("paid_fees", "outstanding_fees"),
    ("paid_interest", "outstanding_interest"),
    ("paid_principal", "outstanding_principal"),
)


@dataclass(frozen=True)
class Allocation:
    """Result of applying an amount to one installment"""
    installment: Installment
    remainder: Decimal


def derive_status(installment: Installment) -> InstallmentStatus:
    """
    Status after an allocation: paid when every bucket is covered, partially
    paid when anything was received, otherwise unchanged.
    """
    if installment.is_fully_paid:
        return InstallmentStatus.PAID
    if installment.paid_total > ZERO:
        return InstallmentStatus.PARTIALLY_PAID
    return installment.status


def allocate_waterfall(installment: Installment, amount: Decimal) -> Allocation:
    """
    Apply ``amount`` to an installment, fees first, then interest, then
    principal. Each bucket takes at most what it still lacks.

    The amount is rounded to cents once, so every cent taken by a bucket is
    a cent removed from the remainder.

    Returns the updated installment and the amount it could not absorb.
    """
    remaining = CENTS.quantize(amount)
    changes: Dict[str, Decimal] = {}
    paid_total = installment.paid_total

    for paid_field, outstanding_field in WATERFALL:
        need = getattr(installment, outstanding_field)
        if need > ZERO and remaining > ZERO:
            take = min(need, remaining)
            changes[paid_field] = CENTS.quantize(getattr(installment, paid_field) + take)
            paid_total = CENTS.quantize(paid_total + take)
            remaining -= take

    updated = replace(installment, paid_total=paid_total, **changes)
    updated = replace(updated, status=derive_status(updated))
    return Allocation(updated, floor_zero(remaining))


@dataclass
class _Replay:
    """Working state of one replay; private to ``reconcile``"""
    rows: List[Installment]
    index_by_id: Dict[str, int]
    cursor: int
    principal: Decimal
    extra_by_position: Dict[int, Decimal]
    extra_amortization: Decimal = ZERO
    absorbed_excess: Decimal = ZERO

    @property
    def balance(self) -> Decimal:
        """Principal still outstanding at this point of the replay"""
        paid = sum((row.paid_principal for row in self.rows), ZERO)
        return floor_zero(self.principal - paid - self.extra_amortization)

    def apply_extra(self, position: int, amount: Decimal) -> None:
        """
        Reduce principal directly, attributing the reduction to a schedule
        position. Anything beyond the outstanding balance is absorbed.
        """
        applied = min(amount, self.balance)
        if position >= 0:
            self.extra_by_position[position] = self.extra_by_position.get(position, ZERO) + applied
        self.extra_amortization += applied
        if applied < amount:
            self.absorbed_excess += amount - applied


def allocate_to_target(state: _Replay, event: PaymentEvent, amount: Decimal) -> Tuple[Decimal, bool]:
    """
    Apply an event to the installment it names.

    Returns the amount left for sequential allocation and whether the
    target existed. Extra-amortization leftovers go straight to principal
    and never spill onto other installments.
    """
    position = state.index_by_id.get(str(event.installment_id))
    if position is None:
        return amount, False

    allocation = allocate_waterfall(state.rows[position], amount)
    state.rows[position] = allocation.installment
    remainder = allocation.remainder

    if remainder > ZERO and event.is_extra_amortization:
        state.apply_extra(position, remainder)
        return ZERO, True

    return remainder, True


def allocate_sequentially(state: _Replay, event: PaymentEvent, amount: Decimal) -> Decimal:
    """
    Apply an amount from the cursor onward, advancing past each installment
    that ends up fully paid.

    The cursor is shared by every event in the replay. What is left past the
    last installment reduces principal for extra-amortization events and is
    absorbed otherwise.
    """
    while amount > ZERO:
        if state.cursor >= len(state.rows):
            if event.is_extra_amortization:
                state.apply_extra(len(state.rows) - 1, amount)
            else:
                state.absorbed_excess += amount
                logger.info(
                    "Absorbed excess of %s from payment %s on debt %s",
                    CENTS.to_string(amount), event.id, event.debt_id
                )
            return ZERO

        allocation = allocate_waterfall(state.rows[state.cursor], amount)
        state.rows[state.cursor] = allocation.installment
        amount = allocation.remainder

        if allocation.installment.is_fully_paid:
            state.cursor += 1
        else:
            break

    return amount


def roll_remaining_principal(
    principal: Decimal,
    rows: Sequence[Installment],
    extra_by_position: Optional[Dict[int, Decimal]] = None
) -> Tuple[List[Installment], Decimal]:
    """
    Recompute remaining principal after each position from what was
    actually paid, never below zero.
    """
    extra_by_position = extra_by_position or {}
    balance = principal
    rolled: List[Installment] = []

    for position, installment in enumerate(rows):
        extra = extra_by_position.get(position, ZERO)
        balance = floor_zero(balance - installment.paid_principal - extra)
        rolled.append(replace(
            installment,
            extra_principal_paid=CENTS.quantize(extra),
            remaining_principal_after=CENTS.quantize(balance),
        ))

    return rolled, balance


def validate_events(debt_id: str, events: Iterable[PaymentEvent]) -> List[PaymentEvent]:
    """Reject events that cannot be replayed; returns them in replay order"""
    checked = []
    for event in events:
        if event.amount <= ZERO:
            logger.warning("Rejected payment %s with non-positive amount %s", event.id, event.amount)
            raise InvalidPaymentError(
                "Payment amount must be positive",
                {"payment_id": event.id, "amount": str(event.amount)}
            )
        if event.debt_id is not None and str(event.debt_id) != str(debt_id):
            raise InvalidPaymentError(
                "Payment belongs to another debt",
                {"payment_id": event.id, "debt_id": event.debt_id, "expected_debt_id": debt_id}
            )
        checked.append(event)
    return sorted(checked, key=lambda e: e.replay_key)


def reconcile(
    debt_id: Optional[str],
    principal: Decimal,
    installments: Sequence[Installment],
    events: Iterable[PaymentEvent],
    precision: int = DEFAULT_PRECISION
) -> ReconcileResult:
    """
    Replay payment events against a debt's schedule

    Args:
        debt_id: Debt being reconciled
        principal: Original principal of the debt
        installments: Persisted schedule; expected amounts are authoritative
        events: Complete payment history of the debt
        precision: Significant digits for intermediate arithmetic

    Returns:
        ReconcileResult with every installment recomputed and the
        outstanding principal

    Raises:
        DebtNotFoundError: If no debt id is given
        InvalidPaymentError: If an event has a non-positive amount or
            belongs to another debt
    """
    if debt_id is None:
        raise DebtNotFoundError(debt_id)

    principal = to_decimal(principal)
    ordered_events = validate_events(debt_id, events)

    with full_precision(precision):
        rows = [installment.cleared() for installment in sorted(installments, key=lambda i: i.number)]
        state = _Replay(
            rows=rows,
            index_by_id={str(row.id): position for position, row in enumerate(rows) if row.id is not None},
            cursor=0,
            principal=principal,
            extra_by_position={},
        )

        for event in ordered_events:
            amount = event.amount
            if event.installment_id is not None:
                amount, found = allocate_to_target(state, event, amount)
                if not found:
                    logger.debug(
                        "Payment %s names unknown installment %s, allocating sequentially",
                        event.id, event.installment_id
                    )
            if amount > ZERO:
                allocate_sequentially(state, event, amount)

        rolled, remaining = roll_remaining_principal(principal, state.rows, state.extra_by_position)

    if not rolled:
        remaining = state.balance

    logger.debug(
        "Reconciled debt %s: %d events, remaining principal %s",
        debt_id, len(ordered_events), CENTS.to_string(remaining)
    )

    return ReconcileResult(
        debt_id=debt_id,
        installments=tuple(rolled),
        remaining_principal=CENTS.quantize(remaining),
        extra_amortization=CENTS.quantize(state.extra_amortization),
        absorbed_excess=CENTS.quantize(state.absorbed_excess),
    )
