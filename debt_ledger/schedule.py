"""
Schedule Builder Module

Projects the installment plan of a debt from its terms. Supports PRICE
(constant annuity) and SAC (constant principal) amortization, grace months
that charge interest and fees only, and flat monthly fees.

Balances and rates are carried at full precision across periods; only the
emitted row fields are rounded to cents.
"""

from decimal import Decimal
from datetime import datetime, timezone, date, tzinfo
from typing import Iterator, List, Optional, Union
import calendar
import logging

from .money import ZERO, ONE, CENTS, DEFAULT_PRECISION, floor_zero, full_precision
from .models import DebtTerms, Installment, InstallmentStatus, AmortizationSystem
from .rates import RateLookup, RateSource, resolve_rate_source
from .exceptions import InvalidTermsError

logger = logging.getLogger(__name__)

DUE_HOUR = 12  # Midday keeps the calendar date stable under any UTC offset or DST shift


def normalize_start(
    start: Union[date, datetime],
    reference_tz: tzinfo = timezone.utc,
    hour: int = DUE_HOUR
) -> datetime:
    """
    Pin a start date to a fixed time of day in the reference timezone.

    Aware datetimes are converted to the reference timezone before taking
    the calendar date; naive datetimes and dates are read as already being
    in it.
    """
    if isinstance(start, datetime):
        if start.tzinfo is not None:
            start = start.astimezone(reference_tz)
        start = start.date()
    return datetime(start.year, start.month, start.day, hour, tzinfo=reference_tz)


def add_months(anchor: datetime, months: int, day: Optional[int] = None) -> datetime:
    """
    Return ``anchor`` moved by whole calendar months.

    The day of month is ``day`` (default: the anchor's own day), clamped to
    the last day of the target month. Time of day and timezone are kept.
    """
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    desired = day if day is not None else anchor.day
    clamped = min(desired, calendar.monthrange(year, month)[1])
    return anchor.replace(year=year, month=month, day=clamped)


def due_dates(
    start: Union[date, datetime],
    term_months: int,
    payment_day: Optional[int] = None,
    reference_tz: tzinfo = timezone.utc,
    hour: int = DUE_HOUR
) -> Iterator[datetime]:
    """
    Yield the due date of every installment.

    The first due date falls one month after the start on ``payment_day``
    (or the start's day of month). Every later date is computed from the
    first one, never from the previous row, so clamping in a short month
    does not carry into the following months.
    """
    start_at = normalize_start(start, reference_tz, hour)
    desired_day = payment_day if payment_day is not None else start_at.day
    first_due = add_months(start_at, 1, desired_day)

    for offset in range(term_months):
        yield add_months(first_due, offset, desired_day)


def annuity_payment(principal: Decimal, monthly_rate: Decimal, term_months: int) -> Decimal:
    """
    Constant installment of a PRICE schedule, unrounded.

    payment = P * i / (1 - (1 + i)^-n), or P / n when i is zero
    """
    if term_months <= 0:
        raise InvalidTermsError("Term must be positive", {"term_months": term_months})
    if monthly_rate == ZERO:
        return principal / Decimal(term_months)
    return principal * monthly_rate / (ONE - (ONE + monthly_rate) ** -term_months)


def build_schedule(
    terms: DebtTerms,
    rate_lookup: Optional[RateLookup] = None,
    reference_tz: tzinfo = timezone.utc,
    due_hour: int = DUE_HOUR,
    precision: int = DEFAULT_PRECISION
) -> List[Installment]:
    """
    Project the installment plan for a debt

    Args:
        terms: Debt terms
        rate_lookup: Per-due-date monthly rate, required for indexed debts
        reference_tz: Timezone due dates are pinned to
        due_hour: Hour of day due dates are pinned to
        precision: Significant digits for intermediate arithmetic

    Returns:
        Installments 1..term_months with expected amounts populated and
        nothing paid

    Raises:
        InvalidTermsError: If the terms cannot produce a schedule
    """
    terms.validate()

    with full_precision(precision):
        rate_source = resolve_rate_source(terms, rate_lookup)
        rows = _project(terms, rate_source, reference_tz, due_hour)

    logger.debug(
        "Built %s schedule with %d installments using %r",
        terms.amortization_system.value, len(rows), rate_source
    )
    return rows


def _project(
    terms: DebtTerms,
    rate_source: RateSource,
    reference_tz: tzinfo,
    due_hour: int
) -> List[Installment]:
    principal = terms.principal
    term = terms.term_months
    fees = terms.monthly_fees
    constant_principal = principal / Decimal(term)

    balance = principal
    rows: List[Installment] = []

    dates = due_dates(terms.start_date, term, terms.payment_day, reference_tz, due_hour)
    for number, due_date in enumerate(dates, start=1):
        monthly_rate = rate_source.monthly_rate(due_date)
        in_grace = number <= terms.grace_months

        interest = balance * monthly_rate

        if terms.amortization_system == AmortizationSystem.SAC:
            principal_part = ZERO if in_grace else constant_principal
            total = principal_part + interest + fees
        else:
            # Annuity is recomputed from the original principal and term every
            # period so indexed rates change the installment from that period on
            annuity = annuity_payment(principal, monthly_rate, term)
            principal_part = ZERO if in_grace else floor_zero(annuity - interest)
            total = (interest if in_grace else annuity) + fees

        remaining_after = floor_zero(balance - principal_part)

        rows.append(Installment(
            number=number,
            due_date=due_date,
            expected_interest=CENTS.quantize(interest),
            expected_principal=CENTS.quantize(principal_part),
            expected_fees=CENTS.quantize(fees),
            expected_total=CENTS.quantize(total),
            remaining_principal_after=CENTS.quantize(remaining_after),
            status=InstallmentStatus.PENDING,
        ))

        balance = remaining_after

    return rows
