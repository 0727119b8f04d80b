"""
Rate Source Module

Resolves the monthly interest rate applied to each schedule position.
Fixed debts use a constant monthly rate (given directly or compounded down
from an annual nominal rate); indexed debts delegate to a lookup callback
supplied by the caller, since index time series are not resolved here.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import datetime
from typing import Callable, Optional

from .money import ZERO, ONE, to_decimal
from .models import DebtTerms, RateType
from .exceptions import InvalidTermsError


RateLookup = Callable[[datetime], Decimal]


def to_monthly_rate(annual_rate: Decimal) -> Decimal:
    """
    Convert an annual rate to its compounded monthly equivalent.

    monthly = (1 + annual)^(1/12) - 1
    """
    annual_rate = to_decimal(annual_rate)
    if annual_rate == ZERO:
        return ZERO
    return (ONE + annual_rate) ** (ONE / Decimal(12)) - ONE


class RateSource(ABC):
    """Monthly rate applicable to a due date"""

    @abstractmethod
    def monthly_rate(self, due_date: datetime) -> Decimal:
        """Rate for the period ending on ``due_date``"""
        pass


class ZeroRate(RateSource):
    """Interest-free debt"""

    def monthly_rate(self, due_date: datetime) -> Decimal:
        return ZERO

    def __repr__(self):
        return "ZeroRate()"


class FixedMonthlyRate(RateSource):
    """Monthly nominal rate used as given"""

    def __init__(self, rate: Decimal):
        self.rate = to_decimal(rate)

    def monthly_rate(self, due_date: datetime) -> Decimal:
        return self.rate

    def __repr__(self):
        return f"FixedMonthlyRate({self.rate})"


class FixedAnnualCompoundedRate(RateSource):
    """Annual nominal rate, compounded down to a monthly rate once"""

    def __init__(self, annual_rate: Decimal):
        self.annual_rate = to_decimal(annual_rate)
        self._monthly = to_monthly_rate(self.annual_rate)

    def monthly_rate(self, due_date: datetime) -> Decimal:
        return self._monthly

    def __repr__(self):
        return f"FixedAnnualCompoundedRate({self.annual_rate})"


class ExternalLookupRate(RateSource):
    """
    Rate supplied per due date by the caller.

    The lookup is expected to return the full monthly rate for the period,
    index plus any spread; this class does not add the spread itself.
    """

    def __init__(self, lookup: RateLookup):
        if not callable(lookup):
            raise InvalidTermsError("Rate lookup must be callable")
        self.lookup = lookup

    def monthly_rate(self, due_date: datetime) -> Decimal:
        try:
            rate = to_decimal(self.lookup(due_date))
        except ValueError as e:
            raise InvalidTermsError(
                f"Rate lookup returned an invalid rate for {due_date.date().isoformat()}: {e}"
            )
        return rate

    def __repr__(self):
        return f"ExternalLookupRate({getattr(self.lookup, '__name__', self.lookup)!r})"


def index_plus_spread(index_rate: Decimal, spread_rate: Optional[Decimal] = None) -> RateLookup:
    """Lookup for a flat monthly index with the debt's spread added on top"""
    rate = to_decimal(index_rate) + to_decimal(spread_rate)
    if rate < ZERO:
        raise InvalidTermsError("Indexed rate cannot be negative", {"rate": str(rate)})

    def lookup(due_date: datetime) -> Decimal:
        return rate

    return lookup


def resolve_rate_source(terms: DebtTerms, rate_lookup: Optional[RateLookup] = None) -> RateSource:
    """
    Pick the rate source for a debt.

    Precedence: caller lookup, monthly nominal rate, annual nominal rate,
    zero. Indexed debts require a lookup.
    """
    if rate_lookup is not None:
        return ExternalLookupRate(rate_lookup)

    if terms.is_indexed:
        raise InvalidTermsError(
            "Indexed debts require a rate lookup to build a schedule",
            {"rate_type": terms.rate_type.value}
        )

    if terms.nominal_rate is None:
        return ZeroRate()

    if terms.rate_type == RateType.FIXED_NOMINAL_MONTH:
        return FixedMonthlyRate(terms.nominal_rate)

    return FixedAnnualCompoundedRate(terms.nominal_rate)
