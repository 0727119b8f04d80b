"""
Decimal Arithmetic Module

All monetary and rate values are Decimal. Arithmetic runs at full precision
inside an explicit calculation context; values are rounded to the money scale
only at output boundaries (schedule rows, persisted paid amounts).
NEVER uses float for monetary values.
"""

from decimal import Decimal, Context, ROUND_HALF_UP, ROUND_HALF_EVEN, InvalidOperation, localcontext
from dataclasses import dataclass
from contextlib import contextmanager
from typing import Iterator, Optional, Union
import re

DEFAULT_PRECISION = 28
DEFAULT_SCALE = 2

ZERO = Decimal('0')
ONE = Decimal('1')

DecimalLike = Union[Decimal, int, str]


@dataclass(frozen=True)
class FixedPoint:
    """
    Fixed-point rounding boundary parameterized by scale.

    Intermediate values are never passed through this type; only the values
    leaving the core (row fields, paid buckets, balances) are.
    """
    scale: int = DEFAULT_SCALE
    rounding: str = ROUND_HALF_UP

    def __post_init__(self):
        if self.scale < 0:
            raise ValueError(f"Scale must be non-negative, got {self.scale}")

    @property
    def quantum(self) -> Decimal:
        """Smallest representable step, e.g. 0.01 for scale 2"""
        return Decimal(1).scaleb(-self.scale)

    def quantize(self, value: DecimalLike) -> Decimal:
        """Round a value to this scale"""
        return to_decimal(value).quantize(self.quantum, rounding=self.rounding)

    def to_string(self, value: DecimalLike) -> str:
        """Render with exactly ``scale`` decimal places"""
        return str(self.quantize(value))


# Money is always externalized in cents
CENTS = FixedPoint(DEFAULT_SCALE)


def calculation_context(precision: int = DEFAULT_PRECISION) -> Context:
    """Build the Decimal context used for every schedule and replay computation"""
    return Context(prec=precision, rounding=ROUND_HALF_EVEN)


@contextmanager
def full_precision(precision: int = DEFAULT_PRECISION) -> Iterator[Context]:
    """
    Run a block under the calculation context without touching the
    thread's global context.
    """
    with localcontext(calculation_context(precision)) as ctx:
        yield ctx


def to_decimal(value: Optional[DecimalLike]) -> Decimal:
    """
    Convert a stored or user-supplied value to Decimal.

    ``None`` maps to zero, matching how unset numeric columns are read.
    Floats are rejected to keep binary rounding out of money math.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Boolean is not a numeric value")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        raise ValueError(f"Float {value!r} is not allowed for monetary values; pass a string or Decimal")
    if isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            return decimal_from_string(value)
        if not result.is_finite():
            raise ValueError(f"Non-finite value '{value}' is not allowed")
        return result
    raise ValueError(f"Cannot convert {type(value).__name__} to Decimal")


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    # Handle comma as decimal separator (European format)
    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) < 3:  # Likely decimal separator
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')

    try:
        result = Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")
    if not result.is_finite():
        raise ValueError(f"Non-finite value '{value}' is not allowed")
    return result


def floor_zero(value: Decimal) -> Decimal:
    """Clamp negative values to zero"""
    return value if value > ZERO else ZERO


def quantize_money(value: DecimalLike, scale: int = DEFAULT_SCALE) -> Decimal:
    """Round a monetary value for output"""
    if scale == DEFAULT_SCALE:
        return CENTS.quantize(value)
    return FixedPoint(scale).quantize(value)


def money_to_string(value: DecimalLike, scale: int = DEFAULT_SCALE) -> str:
    """Serialize a monetary value as a fixed-scale string"""
    return str(quantize_money(value, scale))
