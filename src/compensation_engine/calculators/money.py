"""Decimal helpers shared by the resolver, snapshotter and statements.

Conventions:
- Amounts are Decimal, never float. Floats coming from JSON are converted
  through ``str`` so 0.1 stays 0.1.
- Component amounts are rounded half-up to cents when produced.
- Percentages are expressed 0-100.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
MONTHS_PER_YEAR = 12

# Largest amount a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


def to_decimal(value: Any, default: Decimal | None = None) -> Decimal | None:
    """Convert a stored or user supplied value to Decimal.

    Returns ``default`` for None, empty strings, booleans and anything that
    does not parse as a finite number.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    if isinstance(value, (int, float, str)):
        text = str(value).strip()
        if not text:
            return default
        try:
            result = Decimal(text)
        except InvalidOperation:
            return default
        return result if result.is_finite() else default
    return default


def round_money(amount: Decimal) -> Decimal:
    """Round an amount to cents (half-up)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(base: Decimal, percent: Decimal) -> Decimal:
    """Return ``percent`` % of ``base``, rounded to cents."""
    return round_money(base * percent / HUNDRED)


def sum_money(amounts: Iterable[Decimal]) -> Decimal:
    """Sum amounts starting from a cents-scaled zero."""
    total = ZERO
    for amount in amounts:
        total += amount
    return total


def clamp_non_negative(amount: Decimal) -> Decimal:
    """Floor an amount at zero."""
    return amount if amount > 0 else ZERO


def divide(total: Decimal, divisor: int) -> Decimal:
    """Divide an amount across ``divisor`` periods, rounded to cents."""
    if divisor <= 0:
        raise ValueError("divisor must be positive")
    return round_money(total / Decimal(divisor))
