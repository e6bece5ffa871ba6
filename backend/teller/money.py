"""
Fixed-point money helpers.

All persisted amounts are integer cents. Decimal is used at the edges
(service inputs, results, to_dict output as "74.50" strings). Binary floats
are converted through their repr so 0.5 becomes Decimal("0.5"), never
Decimal(0.1000000000000000055...).
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")

# Amount comparisons accept differences strictly below one cent.
TOLERANCE = Decimal("0.01")
TOLERANCE_CENTS = 1


def to_decimal(value, *, field: str = "amount") -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a decimal amount")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} is required")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal amount, got '{value}'")
    else:
        raise ValidationError(f"{field} must be a decimal amount")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite amount")
    return result


def to_cents(value, *, field: str = "amount") -> int:
    """Decimal-ish value -> integer cents (half-up at the third decimal)."""
    amount = to_decimal(value, field=field).quantize(CENT, rounding=ROUND_HALF_UP)
    return int(amount * 100)


def from_cents(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: int | None) -> str | None:
    """Integer cents -> fixed-point decimal string ("74.50")."""
    amount = from_cents(cents)
    return None if amount is None else f"{amount:.2f}"


def within_tolerance(actual_cents: int, expected_cents: int) -> bool:
    return abs(actual_cents - expected_cents) < TOLERANCE_CENTS


def round_up_to_unit(amount: Decimal, unit: Decimal) -> Decimal:
    """Round up to the next multiple of unit (balances, minimums)."""
    steps = (amount / unit).to_integral_value(rounding=ROUND_CEILING)
    return (steps * unit).quantize(CENT)


def round_down_to_unit(amount: Decimal, unit: Decimal) -> Decimal:
    """Round down to the previous multiple of unit (available credit)."""
    steps = (amount / unit).to_integral_value(rounding=ROUND_FLOOR)
    return (steps * unit).quantize(CENT)
