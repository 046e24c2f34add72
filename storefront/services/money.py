"""
Money Utilities - Safe Decimal operations for monetary values.

Store prices are whole kyat (MMK); every computed discount or share is rounded
half-up to an integer amount before it is persisted.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

Numeric = Union[str, int, float, Decimal, None]

INTEGER_PRECISION = Decimal("1")
MONEY_PRECISION = Decimal("0.01")


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def parse_amount(raw: str | None) -> Decimal | None:
    """
    Parse an amount as printed on a payment receipt ("5,000", "12000.00").

    Returns None when the text is missing or not numeric, unlike to_decimal
    which collapses bad input to zero.
    """
    if not raw:
        return None
    cleaned = str(raw).replace(",", "").strip()
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def round_money(value: Numeric, to_int: bool = True) -> Decimal:
    """
    Round monetary value to kyat (default) or cents precision.

    Args:
        value: Value to round
        to_int: Round to whole currency units

    Returns:
        Rounded Decimal value
    """
    precision = INTEGER_PRECISION if to_int else MONEY_PRECISION
    return to_decimal(value).quantize(precision, rounding=ROUND_HALF_UP)


def percent_of(amount: Numeric, percent: Numeric) -> Decimal:
    """amount * percent / 100, rounded to whole units."""
    return round_money(to_decimal(amount) * to_decimal(percent) / Decimal(100))


def proportional_share(total: Numeric, part: Numeric, whole: Numeric) -> Decimal:
    """Split `total` by part/whole, rounded to whole units (no residual reconciliation)."""
    whole_dec = to_decimal(whole)
    if whole_dec <= 0:
        return Decimal("0")
    return round_money(to_decimal(total) * to_decimal(part) / whole_dec)


def within_tolerance(actual: Numeric, expected: Numeric, ratio: Numeric) -> bool:
    """|actual - expected| <= ratio * expected."""
    expected_dec = to_decimal(expected)
    return abs(to_decimal(actual) - expected_dec) <= expected_dec * to_decimal(ratio)


def to_float(value: Numeric) -> float:
    """
    Convert Decimal to float for JSON serialization or PostgREST payloads.

    Use only at storage/API boundaries, not for internal calculations.
    """
    return float(to_decimal(value))


def format_kyat(value: Numeric) -> str:
    """Format an amount for operator-facing captions: 25,000 Ks."""
    return f"{int(round_money(value)):,} Ks"
