"""Decimal helpers shared by the risk calculations.

Every ratio the engine reports goes through ``safe_divide`` so that a zero or
non-finite denominator yields 0 instead of raising or producing NaN/Infinity.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Coerce a loosely-typed numeric value to a finite Decimal."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return default
    if not result.is_finite():
        return default
    return result


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, returning 0 when the denominator is zero or the result is not finite."""
    if denominator is None or numerator is None:
        return ZERO
    if not denominator.is_finite() or not numerator.is_finite() or denominator == 0:
        return ZERO
    try:
        result = numerator / denominator
    except (InvalidOperation, ZeroDivisionError):
        return ZERO
    return result if result.is_finite() else ZERO


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """``part`` as a percentage of ``whole`` (0 when ``whole`` <= 0)."""
    if whole is None or whole <= 0:
        return ZERO
    return safe_divide(part, whole) * HUNDRED


def format_decimal(value: Optional[Decimal], places: Optional[int] = None) -> str:
    """Render a Decimal for human-readable messages.

    Without ``places`` trailing zeros are stripped (``Decimal("3.0")`` -> ``"3"``).
    """
    if value is None:
        return "-"
    if places is not None:
        return f"{value:.{places}f}"
    normalized = value.normalize()
    return format(normalized, "f")
