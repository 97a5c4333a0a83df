from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal("0")
CENT = Decimal("0.01")
UNIT_PLACES = Decimal("0.0001")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """
    Coerce a number-ish value to Decimal.

    None, blanks, NaN/inf and unparseable input fall back to `default`.
    Floats go through str() so 0.1 stays 0.1.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            dec = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return default
    if not dec.is_finite():
        return default
    return dec


def money(value: Any) -> Decimal:
    """Round half-up to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def unit_amount(value: Any) -> Decimal:
    """Round half-up to 4 places, used for unit prices and costs."""
    return to_decimal(value).quantize(UNIT_PLACES, rounding=ROUND_HALF_UP)


def as_float(value: Optional[Decimal]) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def format_quantity(value: Any) -> str:
    """2.000 -> '2', 2.500 -> '2.5'."""
    dec = to_decimal(value)
    if dec == dec.to_integral_value():
        return str(dec.quantize(Decimal("1")))
    return format(dec.normalize(), "f")
