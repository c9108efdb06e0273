"""
Quantity helpers shared by allocation and reconciliation.

All stock math runs on Decimal. Store rows may hand back ints, floats,
strings or None; everything passes through to_quantity first.

Quantities are rounded to the store's column scale (4 places) on the way
in, so a value written is exactly the value read back and compared on the
next compare-and-swap.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from app.exceptions import ValidationError

ZERO = Decimal("0")

# Numeric(18, 4)
QUANTITY_SCALE = Decimal("0.0001")
MAX_QUANTITY = Decimal("99999999999999.9999")


def to_quantity(value: Any) -> Decimal:
    """
    Coerce a store or caller value to a finite Decimal at column scale.

    None is treated as zero (missing columns default to 0 in the store).
    Floats go through str() so 0.1 stays 0.1. Extra places are rounded
    half-up: 2.00005 becomes 2.0001, 0.00001 becomes 0.

    Raises:
        ValidationError: value is not numeric, not finite or too large
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValidationError(f"Invalid quantity: {value!r}")
    if isinstance(value, Decimal):
        quantity = value
    elif isinstance(value, int):
        quantity = Decimal(value)
    else:
        try:
            quantity = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid quantity: {value!r}")

    if not quantity.is_finite():
        raise ValidationError(f"Quantity must be finite: {value!r}")
    if abs(quantity) > MAX_QUANTITY:
        raise ValidationError(f"Quantity out of range: {value!r}")
    return quantity.quantize(QUANTITY_SCALE, rounding=ROUND_HALF_UP)


def clamp_non_negative(value: Decimal) -> Decimal:
    """max(0, value)"""
    return value if value > ZERO else ZERO


def require_non_negative(value: Any, field: str) -> Decimal:
    quantity = to_quantity(value)
    if quantity < ZERO:
        raise ValidationError(
            f"{field} cannot be negative",
            details={"field": field, "value": str(quantity)},
        )
    return quantity


def require_positive(value: Any, field: str) -> Decimal:
    """
    Raises:
        ValidationError: zero or negative after rounding to column scale
    """
    quantity = to_quantity(value)
    if quantity <= ZERO:
        raise ValidationError(
            f"{field} must be greater than zero",
            details={"field": field, "value": str(quantity)},
        )
    return quantity


def format_quantity(value: Decimal) -> str:
    """Render 25.0000 as '25' and 2.5000 as '2.5' for history reasons."""
    normalized = value.normalize()
    if normalized == ZERO:
        return "0"
    return format(normalized, "f")
