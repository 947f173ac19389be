"""Decimal helpers for currency amounts."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """
    Convert a number or numeric string to a 2-place Decimal.

    Floats go through ``str`` so 19.99 stays 19.99 rather than its
    binary approximation.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to integer minor units (Stripe ``unit_amount``)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))
