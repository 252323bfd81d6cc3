"""Parsing helpers for quantities and money amounts received from callers."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_quantity(value, *, error, allow_zero: bool = False) -> int:
    """Return ``value`` as a whole number of units or raise ``error``.

    Accepts ints and numeric strings; rejects booleans, fractions and
    non-positive values (zero too unless ``allow_zero``).
    """
    if isinstance(value, bool) or value is None:
        raise error("Quantity must be a whole number.")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise error("Quantity must be a whole number.")
    if not number.is_finite() or number != number.to_integral_value():
        raise error("Quantity must be a whole number.")
    if number < 0 or (number == 0 and not allow_zero):
        raise error("Quantity must be positive." if not allow_zero else "Quantity cannot be negative.")
    return int(number)


def to_amount(value, *, error, label: str = "Amount") -> Decimal:
    """Return ``value`` as a positive Decimal rounded to cents or raise ``error``."""
    if isinstance(value, bool) or value is None:
        raise error(f"{label} must be a number.")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise error(f"{label} must be a number.")
    if not amount.is_finite():
        raise error(f"{label} must be a number.")
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise error(f"{label} must be positive.")
    return amount
