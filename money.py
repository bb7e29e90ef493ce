from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("999999999999.99")
MAX_CENTS = 99_999_999_999_999


def to_cents(value: Union[Decimal, int, str]) -> int:
    """Convert a decimal amount (``Decimal("-1200.50")``) into integer cents."""
    try:
        amount = Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    cents = int(amount * 100)
    if abs(cents) > MAX_CENTS:
        raise ValueError("Amount out of range")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)
