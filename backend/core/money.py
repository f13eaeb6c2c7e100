from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize_money(value: Decimal) -> Decimal:
    """Round to whole cents, half-up."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert Decimal currency units to integer minor units."""
    cents = (amount * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def from_cents(cents: int | str | None) -> Decimal:
    try:
        return quantize_money(Decimal(int(cents or 0)) / Decimal("100"))
    except (InvalidOperation, TypeError, ValueError):
        return ZERO
