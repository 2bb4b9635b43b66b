"""Fixed-point helpers. Storage is integer cents; arithmetic is Decimal."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def quantize(amount: Decimal) -> Decimal:
    """Round to the currency's minor unit (half-up, like a register)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def decimal_to_cents(amount: Decimal) -> int:
    return int(quantize(amount) * 100)


def format_money(cents: int | None) -> str | None:
    """Fixed 2-decimal string, e.g. 1599 -> "15.99"."""
    if cents is None:
        return None
    return str(cents_to_decimal(cents))
