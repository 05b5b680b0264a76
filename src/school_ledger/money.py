"""Money helpers built on Decimal (never float)."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce a record value into a Decimal amount.

    Floats are routed through ``str`` so ``0.1`` stays ``0.1``. ``None`` and
    empty strings count as zero, matching how stored records omit amounts.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid money value: {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid money value: {value!r}") from exc


def round_money(amount: Decimal, quantize: Decimal = CENT) -> Decimal:
    """Round half-up to the smallest currency unit."""
    return amount.quantize(quantize, rounding=ROUND_HALF_UP)


def floor_money(amount: Decimal, quantize: Decimal = CENT) -> Decimal:
    """Truncate toward negative infinity at the smallest currency unit."""
    return amount.quantize(quantize, rounding=ROUND_FLOOR)


def sum_money(amounts: Iterable[Decimal]) -> Decimal:
    """Sum amounts, returning a two-place zero for an empty iterable."""
    total = ZERO
    for amount in amounts:
        total += amount
    return total
