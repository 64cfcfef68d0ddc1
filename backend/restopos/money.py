"""
Money helpers.

All amounts are stored as integer minor units (cents) and handed to callers as
Decimal values with two places. Never use float for money: floats coming in
from JSON are converted through ``str`` first.

Rounding is ROUND_HALF_UP to 2 places at the point of charge.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .errors import InvalidAmount

MoneyInput = Union[Decimal, str, int, float]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Two amounts match when they differ by strictly less than one cent.
MONEY_EPSILON = Decimal("0.01")


def to_decimal(value: MoneyInput, *, field: str | None = None) -> Decimal:
    """
    Parse a money value and quantize it to cents (ROUND_HALF_UP).

    Examples:
        >>> to_decimal("10.125")
        Decimal('10.13')
        >>> to_decimal(150)
        Decimal('150.00')
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(field=field)

    if isinstance(value, float):
        value = str(value)

    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"'{value}' is not a valid amount", field=field)

    if not amount.is_finite():
        raise InvalidAmount(f"'{value}' is not a finite amount", field=field)

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: MoneyInput, *, field: str | None = None) -> int:
    """Convert to minor units after quantization."""
    return int(to_decimal(value, field=field) * 100)


def from_cents(cents: int | None) -> Decimal:
    if cents is None:
        return ZERO
    return (Decimal(cents) / 100).quantize(CENT)


def percent_of(cents: int, percent: MoneyInput) -> int:
    """Percentage of an amount in cents, rounded half-up to the cent."""
    pct = Decimal(str(percent)) if isinstance(percent, float) else Decimal(percent)
    share = (Decimal(cents) * pct / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(share)


def multiply(cents: int, factor: MoneyInput) -> int:
    """cents * factor rounded half-up to the cent (per-km pricing)."""
    f = Decimal(str(factor)) if isinstance(factor, float) else Decimal(factor)
    return int((Decimal(cents) * f).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def amounts_match(a_cents: int, b_cents: int) -> bool:
    """True when two amounts agree within MONEY_EPSILON."""
    return abs(from_cents(a_cents) - from_cents(b_cents)) < MONEY_EPSILON


def format_money(cents: int | None) -> str:
    return f"{from_cents(cents):,.2f}"
