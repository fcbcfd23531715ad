"""
Money - integer minor units with decimal percentage math.

All amounts are ``Cents`` (int). Percentages are ``Decimal`` and every
percentage application rounds half-up to the cent, so a chain of discounts is
reproducible to the cent:

    >>> percent_of(10_000, 10)
    1000
    >>> percent_of(7_695, 2)
    154
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from keymart._types import Cents

ONE_CENT = Decimal("0.01")
HUNDRED = Decimal(100)

type Percent = Decimal | int | str


def as_percent(value: Percent) -> Decimal:
    """Coerce to Decimal and clamp to 0..100."""
    pct = value if isinstance(value, Decimal) else Decimal(str(value))
    if pct < 0:
        return Decimal(0)
    if pct > HUNDRED:
        return HUNDRED
    return pct


def percent_of(amount: Cents, percent: Percent) -> Cents:
    """``percent`` % of ``amount``, rounded half-up to the cent."""
    raw = Decimal(amount) * as_percent(percent) / HUNDRED
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp(amount: Cents, upper: Cents) -> Cents:
    """Clamp a discount into ``0..upper``."""
    return max(0, min(amount, upper))


def parse_amount(value: str | int | float | Decimal) -> Cents:
    """
    Parse a major-unit amount (``"78.49"``) into cents.

    Raises ValueError for anything that is not a finite decimal.
    """
    try:
        dec = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"invalid amount: {value!r}") from e
    if not dec.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return int((dec / ONE_CENT).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_amount(amount: Cents) -> str:
    """Cents to a two-decimal string: ``7849`` -> ``"78.49"``."""
    return str((Decimal(amount) * ONE_CENT).quantize(ONE_CENT))


__all__ = (
    "Percent",
    "as_percent",
    "percent_of",
    "clamp",
    "parse_amount",
    "format_amount",
)
