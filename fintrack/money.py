from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

ZERO = Decimal("0")
CENT_PLACES = 2


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce a raw amount into a Decimal usable in aggregation.

    Missing, unparseable, non-finite and negative inputs collapse to zero so a
    single bad row cannot poison a sum.
    """
    amount = parse_decimal(value)
    if amount is None or amount < ZERO:
        return ZERO
    return amount


def parse_decimal(value: Decimal | int | float | str | None) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    if not amount.is_finite():
        return None
    return amount


def quantize_money(
    value: Decimal, places: int = CENT_PLACES, rounding: str = ROUND_HALF_UP
) -> Decimal:
    return value.quantize(_exponent(places), rounding=rounding)


def floor_to(value: Decimal, places: int) -> Decimal:
    return value.quantize(_exponent(places), rounding=ROUND_DOWN)


def add(left: Decimal, right: Decimal) -> Decimal:
    return _coerce(left) + _coerce(right)


def subtract(left: Decimal, right: Decimal) -> Decimal:
    return _coerce(left) - _coerce(right)


def multiply(left: Decimal, right: Decimal) -> Decimal:
    return _coerce(left) * _coerce(right)


def divide(
    numerator: Decimal,
    denominator: Decimal,
    places: int | None = None,
    rounding: str = ROUND_HALF_UP,
) -> Decimal:
    """Divide two amounts, rounding to ``places`` with an explicit mode.

    A zero denominator yields zero instead of raising.
    """
    denominator = _coerce(denominator)
    if denominator == ZERO:
        return ZERO
    result = _coerce(numerator) / denominator
    if places is None:
        return result
    return result.quantize(_exponent(places), rounding=rounding)


def compare(left: Decimal, right: Decimal) -> int:
    left, right = _coerce(left), _coerce(right)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def money_sum(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return total


def split_evenly(total: Decimal, parts: int, places: int = CENT_PLACES) -> list[Decimal]:
    """Split ``total`` into ``parts`` amounts that add up to it exactly.

    Every part but the last is ``total / parts`` rounded half-up; the last one
    absorbs the remainder. When half-up rounding would push the last part
    below zero (tiny totals over many parts) the shares round down instead.
    """
    if parts <= 0:
        return []
    total = _coerce(total)
    if parts == 1:
        return [total]
    share = divide(total, Decimal(parts), places, ROUND_HALF_UP)
    if share * (parts - 1) > total:
        share = divide(total, Decimal(parts), places, ROUND_DOWN)
    last = total - share * (parts - 1)
    return [share] * (parts - 1) + [last]


def _coerce(value: Decimal | int | float | str | None) -> Decimal:
    if isinstance(value, Decimal):
        return value
    parsed = parse_decimal(value)
    return ZERO if parsed is None else parsed


def _exponent(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)
