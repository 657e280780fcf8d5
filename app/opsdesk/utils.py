from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_decimal(value: object) -> Decimal | None:
    """Parse a money-ish value without going through binary floats. None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, float):
        d = Decimal(repr(value))
    elif isinstance(value, str):
        raw = value.strip().replace(",", "")
        if not raw:
            return None
        try:
            d = Decimal(raw)
        except InvalidOperation:
            return None
    else:
        return None
    if not d.is_finite():
        return None
    return d


def round_money(value: Decimal) -> Decimal:
    """2 decimal places, half-up (1.005 -> 1.01)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percentage(numerator: int | Decimal, denominator: int | Decimal) -> int:
    """round(numerator / denominator * 100), half-up; 0 when the denominator is 0."""
    if not denominator:
        return 0
    pct = Decimal(numerator) / Decimal(denominator) * 100
    return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_date(value: object) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date()
        except ValueError:
            return None
    return None


def parse_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None
