"""Locale-tolerant date and amount parsing for bank statement fields."""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation

# Ordered: first full match wins. Groups are (year, month, day) or (day, month, year).
_DATE_FORMATS: list[tuple[re.Pattern[str], tuple[str, str, str]]] = [
    (re.compile(r"(\d{4})-(\d{2})-(\d{2})"), ("year", "month", "day")),
    (re.compile(r"(\d{2})-(\d{2})-(\d{4})"), ("day", "month", "year")),
    (re.compile(r"(\d{2})/(\d{2})/(\d{4})"), ("day", "month", "year")),
    (re.compile(r"(\d{4})/(\d{2})/(\d{2})"), ("year", "month", "day")),
]

_AMOUNT_NOISE = re.compile(r"[^\d,.\-+]")


def parse_date(value: str) -> date:
    """Parse a statement date in one of the four supported layouts.

    Day and month are taken purely from their position in the pattern;
    values are never swapped based on range.

    Raises:
        ValueError: if no layout matches or the date does not exist.
    """
    text = value.strip()
    for pattern, order in _DATE_FORMATS:
        match = pattern.fullmatch(text)
        if not match:
            continue
        parts = dict(zip(order, (int(group) for group in match.groups()), strict=True))
        try:
            return date(parts["year"], parts["month"], parts["day"])
        except ValueError as exc:
            raise ValueError(f"cannot parse date: {value}") from exc
    raise ValueError(f"cannot parse date: {value}")


def parse_amount(value: str) -> Decimal:
    """Parse an amount written with comma or point decimals.

    - Both separators present: the later one is the decimal separator.
    - Only commas: a final group of at most two digits is the decimal part,
      otherwise commas are thousands separators.
    - Several points and no comma: points are thousands separators.

    Raises:
        ValueError: if nothing numeric remains after cleaning.
    """
    cleaned = _AMOUNT_NOISE.sub("", value.strip())

    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        head, _, tail = cleaned.rpartition(",")
        if len(tail) <= 2:
            cleaned = f"{head.replace(',', '')}.{tail}"
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ValueError(f"cannot parse amount: {value}") from exc
    if not amount.is_finite():
        raise ValueError(f"cannot parse amount: {value}")
    return amount
