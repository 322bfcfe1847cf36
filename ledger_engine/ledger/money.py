"""
Money and Date Utilities

Exact decimal rounding and calendar-month arithmetic shared by the
rest of the ledger.

DESIGN DECISION: A day that does not exist in the target month is
clamped to the month's last day (day 31 in April becomes April 30,
Jan 31 plus one month becomes Feb 28/29). This applies to installment
dates and to recurring postings alike.
"""

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

MoneyLike = Union[Decimal, int, float, str]

DEFAULT_PLACES = 2


def quantum(places: int = DEFAULT_PLACES) -> Decimal:
    """Smallest currency unit, e.g. Decimal('0.01') for 2 places."""
    return Decimal(1).scaleb(-places)


def to_money(value: MoneyLike, places: int = DEFAULT_PLACES) -> Decimal:
    """
    Convert a value to a Decimal rounded to the currency minor unit.

    Floats go through str() first so that 0.1 becomes Decimal('0.10')
    rather than its binary expansion.
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(quantum(places), rounding=ROUND_HALF_UP)


def split_amount(amount: Decimal, parts: int, places: int = DEFAULT_PLACES) -> list[Decimal]:
    """
    Split an amount into `parts` shares of minor-unit precision.

    All shares but the last are equal (rounded half up); the last one takes
    the remainder so that the shares add up to the amount exactly. The
    last share can therefore be slightly smaller than the others.

    100.00 in 6 gives five shares of 16.67 and a last one of 16.65.

    Raises:
        ValueError: parts < 1, or the amount is finer than the currency unit
    """
    if parts < 1:
        raise ValueError(f"Cannot split into {parts} parts")

    total = Decimal(amount)
    if total != total.quantize(quantum(places)):
        raise ValueError(f"{total} is more precise than {places} decimal places")
    share = (total / parts).quantize(quantum(places), rounding=ROUND_HALF_UP)
    last = total - share * (parts - 1)

    shares = [share] * (parts - 1) + [last]
    assert sum(shares, Decimal("0")) == total, "installment shares drifted"
    return shares


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, pulling an overflowing day back to the month's end."""
    return date(year, month, min(day, days_in_month(year, month)))


def add_months(d: date, months: int) -> date:
    """
    Move a date by whole calendar months, keeping the day when it exists.

    Always computed from the given date, so repeated offsets from the
    same origin never "lose" the day: Jan 31 +1 = Feb 28, Jan 31 +2 = Mar 31.
    """
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    return clamp_day(year, month + 1, d.day)


def month_window(year: int, month: int) -> tuple[date, date]:
    """First and last calendar day of a month."""
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def month_window_for(d: date) -> tuple[date, date]:
    return month_window(d.year, d.month)


def in_month(d: date, year: int, month: int) -> bool:
    return d.year == year and d.month == month
