"""
Calendar helpers for month-based ledger periods.
"""

from datetime import date
import calendar


def whole_months_between(start: date, end: date) -> int:
    """
    Count whole calendar months elapsed from ``start`` to ``end``.

    A trailing partial month is not counted: when ``end.day`` is earlier than
    ``start.day`` the raw month difference is reduced by one. The result is
    negative when ``end`` precedes ``start``.

    >>> whole_months_between(date(2024, 1, 10), date(2024, 3, 10))
    2
    >>> whole_months_between(date(2024, 1, 10), date(2024, 3, 9))
    1
    """
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of short months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def year_month(on: date) -> str:
    """Two-digit year and month, e.g. date(2024, 7, 3) -> '2407'"""
    return f"{on.year % 100:02d}{on.month:02d}"
