# portfolio_engine/utils/dates.py
"""
Calendar helpers shared by the resolution and analytics services.

Usage:
    from portfolio_engine.utils.dates import year_end, is_completed_year_end

    ref = year_end(2024)  # date(2024, 12, 31)
"""

import calendar
from datetime import date


def year_start(year: int) -> date:
    return date(year, 1, 1)


def year_end(year: int) -> date:
    return date(year, 12, 31)


def month_end(year: int, month: int) -> date:
    """
    Last calendar day of a month.

    Example:
        >>> month_end(2024, 2)
        datetime.date(2024, 2, 29)
    """
    return date(year, month, calendar.monthrange(year, month)[1])


def is_completed_year_end(d: date, today: date) -> bool:
    """
    True when `d` is Dec-31 of a calendar year that has fully elapsed.

    Only such dates may be read from or written to the year-end cache.
    """
    return d.month == 12 and d.day == 31 and d.year < today.year

