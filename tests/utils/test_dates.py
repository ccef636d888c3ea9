# tests/utils/test_dates.py
"""
Tests for calendar helpers.
"""

from datetime import date

import pytest

from portfolio_engine.utils.dates import (
    is_completed_year_end,
    month_end,
    year_end,
    year_start,
)


def test_year_bounds():
    assert year_start(2024) == date(2024, 1, 1)
    assert year_end(2024) == date(2024, 12, 31)


@pytest.mark.parametrize("year,month,expected", [
    (2024, 2, date(2024, 2, 29)),
    (2025, 2, date(2025, 2, 28)),
    (2024, 12, date(2024, 12, 31)),
    (2024, 4, date(2024, 4, 30)),
])
def test_month_end(year, month, expected):
    assert month_end(year, month) == expected


@pytest.mark.parametrize("d,today,expected", [
    (date(2024, 12, 31), date(2025, 1, 1), True),
    (date(2025, 12, 31), date(2025, 12, 31), False),
    (date(2024, 12, 30), date(2025, 6, 1), False),
])
def test_is_completed_year_end(d, today, expected):
    assert is_completed_year_end(d, today) is expected
