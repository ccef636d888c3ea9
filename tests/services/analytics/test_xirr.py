# tests/services/analytics/test_xirr.py
"""
Tests for the XIRR solver.

Test Coverage:
- Known rates (gain, loss, one year apart)
- Undefined cases (no sign change, empty, zero flows)
- Currency invariance (scaling all flows leaves the rate unchanged)
- Bisection fallback and LOW confidence
"""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

from portfolio_engine.services.analytics.returns import _xnpv, calculate_xirr, solve_xirr
from portfolio_engine.services.analytics.types import (
    CashFlow,
    XirrConfidence,
    XirrMethod,
)

TOLERANCE = Decimal("0.0001")


def _flows(*pairs) -> list[CashFlow]:
    return [CashFlow(date=d, amount=Decimal(str(a))) for d, a in pairs]


class TestKnownRates:
    """Tests with closed-form answers."""

    def test_ten_percent_over_one_year(self):
        flows = _flows((date(2023, 1, 1), -100), (date(2024, 1, 1), 110))

        result = solve_xirr(flows)

        assert abs(result.rate - Decimal("0.10")) < TOLERANCE
        assert result.confidence == XirrConfidence.HIGH
        assert result.method == XirrMethod.NEWTON
        assert result.cash_flow_count == 2
        assert result.earliest_transaction_date == date(2023, 1, 1)

    def test_loss(self):
        flows = _flows((date(2023, 1, 1), -100), (date(2024, 1, 1), 50))
        assert abs(calculate_xirr(flows) - Decimal("-0.5")) < TOLERANCE

    def test_unsorted_input(self):
        flows = _flows((date(2024, 1, 1), 110), (date(2023, 1, 1), -100))
        assert abs(calculate_xirr(flows) - Decimal("0.10")) < TOLERANCE

    def test_multiple_flows_zero_npv(self):
        flows = _flows(
            (date(2024, 1, 1), -1000),
            (date(2024, 7, 1), -1000),
            (date(2024, 10, 15), 150),
            (date(2025, 1, 1), 2200),
        )
        result = solve_xirr(flows)

        first = flows[0].date
        points = [(Decimal((cf.date - first).days) / Decimal(365), cf.amount) for cf in flows]
        assert abs(_xnpv(result.rate, points)) < Decimal("0.01")

    def test_percentage_property(self):
        flows = _flows((date(2023, 1, 1), -100), (date(2024, 1, 1), 110))
        result = solve_xirr(flows)
        assert abs(result.percentage - Decimal("10")) < Decimal("0.01")


class TestUndefined:
    """XIRR is None, not an error, without a sign change."""

    def test_empty(self):
        assert solve_xirr([]) is None

    def test_only_outflows(self):
        flows = _flows((date(2024, 1, 1), -100), (date(2024, 6, 1), -50))
        assert solve_xirr(flows) is None

    def test_only_inflows(self):
        flows = _flows((date(2024, 1, 1), 100), (date(2024, 6, 1), 50))
        assert calculate_xirr(flows) is None

    def test_zero_flows_are_ignored(self):
        flows = _flows((date(2024, 1, 1), -100), (date(2024, 6, 1), 0))
        assert solve_xirr(flows) is None

    def test_zero_flows_not_counted(self):
        flows = _flows((date(2023, 1, 1), -100), (date(2023, 6, 1), 0), (date(2024, 1, 1), 110))
        assert solve_xirr(flows).cash_flow_count == 2


class TestCurrencyInvariance:
    """Converting every flow at one constant rate leaves XIRR unchanged."""

    def test_scaled_flows_same_rate(self):
        usd = _flows(
            (date(2022, 3, 1), -5000),
            (date(2023, 2, 10), -2500),
            (date(2023, 9, 5), 300),
            (date(2024, 12, 31), 9100),
        )
        twd = [CashFlow(date=cf.date, amount=cf.amount * Decimal("31.5")) for cf in usd]

        assert abs(calculate_xirr(usd) - calculate_xirr(twd)) < Decimal("0.000001")


class TestFallback:
    """Tests for the bisection fallback."""

    def test_bisection_when_newton_gives_up(self):
        flows = _flows((date(2023, 1, 1), -100), (date(2024, 1, 1), 110))

        with patch("portfolio_engine.services.analytics.returns._newton_raphson", return_value=None):
            result = solve_xirr(flows)

        assert result.method == XirrMethod.BISECTION
        assert result.confidence == XirrConfidence.HIGH
        assert abs(result.rate - Decimal("0.10")) < TOLERANCE

    def test_bisection_expands_upper_bound(self):
        """A 5000% return lies above the initial bracket."""
        flows = _flows((date(2023, 1, 1), -100), (date(2024, 1, 1), 5100))

        with patch("portfolio_engine.services.analytics.returns._newton_raphson", return_value=None):
            result = solve_xirr(flows)

        assert result.confidence == XirrConfidence.HIGH
        assert abs(result.rate - Decimal("50")) < Decimal("0.001")

    def test_no_root_is_low_confidence(self):
        """100 - 50x + 100x^2 has no positive root: the best estimate comes back LOW."""
        flows = _flows(
            (date(2022, 1, 1), 100),
            (date(2023, 1, 1), -50),
            (date(2024, 1, 1), 100),
        )
        result = solve_xirr(flows)

        assert result is not None
        assert result.method == XirrMethod.BISECTION
        assert result.confidence == XirrConfidence.LOW
