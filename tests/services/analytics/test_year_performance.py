# tests/services/analytics/test_year_performance.py
"""
Tests for YearPerformanceService.

Test Coverage:
- Single buy held all year: XIRR ~ MD ~ TWR ~ 30% in both currencies
- Start value from the prior year-end holdings
- Interior income flow: net contributions and TWR linking
- Missing prices reported with their price type
- Caller-supplied reference prices
- Year validation and available years
"""

from datetime import date
from decimal import Decimal

import pytest

from portfolio_engine.models import Portfolio, TransactionType
from portfolio_engine.services.analytics.types import MissingPrice, PriceType, ReferencePrice
from portfolio_engine.services.analytics.year_performance import (
    YearPerformanceService,
    get_available_years,
)
from portfolio_engine.services.exceptions import ValidationError
from tests.conftest import FIXED_TODAY, make_transaction

JAN_1 = date(2025, 1, 1)
DEC_31 = date(2025, 12, 31)


@pytest.fixture
def service(resolver):
    return YearPerformanceService(resolver)


@pytest.fixture
def usd_twd_portfolio():
    return Portfolio(id=1, user_id=1, name="Growth", currency="USD", home_currency="TWD")


@pytest.fixture
def usd_portfolio():
    return Portfolio(id=2, user_id=1, name="Dollar", currency="USD", home_currency="USD")


# =============================================================================
# END TO END
# =============================================================================

class TestSingleBuyHeldAllYear:
    """Buy 10 @ 100 on Jan-1, close 130 on Dec-31."""

    @pytest.fixture
    def result(self, service, mock_provider, usd_twd_portfolio):
        mock_provider.set_close("AAPL", "US", JAN_1, 100)
        mock_provider.set_close("AAPL", "US", DEC_31, 130)
        mock_provider.set_rate("USD", "TWD", JAN_1, 30)
        mock_provider.set_rate("USD", "TWD", DEC_31, 30)
        txns = [make_transaction(txn_date=JAN_1, quantity=10, price=100, exchange_rate=30, id=1)]

        return service.calculate(usd_twd_portfolio, txns, [], 2025)

    def test_currencies(self, result):
        assert result.home_currency == "TWD"
        assert result.source_currency == "USD"

    def test_values(self, result):
        assert result.start_value_source == Decimal("0.00")
        assert result.end_value_source == Decimal("1300.00")
        assert result.end_value_home == Decimal("39000.00")
        assert result.net_contributions_source == Decimal("1000.00")
        assert result.net_contributions_home == Decimal("30000.00")

    def test_returns_agree(self, result):
        for xirr, md, twr in (
            (result.xirr_source, result.modified_dietz_source, result.twr_source),
            (result.xirr_home, result.modified_dietz_home, result.twr_home),
        ):
            # XIRR annualizes 364 days, so it sits slightly above 30
            assert abs(xirr - Decimal("30")) < Decimal("0.2")
            assert md == Decimal("30.00")
            assert twr == Decimal("30.00")

    def test_total_return(self, result):
        assert result.total_return_source == Decimal("30.00")
        assert result.total_return_home == Decimal("30.00")

    def test_complete(self, result):
        assert result.is_complete is True
        assert result.missing_prices == []
        assert result.cash_flow_count == 1


class TestStartValue:
    """Positions held at the prior year-end form the start value."""

    def test_prior_holdings_valued_at_prior_year_end(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", date(2024, 12, 31), 100)
        mock_provider.set_close("AAPL", "US", DEC_31, 110)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80)]

        result = service.calculate(usd_portfolio, txns, [], 2025)

        assert result.start_value_source == Decimal("1000.00")
        assert result.end_value_source == Decimal("1100.00")
        assert result.net_contributions_source == Decimal("0.00")
        assert result.modified_dietz_source == Decimal("10.00")
        assert result.twr_source == Decimal("10.00")
        assert result.total_return_source == Decimal("10.00")
        assert abs(result.xirr_source - Decimal("10")) < Decimal("0.1")
        assert result.cash_flow_count == 0

    def test_home_equals_source_when_same_currency(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", date(2024, 12, 31), 100)
        mock_provider.set_close("AAPL", "US", DEC_31, 110)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80)]

        result = service.calculate(usd_portfolio, txns, [], 2025)

        assert result.twr_home == result.twr_source
        assert result.end_value_home == result.end_value_source


class TestHomeCurrency:
    """Portfolios without a home currency fall back to the configured default."""

    @pytest.fixture
    def unset_portfolio(self):
        return Portfolio(id=3, user_id=1, name="Unset", currency="USD", home_currency=None)

    def test_default_home_currency_applies(self, resolver, mock_provider, unset_portfolio):
        mock_provider.set_close("AAPL", "US", date(2024, 12, 31), 100)
        mock_provider.set_close("AAPL", "US", DEC_31, 110)
        mock_provider.set_rate("USD", "TWD", date(2024, 12, 31), 30)
        mock_provider.set_rate("USD", "TWD", DEC_31, 30)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80)]

        service = YearPerformanceService(resolver, default_home_currency="twd")
        result = service.calculate(unset_portfolio, txns, [], 2025)

        assert result.home_currency == "TWD"
        assert result.end_value_home == Decimal("33000.00")

    def test_portfolio_currency_without_default(self, service, mock_provider, unset_portfolio):
        mock_provider.set_close("AAPL", "US", date(2024, 12, 31), 100)
        mock_provider.set_close("AAPL", "US", DEC_31, 110)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80)]

        result = service.calculate(unset_portfolio, txns, [], 2025)

        assert result.home_currency == "USD"
        assert result.end_value_home == result.end_value_source

    def test_portfolio_home_currency_wins_over_default(self, resolver, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", date(2024, 12, 31), 100)
        mock_provider.set_close("AAPL", "US", DEC_31, 110)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80)]

        service = YearPerformanceService(resolver, default_home_currency="TWD")
        result = service.calculate(usd_portfolio, txns, [], 2025)

        assert result.home_currency == "USD"


class TestInteriorFlows:
    """A dividend inside the year is a negative contribution."""

    def test_dividend(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", JAN_1, 100)
        mock_provider.set_close("AAPL", "US", date(2025, 6, 2), 110)
        mock_provider.set_close("AAPL", "US", DEC_31, 120)
        txns = [
            make_transaction(txn_date=JAN_1, quantity=10, price=100, id=1),
            make_transaction(TransactionType.DIVIDEND, date(2025, 6, 2), amount=50, id=2),
        ]

        result = service.calculate(usd_portfolio, txns, [], 2025)

        assert result.net_contributions_source == Decimal("950.00")
        # (1150 / 1000) x (1200 / 1100) - 1
        assert result.twr_source == Decimal("25.45")
        # (1200 - 950) / 950
        assert result.total_return_source == Decimal("26.32")
        assert result.cash_flow_count == 2

    def test_flows_outside_year_ignored(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", date(2024, 12, 31), 100)
        mock_provider.set_close("AAPL", "US", DEC_31, 100)
        txns = [
            make_transaction(txn_date=date(2024, 3, 1), quantity=10, price=90),
            make_transaction(TransactionType.DIVIDEND, date(2024, 9, 1), amount=50),
        ]

        result = service.calculate(usd_portfolio, txns, [], 2025)

        assert result.cash_flow_count == 0
        assert result.net_contributions_source == Decimal("0.00")


# =============================================================================
# MISSING DATA
# =============================================================================

class TestMissingPrices:
    """Unresolvable prices never raise; they are reported."""

    def test_missing_year_end_price(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", date(2024, 12, 31), 100)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80)]

        result = service.calculate(usd_portfolio, txns, [], 2025)

        assert result.is_complete is False
        assert result.missing_prices == [MissingPrice("AAPL", DEC_31, PriceType.YEAR_END)]
        assert result.end_value_source == Decimal("0.00")

    def test_missing_year_start_price(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", DEC_31, 110)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80)]

        result = service.calculate(usd_portfolio, txns, [], 2025)

        assert MissingPrice("AAPL", date(2024, 12, 31), PriceType.YEAR_START) in result.missing_prices

    def test_missing_valuation_disables_twr(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", DEC_31, 130)
        txns = [make_transaction(txn_date=date(2025, 3, 3), quantity=10, price=100)]

        result = service.calculate(usd_portfolio, txns, [], 2025)

        assert result.twr_source is None
        assert result.modified_dietz_source is not None
        assert result.missing_prices == [MissingPrice("AAPL", date(2025, 3, 3), PriceType.VALUATION)]

    def test_missing_items_not_duplicated_across_currencies(self, service, mock_provider, usd_twd_portfolio):
        mock_provider.set_rate("USD", "TWD", date(2024, 12, 31), 32)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80, exchange_rate=32)]

        result = service.calculate(usd_twd_portfolio, txns, [], 2025)

        assert len(result.missing_prices) == len(set(result.missing_prices))


class TestReferencePrices:
    """Caller-supplied boundary prices win over resolved ones."""

    def test_year_end_reference(self, service, mock_provider, usd_twd_portfolio):
        mock_provider.set_close("AAPL", "US", JAN_1, 100)
        mock_provider.set_rate("USD", "TWD", JAN_1, 30)
        txns = [make_transaction(txn_date=JAN_1, quantity=10, price=100, exchange_rate=30)]

        result = service.calculate(
            usd_twd_portfolio, txns, [], 2025,
            year_end_prices={"aapl": ReferencePrice(Decimal("130"), Decimal("30"))},
        )

        assert result.is_complete is True
        assert result.end_value_source == Decimal("1300.00")
        assert result.end_value_home == Decimal("39000.00")
        assert not any(call[3] == DEC_31 for call in mock_provider.calls)

    def test_year_start_reference(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", DEC_31, 110)
        txns = [make_transaction(txn_date=date(2024, 6, 3), quantity=10, price=80)]

        result = service.calculate(
            usd_portfolio, txns, [], 2025,
            year_start_prices={"AAPL": ReferencePrice(Decimal("100"))},
        )

        assert result.start_value_source == Decimal("1000.00")
        assert result.is_complete is True


# =============================================================================
# YEARS
# =============================================================================

class TestYears:
    """Tests for year validation and available years."""

    @pytest.mark.parametrize("year", [1999, FIXED_TODAY.year + 1])
    def test_year_out_of_range(self, service, usd_portfolio, year):
        with pytest.raises(ValidationError):
            service.calculate(usd_portfolio, [], [], year)

    def test_current_year_runs_to_today(self, service, mock_provider, usd_portfolio):
        mock_provider.set_close("AAPL", "US", date(2025, 12, 31), 100)
        mock_provider.set_close("AAPL", "US", FIXED_TODAY, 105)
        txns = [make_transaction(txn_date=date(2025, 6, 3), quantity=10, price=80)]

        result = service.calculate(usd_portfolio, txns, [], FIXED_TODAY.year)

        assert result.end_value_source == Decimal("1050.00")
        assert result.twr_source == Decimal("5.00")

    def test_available_years(self):
        txns = [
            make_transaction(txn_date=date(2023, 5, 1)),
            make_transaction(txn_date=date(2025, 2, 1)),
        ]

        years = get_available_years(txns, FIXED_TODAY)

        assert years.years == [2026, 2025, 2024, 2023]
        assert years.earliest_year == 2023
        assert years.current_year == 2026

    def test_available_years_empty_ledger(self, service):
        years = service.get_available_years([])

        assert years.years == [FIXED_TODAY.year]
        assert years.earliest_year is None
