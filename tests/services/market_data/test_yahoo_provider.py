# tests/services/market_data/test_yahoo_provider.py
"""
Tests for YahooFinanceProvider.

yfinance is patched; no network access.

Test Coverage:
- Symbol building per market and FX symbols
- DataFrame parsing (raw closes, NaN handling)
- get_stock_price / get_exchange_rate / get_month_end_price
- Error mapping
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from portfolio_engine.services.exceptions import (
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
)
from portfolio_engine.services.market_data.base import FX_MARKET
from portfolio_engine.services.market_data.yahoo import YahooFinanceProvider


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def provider():
    """YahooFinanceProvider with a single attempt (no retry sleeps)."""
    yahoo = YahooFinanceProvider(timeout=10)
    yahoo.MAX_RETRY_ATTEMPTS = 1
    return yahoo


@pytest.fixture
def sample_dataframe():
    """Create sample DataFrame like yfinance returns."""
    dates = pd.date_range(start='2024-12-23', periods=5, freq='B')  # Mon 23 .. Fri 27
    return pd.DataFrame({
        'Open': [100.0, 101.0, 102.0, 103.0, 104.0],
        'High': [101.0, 102.0, 103.0, 104.0, 105.0],
        'Low': [99.0, 100.0, 101.0, 102.0, 103.0],
        'Close': [100.5, 101.5, 102.5, 103.5, 104.5],
        'Volume': [1000, 1100, 900, 1200, 1150],
        'Adj Close': [100.0, 101.0, 102.0, 103.0, 104.0],
    }, index=dates)


def _mock_ticker(df):
    ticker = MagicMock()
    ticker.history.return_value = df
    return ticker


# =============================================================================
# SYMBOLS
# =============================================================================

class TestSymbols:
    """Tests for Yahoo symbol construction."""

    @pytest.mark.parametrize("ticker,market,expected", [
        ("AAPL", "US", "AAPL"),
        ("2330", "TW", "2330.TW"),
        ("VWRA", "UK", "VWRA.L"),
        ("VWRA.L", "UK", "VWRA.L"),
        ("SAP", "DE", "SAP.DE"),
        ("7203", "JP", "7203.T"),
    ])
    def test_build_symbol(self, provider, ticker, market, expected):
        assert provider._build_yahoo_symbol(ticker, market) == expected

    def test_unknown_market_raises(self, provider):
        with pytest.raises(TickerNotFoundError):
            provider._build_yahoo_symbol("ABC", "XX")

    def test_fx_ticker(self, provider):
        assert provider.fx_ticker("usd", "twd") == "USDTWD=X"


# =============================================================================
# HISTORICAL PRICES
# =============================================================================

class TestHistoricalPrices:
    """Tests for get_historical_prices."""

    def test_parses_raw_closes(self, provider, sample_dataframe):
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_cls.return_value = _mock_ticker(sample_dataframe)

            result = provider.get_historical_prices("AAPL", "US", date(2024, 12, 23), date(2024, 12, 27))

        assert result.days_fetched == 5
        assert result.prices[0].close == Decimal("100.5")
        assert result.prices[0].adjusted_close == Decimal("100")
        assert result.actual_to_date == date(2024, 12, 27)

    def test_requests_unadjusted_history_with_exclusive_end(self, provider, sample_dataframe):
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_ticker = _mock_ticker(sample_dataframe)
            mock_cls.return_value = mock_ticker

            provider.get_historical_prices("2330", "TW", date(2024, 12, 23), date(2024, 12, 27))

        mock_cls.assert_called_once_with("2330.TW")
        kwargs = mock_ticker.history.call_args.kwargs
        assert kwargs["end"] == "2024-12-28"
        assert kwargs["auto_adjust"] is False

    def test_empty_dataframe_returns_empty_result(self, provider):
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_cls.return_value = _mock_ticker(pd.DataFrame())

            result = provider.get_historical_prices("AAPL", "US", date(2024, 12, 23), date(2024, 12, 27))

        assert result.days_fetched == 0

    def test_rows_without_close_are_skipped(self, provider, sample_dataframe):
        sample_dataframe.loc[sample_dataframe.index[1], 'Close'] = float('nan')
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_cls.return_value = _mock_ticker(sample_dataframe)

            result = provider.get_historical_prices("AAPL", "US", date(2024, 12, 23), date(2024, 12, 27))

        assert result.days_fetched == 4


# =============================================================================
# POINT LOOKUPS
# =============================================================================

class TestPointLookups:
    """Tests for the nearest-trading-day helpers on the base class."""

    def test_stock_price_uses_latest_bar(self, provider, sample_dataframe):
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_cls.return_value = _mock_ticker(sample_dataframe)

            point = provider.get_stock_price("AAPL", "US", date(2024, 12, 29))

        assert point.value == Decimal("104.5")
        assert point.actual_date == date(2024, 12, 27)
        assert point.currency == "USD"
        assert point.source == "yahoo"

    def test_exchange_rate_uses_fx_symbol(self, provider, sample_dataframe):
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_cls.return_value = _mock_ticker(sample_dataframe)

            point = provider.get_exchange_rate("USD", "TWD", date(2024, 12, 27))

        mock_cls.assert_called_once_with("USDTWD=X")
        assert point.currency == "TWD"

    def test_month_end_price(self, provider, sample_dataframe):
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_ticker = _mock_ticker(sample_dataframe)
            mock_cls.return_value = mock_ticker

            point = provider.get_month_end_price("VWRA", "UK", 2024, 12)

        assert point.actual_date == date(2024, 12, 27)
        assert mock_ticker.history.call_args.kwargs["start"] == "2024-12-24"

    def test_no_bar_returns_none(self, provider):
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_cls.return_value = _mock_ticker(pd.DataFrame())

            assert provider.get_exchange_rate("USD", "TWD", date(2024, 12, 27)) is None

    def test_fx_market_has_no_suffix(self, provider):
        assert provider._build_yahoo_symbol("USDTWD=X", FX_MARKET) == "USDTWD=X"


# =============================================================================
# ERROR HANDLING
# =============================================================================

class TestErrorHandling:
    """Tests for exception mapping."""

    @pytest.mark.parametrize("message,expected", [
        ("No data found, symbol may be delisted", TickerNotFoundError),
        ("Too Many Requests. Rate limited.", RateLimitError),
        ("Connection reset by peer", ProviderUnavailableError),
    ])
    def test_maps_yfinance_errors(self, provider, message, expected):
        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_cls.return_value.history.side_effect = Exception(message)

            with pytest.raises(expected):
                provider.get_historical_prices("AAPL", "US", date(2024, 12, 23), date(2024, 12, 27))

    def test_transient_error_is_retried(self, sample_dataframe):
        yahoo = YahooFinanceProvider(timeout=10)
        yahoo.RETRY_MIN_WAIT = 0
        yahoo.RETRY_MAX_WAIT = 0
        yahoo.RETRY_MULTIPLIER = 0

        with patch("portfolio_engine.services.market_data.yahoo.yf.Ticker") as mock_cls:
            mock_cls.return_value.history.side_effect = [Exception("Connection reset"), sample_dataframe]

            result = yahoo.get_historical_prices("AAPL", "US", date(2024, 12, 23), date(2024, 12, 27))

        assert result.days_fetched == 5
