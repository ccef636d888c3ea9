# portfolio_engine/services/market_data/yahoo.py
"""
Yahoo Finance market data provider implementation.

This module implements the MarketDataProvider interface using the yfinance library.
Yahoo Finance is a free data source suitable for personal/educational use.

Key features:
- Market code mapping (our codes → Yahoo's ticker suffixes)
- FX pairs via Yahoo's "<BASE><QUOTE>=X" symbols
- Comprehensive error handling
- Retry mechanism inherited from base class

Limitations:
- Rate limits (not officially documented, but exist)
- London listings may be quoted in pence for GBP lines
"""

import logging
import math
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import yfinance as yf

from portfolio_engine.services.constants import SHARE_PRECISION
from portfolio_engine.services.exceptions import (
    ProviderUnavailableError,
    TickerNotFoundError,
    RateLimitError,
)
from portfolio_engine.services.market_data.base import (
    FX_MARKET,
    MarketDataProvider,
    OHLCVData,
    HistoricalPricesResult,
)

logger = logging.getLogger(__name__)


class YahooFinanceProvider(MarketDataProvider):
    """
    Yahoo Finance implementation of MarketDataProvider.

    Configuration:
        timeout: API request timeout in seconds (default: 10)

    Retry Behavior (inherited from MarketDataProvider):
        - Retries on ProviderUnavailableError and RateLimitError
        - Does NOT retry on TickerNotFoundError (permanent failure)
        - Uses exponential backoff: 1s → 2s → 4s

    Example:
        provider = YahooFinanceProvider(timeout=15)

        point = provider.get_stock_price("2330", "TW", date(2024, 12, 31))
        rate = provider.get_exchange_rate("USD", "TWD", date(2024, 12, 31))
    """

    # =========================================================================
    # MARKET MAPPING
    # =========================================================================
    # US listings use no suffix; FX symbols already carry "=X".

    MARKET_SUFFIXES: dict[str, str] = {
        "US": "",
        "UK": ".L",
        "TW": ".TW",
        "DE": ".DE",
        "FR": ".PA",
        "NL": ".AS",
        "JP": ".T",
        "HK": ".HK",
        FX_MARKET: "",
    }

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def __init__(self, timeout: int = 10) -> None:
        """
        Initialize the Yahoo Finance provider.

        Args:
            timeout: Request timeout in seconds
        """
        self._timeout = timeout
        logger.info(f"YahooFinanceProvider initialized (timeout={timeout}s)")

    @property
    def name(self) -> str:
        return "yahoo"

    def fx_ticker(self, base_currency: str, quote_currency: str) -> str:
        return f"{base_currency.upper()}{quote_currency.upper()}=X"

    # =========================================================================
    # HISTORICAL PRICE METHODS
    # =========================================================================

    def get_historical_prices(
            self,
            ticker: str,
            market: str,
            start_date: date,
            end_date: date,
    ) -> HistoricalPricesResult:
        """
        Fetch historical OHLCV price data from Yahoo Finance.

        Args:
            ticker: Trading symbol (e.g., "AAPL", "USDTWD=X")
            market: Market code (e.g., "US", "TW") or FX_MARKET
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            HistoricalPricesResult with OHLCV data

        Raises:
            TickerNotFoundError: If ticker not found
            ProviderUnavailableError: If Yahoo Finance unavailable
        """
        return self._execute_with_retry(
            self._fetch_historical_prices,
            ticker,
            market,
            start_date,
            end_date,
        )

    def _fetch_historical_prices(
            self,
            ticker: str,
            market: str,
            start_date: date,
            end_date: date,
    ) -> HistoricalPricesResult:
        """Internal method to fetch historical prices."""
        ticker = ticker.strip().upper()
        market = market.strip().upper() if market else "US"

        yahoo_symbol = self._build_yahoo_symbol(ticker, market)

        logger.debug(
            f"Fetching historical prices for {yahoo_symbol}: "
            f"{start_date} to {end_date}"
        )

        result = HistoricalPricesResult(
            ticker=ticker,
            market=market,
            from_date=start_date,
            to_date=end_date,
        )

        try:
            yf_ticker = yf.Ticker(yahoo_symbol)

            # Yahoo Finance end date is exclusive, so add 1 day
            yahoo_end = end_date + timedelta(days=1)

            df = yf_ticker.history(
                start=start_date.isoformat(),
                end=yahoo_end.isoformat(),
                interval="1d",
                auto_adjust=False,  # Raw closes; split adjustment is done by the engine
                timeout=self._timeout,
            )

            if df is None or df.empty:
                logger.warning(
                    f"No price data for {yahoo_symbol} "
                    f"between {start_date} and {end_date}"
                )
                return result

            prices = self._dataframe_to_ohlcv(df)
            result.prices = prices

            if prices:
                result.actual_from_date = min(p.date for p in prices)
                result.actual_to_date = max(p.date for p in prices)

            logger.debug(f"Fetched {len(prices)} days for {yahoo_symbol}")

            return result

        except Exception as e:
            error_str = str(e).lower()

            if "not found" in error_str or "delisted" in error_str or "no data" in error_str:
                raise TickerNotFoundError(
                    ticker=ticker,
                    exchange=market,
                    provider=self.name,
                )

            if "rate limit" in error_str or "too many requests" in error_str:
                raise RateLimitError(provider=self.name)

            logger.error(f"Yahoo Finance error for {yahoo_symbol}: {e}")
            raise ProviderUnavailableError(
                provider=self.name,
                reason=str(e),
            )

    def _dataframe_to_ohlcv(self, df) -> list[OHLCVData]:
        """
        Convert a pandas DataFrame from yfinance to list of OHLCVData.

        Args:
            df: DataFrame with columns: Open, High, Low, Close, Volume, Adj Close

        Returns:
            List of OHLCVData objects
        """
        prices = []

        for idx, row in df.iterrows():
            price_date = idx.date() if hasattr(idx, 'date') else idx

            close_price = self._to_decimal(row.get('Close'))
            if close_price is None or close_price <= 0:
                logger.warning(f"Skipping {price_date}: missing close price")
                continue

            # Use close price as fallback for missing OHLC
            open_price = self._to_decimal(row.get('Open')) or close_price
            high_price = self._to_decimal(row.get('High')) or close_price
            low_price = self._to_decimal(row.get('Low')) or close_price

            try:
                prices.append(OHLCVData(
                    date=price_date,
                    open=open_price,
                    high=max(high_price, close_price),
                    low=min(low_price, close_price),
                    close=close_price,
                    volume=self._to_int(row.get('Volume')),
                    adjusted_close=self._to_decimal(row.get('Adj Close')),
                ))
            except ValueError as e:
                logger.warning(f"Error parsing row {idx}: {e}")

        return prices

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return Decimal(str(value)).quantize(SHARE_PRECISION)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _to_int(value: Any) -> int | None:
        """Convert a value to int, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return int(value)
        except (TypeError, ValueError):
            return None

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _build_yahoo_symbol(self, ticker: str, market: str) -> str:
        """
        Build Yahoo Finance symbol from ticker and market.

        Returns:
            Yahoo Finance symbol (e.g., "AAPL", "2330.TW", "VWRA.L")

        Raises:
            TickerNotFoundError: Market has no Yahoo mapping
        """
        if market not in self.MARKET_SUFFIXES:
            raise TickerNotFoundError(ticker=ticker, exchange=market, provider=self.name)
        suffix = self.MARKET_SUFFIXES[market]
        if suffix and ticker.endswith(suffix.upper()):
            return ticker
        return f"{ticker}{suffix}"
