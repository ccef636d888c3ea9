# portfolio_engine/services/market_data/base.py
"""
Abstract interface for market data providers.

This module defines the contract that all market data providers must follow.
Providers only need to implement `get_historical_prices` (a daily OHLCV
window) and say how they spell an FX pair; the point lookups the engine
actually consumes are built on top of that window:

    get_stock_price(ticker, market, on_date)       nearest close on/before on_date
    get_exchange_rate(base, quote, on_date)        nearest FX close on/before on_date
    get_month_end_price(symbol, market, year, m)   last close of a calendar month

A point lookup returns None when the window holds no data. Errors are raised
as MarketDataError subclasses; the resolution service catches them per
provider and moves on to the next one in the chain.

Retry Behavior:
    `_execute_with_retry` wraps provider I/O with tenacity exponential
    backoff. Only ProviderUnavailableError and RateLimitError are retried.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import TypeVar, Callable, Any

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from portfolio_engine.services.constants import MONTH_END_LOOKBACK_DAYS, PRICE_LOOKBACK_DAYS
from portfolio_engine.services.exceptions import (
    ProviderUnavailableError,
    RateLimitError,
)
from portfolio_engine.utils.dates import month_end

logger = logging.getLogger(__name__)

# Type variable for generic return type in retry method
T = TypeVar('T')

# Pseudo-market used for currency pairs
FX_MARKET = "FX"

# Listing currency by market code
MARKET_CURRENCIES: dict[str, str] = {
    "US": "USD",
    "UK": "GBP",
    "TW": "TWD",
    "DE": "EUR",
    "FR": "EUR",
    "NL": "EUR",
    "JP": "JPY",
    "HK": "HKD",
}

# LSE lines that trade in USD rather than GBP (mostly Vanguard/iShares UCITS ETFs)
USD_DENOMINATED_LSE_TICKERS: frozenset[str] = frozenset({
    "VWRA", "VWRD", "VWRL",
    "VUAA", "VUSA",
    "VHVE", "VHVG",
    "VEUR", "VERX", "VEUA",
    "VFEM", "VFEG",
    "VJPA", "VJPN",
    "SWDA", "IWDA",
    "CSPX",
    "EIMI", "EMIM",
    "XRSU", "EXUS",
    "HCHA",
    "WSML",
})


def listing_currency(ticker: str, market: str) -> str | None:
    """
    Currency a listing trades in.

    UK defaults to GBP except for the USD-denominated ETFs above.
    A ".L" suffix on the ticker is ignored.
    """
    market = (market or "").strip().upper()
    if market == "UK":
        base_ticker = ticker.strip().upper().removesuffix(".L")
        if base_ticker in USD_DENOMINATED_LSE_TICKERS:
            return "USD"
    return MARKET_CURRENCIES.get(market)


# =============================================================================
# DATA CLASSES - PRICE DATA (OHLCV)
# =============================================================================

@dataclass(frozen=True)
class OHLCVData:
    """
    Single day's OHLCV (Open, High, Low, Close, Volume) price data.

    Attributes:
        date: Trading date (no time component)
        open: Opening price
        high: Highest price during the day
        low: Lowest price during the day
        close: Closing price (primary valuation price)
        volume: Trading volume (number of shares traded)
        adjusted_close: Close price adjusted for splits/dividends (optional)
    """

    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int | None = None
    adjusted_close: Decimal | None = None

    def __post_init__(self) -> None:
        if self.close <= 0:
            raise ValueError(f"close price must be positive, got {self.close}")
        if self.high < self.low:
            raise ValueError(f"high ({self.high}) cannot be less than low ({self.low})")


@dataclass
class HistoricalPricesResult:
    """
    Result of fetching a window of daily prices for one symbol.

    Attributes:
        ticker: The ticker symbol requested
        market: The market code requested
        prices: List of OHLCV data points (empty if nothing was published)
        from_date: Requested start date
        to_date: Requested end date
        actual_from_date: Earliest date in returned data
        actual_to_date: Latest date in returned data
    """

    ticker: str
    market: str
    prices: list[OHLCVData] = field(default_factory=list)
    from_date: date | None = None
    to_date: date | None = None
    actual_from_date: date | None = None
    actual_to_date: date | None = None

    def __post_init__(self) -> None:
        if self.prices and self.actual_from_date is None:
            self.actual_from_date = min(p.date for p in self.prices)
        if self.prices and self.actual_to_date is None:
            self.actual_to_date = max(p.date for p in self.prices)

    @property
    def days_fetched(self) -> int:
        return len(self.prices)

    def latest_on_or_before(self, target: date) -> OHLCVData | None:
        """Most recent bar dated on/before target, or None."""
        candidates = [p for p in self.prices if p.date <= target]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.date)


@dataclass(frozen=True)
class PricePoint:
    """
    A single resolved value from a provider.

    Attributes:
        value: Close price or exchange rate
        actual_date: Trading day the value belongs to (may precede the request)
        currency: Currency the value is quoted in
        source: Provider name
    """

    value: Decimal
    actual_date: date
    currency: str | None
    source: str


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class MarketDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Retry Behavior:
        Subclasses can override the retry configuration by setting class
        attributes:

        - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
        - RETRY_MIN_WAIT: Minimum wait in seconds (default: 1)
        - RETRY_MAX_WAIT: Maximum wait in seconds (default: 10)
        - RETRY_MULTIPLIER: Exponential multiplier (default: 1)

    Retryable Exceptions:
        - ProviderUnavailableError: Network issues, timeouts, server errors
        - RateLimitError: API rate limit exceeded

    Non-Retryable Exceptions:
        - TickerNotFoundError: Permanent failure (symbol doesn't exist)
    """

    # =========================================================================
    # RETRY CONFIGURATION (can be overridden by subclasses)
    # =========================================================================

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    # =========================================================================
    # ABSTRACT PROPERTIES AND METHODS
    # =========================================================================

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this provider.

        Stored as the `source` of every snapshot the provider supplies.

        Returns:
            Provider name (e.g., "yahoo", "stooq")
        """
        pass

    @abstractmethod
    def get_historical_prices(
            self,
            ticker: str,
            market: str,
            start_date: date,
            end_date: date,
    ) -> HistoricalPricesResult:
        """
        Fetch daily OHLCV data for a single symbol.

        Args:
            ticker: Trading symbol (e.g., "AAPL", "VWRA", "USDTWD")
            market: Market code (e.g., "US", "UK", "TW") or FX_MARKET
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            HistoricalPricesResult (empty prices if nothing was published)

        Raises:
            TickerNotFoundError: Symbol unknown to the provider
            ProviderUnavailableError: Network or API error (retryable)
            RateLimitError: Rate limit exceeded (retryable)
        """
        pass

    @abstractmethod
    def fx_ticker(self, base_currency: str, quote_currency: str) -> str:
        """
        Provider spelling of a currency pair (1 base = X quote).

        The result is passed to get_historical_prices with FX_MARKET.
        """
        pass

    # =========================================================================
    # POINT LOOKUPS (built on get_historical_prices)
    # =========================================================================

    def get_stock_price(
            self,
            ticker: str,
            market: str,
            on_date: date,
            lookback_days: int = PRICE_LOOKBACK_DAYS,
    ) -> PricePoint | None:
        """
        Closing price on the nearest trading day on/before on_date.

        Args:
            ticker: Trading symbol
            market: Market code
            on_date: Requested date
            lookback_days: How far back a trading day may be

        Returns:
            PricePoint, or None if no bar exists in the window
        """
        result = self.get_historical_prices(
            ticker, market, on_date - timedelta(days=lookback_days), on_date
        )
        bar = result.latest_on_or_before(on_date)
        if bar is None:
            return None

        currency = listing_currency(ticker, market)
        return PricePoint(
            value=self._normalize_stock_price(bar.close, currency),
            actual_date=bar.date,
            currency=currency,
            source=self.name,
        )

    def get_exchange_rate(
            self,
            base_currency: str,
            quote_currency: str,
            on_date: date,
            lookback_days: int = PRICE_LOOKBACK_DAYS,
    ) -> PricePoint | None:
        """
        FX close (1 base = X quote) on the nearest trading day on/before on_date.

        Returns:
            PricePoint quoted in quote_currency, or None if no bar exists
        """
        symbol = self.fx_ticker(base_currency, quote_currency)
        result = self.get_historical_prices(
            symbol, FX_MARKET, on_date - timedelta(days=lookback_days), on_date
        )
        bar = result.latest_on_or_before(on_date)
        if bar is None:
            return None

        return PricePoint(
            value=bar.close,
            actual_date=bar.date,
            currency=quote_currency,
            source=self.name,
        )

    def get_month_end_price(
            self,
            symbol: str,
            market: str,
            year: int,
            month: int,
    ) -> PricePoint | None:
        """
        Last close of a calendar month.

        Searches the final MONTH_END_LOOKBACK_DAYS days of the month, so a
        month ending on a weekend or holiday still resolves.
        """
        last_day = month_end(year, month)
        result = self.get_historical_prices(
            symbol, market, last_day - timedelta(days=MONTH_END_LOOKBACK_DAYS), last_day
        )
        bar = result.latest_on_or_before(last_day)
        if bar is None:
            return None

        return PricePoint(
            value=bar.close,
            actual_date=bar.date,
            currency=listing_currency(symbol, market),
            source=self.name,
        )

    def _normalize_stock_price(self, value: Decimal, currency: str | None) -> Decimal:
        """Hook for providers that quote some currencies in minor units."""
        return value

    # =========================================================================
    # RETRY HELPER METHOD
    # =========================================================================

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Execute a function with retry logic for transient failures.

        Uses exponential backoff for retryable exceptions:
        - ProviderUnavailableError
        - RateLimitError

        Does NOT retry on:
        - TickerNotFoundError (permanent failure)
        - Other exceptions

        Args:
            func: Function to execute
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Return value of func

        Raises:
            The last exception if all retries fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((ProviderUnavailableError, RateLimitError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()
