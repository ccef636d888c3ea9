# portfolio_engine/services/market_data/stooq.py
"""
Stooq market data provider implementation.

Stooq publishes free daily history as CSV:

    https://stooq.com/q/d/l/?s=vwra.uk&d1=20231220&d2=20231231&i=d

    Date,Open,High,Low,Close,Volume
    2023-12-28,108.6,109.1,108.4,108.9,51234
    2023-12-29,108.9,109.3,108.7,109.02,40211

Symbols are lower-case with a market suffix (".us", ".uk", ".de", ...);
currency pairs are written as "usdtwd". An unknown symbol yields the body
"No data" with HTTP 200.

Stooq is the fallback when Yahoo has no bar for a date, and the primary
source for LSE-listed benchmark ETFs.
"""

import io
import logging
from datetime import date
from decimal import Decimal, InvalidOperation

import httpx
import pandas as pd

from portfolio_engine.services.constants import EXTERNAL_API_TIMEOUT_SECONDS, HUNDRED, SHARE_PRECISION
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

DEFAULT_BASE_URL = "https://stooq.com/q/d/l/"

# Stooq rejects requests without a browser-like agent
USER_AGENT = "Mozilla/5.0 (compatible; portfolio-engine/1.0)"


class StooqProvider(MarketDataProvider):
    """
    Stooq implementation of MarketDataProvider (CSV over HTTP).

    Configuration:
        base_url: Download endpoint (default: Stooq daily CSV)
        timeout: Request timeout in seconds
        client: Optional pre-built httpx.Client (tests inject a mock)

    Example:
        provider = StooqProvider()
        point = provider.get_month_end_price("VWRA", "UK", 2024, 12)
    """

    MARKET_SUFFIXES: dict[str, str] = {
        "US": ".us",
        "UK": ".uk",
        "DE": ".de",
        "FR": ".fr",
        "NL": ".nl",
        "JP": ".jp",
        "HK": ".hk",
        FX_MARKET: "",
    }

    # GBP lines on the LSE are quoted in pence
    PENCE_THRESHOLD: Decimal = Decimal("100")

    def __init__(
            self,
            base_url: str = DEFAULT_BASE_URL,
            timeout: int = EXTERNAL_API_TIMEOUT_SECONDS,
            client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._client = client or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        logger.info(f"StooqProvider initialized (timeout={timeout}s)")

    @property
    def name(self) -> str:
        return "stooq"

    def fx_ticker(self, base_currency: str, quote_currency: str) -> str:
        return f"{base_currency}{quote_currency}".lower()

    def close(self) -> None:
        self._client.close()

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
        Fetch daily OHLCV data from Stooq.

        Raises:
            TickerNotFoundError: Symbol unknown or market not covered by Stooq
            ProviderUnavailableError: Network error, 5xx, or malformed CSV
            RateLimitError: HTTP 429 or Stooq's daily hit limit
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
        ticker = ticker.strip().upper()
        market = market.strip().upper() if market else "US"
        symbol = self._build_stooq_symbol(ticker, market)

        params = {
            "s": symbol,
            "d1": start_date.strftime("%Y%m%d"),
            "d2": end_date.strftime("%Y%m%d"),
            "i": "d",
        }
        logger.debug(f"Fetching Stooq CSV for {symbol}: {start_date} to {end_date}")

        try:
            response = self._client.get(self._base_url, params=params)
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(provider=self.name, reason=f"timeout: {e}")
        except httpx.HTTPError as e:
            logger.error(f"Stooq request error for {symbol}: {e}")
            raise ProviderUnavailableError(provider=self.name, reason=str(e))

        if response.status_code == 429:
            raise RateLimitError(provider=self.name)
        if response.status_code >= 500:
            raise ProviderUnavailableError(
                provider=self.name,
                reason=f"HTTP {response.status_code}",
            )
        if response.status_code == 404:
            raise TickerNotFoundError(ticker=ticker, exchange=market, provider=self.name)
        if response.status_code >= 400:
            raise ProviderUnavailableError(
                provider=self.name,
                reason=f"HTTP {response.status_code}",
            )

        body = response.text.strip()
        if not body or body.lower().startswith("no data"):
            raise TickerNotFoundError(ticker=ticker, exchange=market, provider=self.name)
        if "exceeded the daily hits limit" in body.lower():
            raise RateLimitError(provider=self.name)

        try:
            prices = self._parse_csv(body, symbol)
        except (ValueError, TypeError, KeyError) as e:
            logger.error(f"Unparseable Stooq CSV for {symbol}: {e}")
            raise ProviderUnavailableError(provider=self.name, reason=f"malformed CSV: {e}")
        prices = [p for p in prices if start_date <= p.date <= end_date]

        logger.debug(f"Fetched {len(prices)} days for {symbol}")
        return HistoricalPricesResult(
            ticker=ticker,
            market=market,
            prices=prices,
            from_date=start_date,
            to_date=end_date,
        )

    def _parse_csv(self, body: str, symbol: str) -> list[OHLCVData]:
        """
        Parse a Stooq CSV payload into OHLCV bars.

        Raises:
            ProviderUnavailableError: Header is missing Date/Close
        """
        try:
            df = pd.read_csv(io.StringIO(body))
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise ProviderUnavailableError(provider=self.name, reason=f"malformed CSV: {e}")

        if "Date" not in df.columns or "Close" not in df.columns:
            raise ProviderUnavailableError(
                provider=self.name,
                reason=f"unexpected CSV header for {symbol}: {list(df.columns)}",
            )

        df["Date"] = pd.to_datetime(df["Date"], errors="coerce")
        df = df.dropna(subset=["Date", "Close"]).sort_values("Date")

        prices = []
        for _, row in df.iterrows():
            close_price = self._to_decimal(row["Close"])
            if close_price is None or close_price <= 0:
                continue
            open_price = self._to_decimal(row.get("Open")) or close_price
            high_price = self._to_decimal(row.get("High")) or close_price
            low_price = self._to_decimal(row.get("Low")) or close_price

            prices.append(OHLCVData(
                date=row["Date"].date(),
                open=open_price,
                high=max(high_price, close_price),
                low=min(low_price, close_price),
                close=close_price,
                volume=self._to_int(row.get("Volume")),
            ))

        return prices

    def _normalize_stock_price(self, value: Decimal, currency: str | None) -> Decimal:
        if currency == "GBP" and value > self.PENCE_THRESHOLD:
            return (value / HUNDRED).quantize(SHARE_PRECISION)
        return value

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _build_stooq_symbol(self, ticker: str, market: str) -> str:
        """
        Build Stooq symbol from ticker and market.

        Returns:
            Stooq symbol (e.g., "aapl.us", "vwra.uk", "usdtwd")

        Raises:
            TickerNotFoundError: Market has no Stooq listing (e.g. TW)
        """
        if market not in self.MARKET_SUFFIXES:
            raise TickerNotFoundError(ticker=ticker, exchange=market, provider=self.name)
        symbol = ticker.lower()
        suffix = self.MARKET_SUFFIXES[market]
        if suffix and symbol.endswith(suffix):
            return symbol
        return f"{symbol}{suffix}"

    @staticmethod
    def _to_decimal(value) -> Decimal | None:
        if value is None or pd.isna(value):
            return None
        try:
            return Decimal(str(value)).quantize(SHARE_PRECISION)
        except InvalidOperation:
            return None

    @staticmethod
    def _to_int(value) -> int | None:
        if value is None:
            return None
        try:
            if pd.isna(value):
                return None
            return int(float(value))
        except (TypeError, ValueError):
            return None
