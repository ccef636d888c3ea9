# portfolio_engine/services/price_resolution.py
"""
FX & price resolution with layered positive and negative caching.

Every historical stock price and exchange rate the engine needs goes through
PriceResolutionService. A lookup is resolved in this order:

    1. Exact-date cache (PriceSnapshot)
       - positive row  -> returned, no provider call
       - negative row  -> "not available", no provider call
    2. Year-end cache (YearEndSnapshot), only when the date is Dec-31 of a
       completed calendar year
    3. Cache re-check, then the provider chain (Yahoo, then Stooq), each
       returning the nearest trading-day value on/before the date
    4. Persist the outcome:
       - success -> positive snapshot (+ year-end row for a completed Dec-31)
       - failure -> negative marker, only if the date is old enough

Cache rules:
    - Same-currency rates are 1 and never cached or fetched
    - Nothing is written for dates on/after today (close not final)
    - The current calendar year is never written to the year-end cache
    - Automatic writes are insert-or-ignore; only manual overrides replace rows

Provider failures are caught per provider and logged; a lookup that fails on
every provider returns a ResolvedValue with value=None. Callers record that
as a missing item rather than raising.

Usage:
    resolver = PriceResolutionService(SqlSnapshotRepository(db), [yahoo, stooq])
    rate = resolver.get_exchange_rate("USD", "TWD", date(2024, 12, 31))
    if rate.is_available:
        twd = usd_amount * rate.value
"""

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from portfolio_engine.models import SnapshotKind
from portfolio_engine.services.constants import (
    MANUAL_SOURCE,
    MIN_SUPPORTED_YEAR,
    NEGATIVE_CACHE_MIN_AGE_DAYS,
    ONE,
    PRICE_LOOKBACK_DAYS,
    SHARE_PRECISION,
    ZERO,
)
from portfolio_engine.services.exceptions import (
    FXRateNotFoundError,
    MarketDataError,
    OperationCancelledError,
    SnapshotConflictError,
    ValidationError,
)
from portfolio_engine.services.market_data.base import MarketDataProvider, PricePoint
from portfolio_engine.services.snapshot_repository import SnapshotRepository, SnapshotValues
from portfolio_engine.utils.dates import is_completed_year_end, year_end

logger = logging.getLogger(__name__)

# Exchange-rate snapshots are not tied to a listing market
FX_SNAPSHOT_MARKET = ""

IDENTITY_SOURCE = "identity"

MAX_TICKER_LENGTH = 20


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ResolvedValue:
    """
    Outcome of a price or FX lookup.

    Attributes:
        key: Ticker or currency pair (e.g. "AAPL", "USDTWD")
        requested_date: Date that was asked for
        value: Price or rate, None when nothing could be resolved
        currency: Currency the value is quoted in
        actual_date: Trading day the value belongs to (may precede requested_date)
        source: "yahoo", "stooq", "manual", "identity" (None if unresolved)
        from_cache: True if no provider was contacted
    """

    key: str
    requested_date: date
    value: Decimal | None
    currency: str | None = None
    actual_date: date | None = None
    source: str | None = None
    from_cache: bool = False

    @property
    def is_available(self) -> bool:
        return self.value is not None


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def normalize_currency(code: str, field: str = "currency") -> str:
    """
    Upper-case and validate an ISO 4217 currency code.

    Raises:
        ValidationError: Not exactly three letters
    """
    normalized = (code or "").strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValidationError(f"Invalid currency code: '{code}'", field=field)
    return normalized


def normalize_ticker(ticker: str, field: str = "ticker") -> str:
    normalized = (ticker or "").strip().upper()
    if not normalized:
        raise ValidationError("Ticker is required", field=field)
    if len(normalized) > MAX_TICKER_LENGTH:
        raise ValidationError(
            f"Ticker '{normalized}' exceeds {MAX_TICKER_LENGTH} characters",
            field=field,
        )
    return normalized


def _require_positive(value: Decimal, field: str) -> Decimal:
    value = Decimal(value)
    if value <= ZERO:
        raise ValidationError(f"{field} must be positive, got {value}", field=field)
    return value


def _check_cancelled(cancel_event: threading.Event | None, operation: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(operation)


# =============================================================================
# SERVICE
# =============================================================================

class PriceResolutionService:
    """
    Get-or-fetch resolution of historical prices and exchange rates.

    Args:
        repository: Snapshot cache (SqlSnapshotRepository in production)
        providers: Ordered provider chain; the first non-empty answer wins
        lookback_days: Nearest-trading-day window passed to providers
        negative_cache_min_age_days: Misses younger than this are not cached
        today_provider: Returns "today" (injectable for tests)
    """

    def __init__(
            self,
            repository: SnapshotRepository,
            providers: Sequence[MarketDataProvider],
            lookback_days: int = PRICE_LOOKBACK_DAYS,
            negative_cache_min_age_days: int = NEGATIVE_CACHE_MIN_AGE_DAYS,
            today_provider: Callable[[], date] = date.today,
    ) -> None:
        self._repository = repository
        self._providers = list(providers)
        self._lookback_days = lookback_days
        self._negative_min_age = timedelta(days=negative_cache_min_age_days)
        self._today = today_provider

        logger.info(
            f"PriceResolutionService initialized "
            f"(providers={[p.name for p in self._providers]}, "
            f"lookback={lookback_days}d, negative_min_age={negative_cache_min_age_days}d)"
        )

    def today(self) -> date:
        return self._today()

    # =========================================================================
    # PUBLIC API - EXCHANGE RATES
    # =========================================================================

    def get_exchange_rate(
            self,
            base_currency: str,
            quote_currency: str,
            on_date: date,
            manual_rate: Decimal | None = None,
            cancel_event: threading.Event | None = None,
    ) -> ResolvedValue:
        """
        Rate for 1 base_currency = X quote_currency on on_date.

        Args:
            base_currency: e.g. "USD"
            quote_currency: e.g. "TWD"
            on_date: Requested date; the nearest earlier trading day is used
            manual_rate: Used (and persisted as "manual") if nothing is cached
            cancel_event: Aborts before any provider call or write when set

        Returns:
            ResolvedValue (value None if no provider has the pair)

        Raises:
            ValidationError: Malformed currency code or non-positive manual rate
            OperationCancelledError: cancel_event was set
        """
        base = normalize_currency(base_currency, "base_currency")
        quote = normalize_currency(quote_currency, "quote_currency")
        if manual_rate is not None:
            manual_rate = _require_positive(manual_rate, "manual_rate")

        if base == quote:
            return ResolvedValue(
                key=f"{base}{quote}",
                requested_date=on_date,
                value=ONE,
                currency=quote,
                actual_date=on_date,
                source=IDENTITY_SOURCE,
                from_cache=True,
            )

        return self._get_or_fetch(
            kind=SnapshotKind.EXCHANGE_RATE,
            key=f"{base}{quote}",
            market=FX_SNAPSHOT_MARKET,
            on_date=on_date,
            currency=quote,
            fetch=lambda provider: provider.get_exchange_rate(base, quote, on_date, self._lookback_days),
            manual_value=manual_rate,
            cancel_event=cancel_event,
        )

    def get_year_end_rate(
            self,
            base_currency: str,
            quote_currency: str,
            year: int,
            cancel_event: threading.Event | None = None,
    ) -> ResolvedValue:
        return self.get_exchange_rate(base_currency, quote_currency, year_end(year), cancel_event=cancel_event)

    def save_manual_exchange_rate(
            self,
            base_currency: str,
            quote_currency: str,
            on_date: date,
            rate: Decimal,
            replace: bool = False,
    ) -> ResolvedValue:
        """
        Persist a user-supplied rate as an authoritative snapshot.

        Raises:
            ValidationError: Bad currency, non-positive rate, same currency, future date
            SnapshotConflictError: A positive snapshot exists and replace is False
        """
        base = normalize_currency(base_currency, "base_currency")
        quote = normalize_currency(quote_currency, "quote_currency")
        rate = _require_positive(rate, "rate")
        if base == quote:
            raise ValidationError("Base and quote currency must differ", field="quote_currency")

        return self._save_manual(
            kind=SnapshotKind.EXCHANGE_RATE,
            key=f"{base}{quote}",
            market=FX_SNAPSHOT_MARKET,
            on_date=on_date,
            value=rate,
            currency=quote,
            replace=replace,
        )

    def convert_amount(
            self,
            amount: Decimal,
            from_currency: str,
            to_currency: str,
            on_date: date,
    ) -> Decimal:
        """
        Convert an amount using the resolved rate on on_date.

        Raises:
            FXRateNotFoundError: No rate could be resolved
        """
        resolved = self.get_exchange_rate(from_currency, to_currency, on_date)
        if not resolved.is_available:
            raise FXRateNotFoundError(from_currency.upper(), to_currency.upper(), on_date)
        return amount * resolved.value

    # =========================================================================
    # PUBLIC API - STOCK PRICES
    # =========================================================================

    def get_stock_price(
            self,
            ticker: str,
            market: str,
            on_date: date,
            manual_price: Decimal | None = None,
            cancel_event: threading.Event | None = None,
    ) -> ResolvedValue:
        """
        Closing price of ticker on the nearest trading day on/before on_date.

        Raises:
            ValidationError: Empty ticker or non-positive manual price
            OperationCancelledError: cancel_event was set
        """
        ticker = normalize_ticker(ticker)
        market = (market or "US").strip().upper()
        if manual_price is not None:
            manual_price = _require_positive(manual_price, "manual_price")

        return self._get_or_fetch(
            kind=SnapshotKind.STOCK_PRICE,
            key=ticker,
            market=market,
            on_date=on_date,
            currency=None,
            fetch=lambda provider: provider.get_stock_price(ticker, market, on_date, self._lookback_days),
            manual_value=manual_price,
            cancel_event=cancel_event,
        )

    def get_year_end_price(
            self,
            ticker: str,
            market: str,
            year: int,
            cancel_event: threading.Event | None = None,
    ) -> ResolvedValue:
        return self.get_stock_price(ticker, market, year_end(year), cancel_event=cancel_event)

    def save_manual_year_end_price(
            self,
            ticker: str,
            market: str,
            year: int,
            price: Decimal,
            currency: str,
            replace: bool = False,
    ) -> ResolvedValue:
        """
        Record a year-end close the providers cannot supply (e.g. a delisted line).

        Stored in the year-end cache with source "manual"; Dec-31 lookups for
        the ticker then resolve from it.

        Raises:
            ValidationError: Bad input, or the year has not finished yet
            SnapshotConflictError: A positive value exists and replace is False
        """
        ticker = normalize_ticker(ticker)
        market = (market or "US").strip().upper()
        price = _require_positive(price, "price")
        currency = normalize_currency(currency)
        return self._save_manual_year_end(SnapshotKind.STOCK_PRICE, ticker, market, year, price, currency, replace)

    # =========================================================================
    # PUBLIC API - BENCHMARKS
    # =========================================================================

    def save_manual_benchmark_price(
            self,
            symbol: str,
            market: str,
            year: int,
            price: Decimal,
            currency: str,
            replace: bool = False,
    ) -> ResolvedValue:
        """
        Record a benchmark's December close by hand.

        Replaces a "not available" marker, so a benchmark no provider covers
        gets a return once both of its year-end closes are entered.

        Raises:
            ValidationError: Bad input, or the year has not finished yet
            SnapshotConflictError: A positive value exists and replace is False
        """
        symbol = normalize_ticker(symbol, "symbol")
        market = (market or "US").strip().upper()
        price = _require_positive(price, "price")
        currency = normalize_currency(currency)
        return self._save_manual_year_end(SnapshotKind.BENCHMARK_PRICE, symbol, market, year, price, currency, replace)

    def get_benchmark_year_end_price(
            self,
            symbol: str,
            market: str,
            year: int,
            currency: str | None = None,
            providers: Sequence[MarketDataProvider] | None = None,
            cancel_event: threading.Event | None = None,
    ) -> ResolvedValue:
        """
        December month-end close of a benchmark, from the shared year-end cache.

        Only completed years are fetched and persisted; for the current year
        (or later) a cache miss is returned as unavailable without any
        provider call.

        Args:
            symbol: Listing symbol (e.g. "VWRA")
            market: Listing market (e.g. "UK")
            year: Calendar year whose December close is wanted
            currency: Listing currency stored with the snapshot
            providers: Benchmark-specific chain (defaults to the service chain)
            cancel_event: Aborts before any provider call or write when set
        """
        symbol = normalize_ticker(symbol, "symbol")
        market = (market or "US").strip().upper()
        on_date = year_end(year)

        cached = self._repository.get_year_end_snapshot(SnapshotKind.BENCHMARK_PRICE, symbol, market, year)
        if cached is not None:
            logger.debug(f"Year-end cache hit for benchmark {symbol} {year}")
            return self._from_snapshot(symbol, on_date, cached)

        if year >= self.today().year:
            return ResolvedValue(key=symbol, requested_date=on_date, value=None, currency=currency)

        point = self._fetch_from_chain(
            description=f"benchmark {symbol} ({market}) {year}-12",
            fetch=lambda provider: provider.get_month_end_price(symbol, market, year, 12),
            providers=providers if providers is not None else self._providers,
            cancel_event=cancel_event,
        )
        _check_cancelled(cancel_event, f"benchmark {symbol} {year}")

        if point is not None:
            values = SnapshotValues(
                value=point.value,
                currency=currency or point.currency,
                actual_date=point.actual_date,
                source=point.source,
            )
            self._repository.insert_year_end_snapshot(SnapshotKind.BENCHMARK_PRICE, symbol, market, year, values)
            logger.info(f"Persisted benchmark year-end price {symbol} {year}: {point.value} ({point.source})")
            return ResolvedValue(
                key=symbol,
                requested_date=on_date,
                value=point.value,
                currency=values.currency,
                actual_date=point.actual_date,
                source=point.source,
            )

        if self._old_enough_for_negative_cache(on_date):
            self._repository.insert_year_end_snapshot(
                SnapshotKind.BENCHMARK_PRICE, symbol, market, year, SnapshotValues.not_available(currency)
            )
            logger.warning(f"Benchmark {symbol} {year}: no year-end price, cached as not available")
        return ResolvedValue(key=symbol, requested_date=on_date, value=None, currency=currency)

    # =========================================================================
    # GET-OR-FETCH CORE
    # =========================================================================

    def _get_or_fetch(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            on_date: date,
            currency: str | None,
            fetch: Callable[[MarketDataProvider], PricePoint | None],
            manual_value: Decimal | None,
            cancel_event: threading.Event | None,
    ) -> ResolvedValue:
        description = f"{kind.value} {key}{f' ({market})' if market else ''} {on_date}"

        # 1. Exact-date cache
        snapshot = self._repository.get_price_snapshot(kind, key, market, on_date)
        if self._is_positive(snapshot):
            logger.debug(f"Cache hit for {description}")
            return self._from_snapshot(key, on_date, snapshot)
        negative_cached = snapshot is not None

        if manual_value is not None:
            return self._save_manual(kind, key, market, on_date, manual_value, currency, replace=False)

        # 2. Shared year-end cache
        use_year_end = is_completed_year_end(on_date, self.today())
        if use_year_end:
            year_snapshot = self._repository.get_year_end_snapshot(kind, key, market, on_date.year)
            if self._is_positive(year_snapshot):
                logger.debug(f"Year-end cache hit for {description}")
                return self._from_snapshot(key, on_date, year_snapshot)
            negative_cached = negative_cached or year_snapshot is not None

        if negative_cached:
            logger.debug(f"Negative cache hit for {description}")
            return ResolvedValue(key=key, requested_date=on_date, value=None, currency=currency, from_cache=True)

        # 3. Re-check (another worker may have written it meanwhile), then providers
        snapshot = self._repository.get_price_snapshot(kind, key, market, on_date)
        if self._is_positive(snapshot):
            return self._from_snapshot(key, on_date, snapshot)

        point = self._fetch_from_chain(description, fetch, self._providers, cancel_event)
        _check_cancelled(cancel_event, description)

        # 4. Persist
        persist = on_date < self.today()
        if point is not None:
            resolved_currency = point.currency or currency
            if persist:
                values = SnapshotValues(
                    value=point.value,
                    currency=resolved_currency,
                    actual_date=point.actual_date,
                    source=point.source,
                )
                self._repository.insert_price_snapshot(kind, key, market, on_date, values)
                if use_year_end:
                    self._repository.insert_year_end_snapshot(kind, key, market, on_date.year, values)
                logger.info(f"Persisted snapshot {description}: {point.value} from {point.source}")
            return ResolvedValue(
                key=key,
                requested_date=on_date,
                value=point.value,
                currency=resolved_currency,
                actual_date=point.actual_date,
                source=point.source,
            )

        if persist and self._old_enough_for_negative_cache(on_date):
            self._repository.insert_price_snapshot(kind, key, market, on_date, SnapshotValues.not_available(currency))
            if use_year_end:
                self._repository.insert_year_end_snapshot(
                    kind, key, market, on_date.year, SnapshotValues.not_available(currency)
                )
            logger.warning(f"No provider could resolve {description}; cached as not available")
        else:
            logger.warning(f"No provider could resolve {description}")

        return ResolvedValue(key=key, requested_date=on_date, value=None, currency=currency)

    def _fetch_from_chain(
            self,
            description: str,
            fetch: Callable[[MarketDataProvider], PricePoint | None],
            providers: Sequence[MarketDataProvider],
            cancel_event: threading.Event | None,
    ) -> PricePoint | None:
        """Try each provider in order; provider errors are logged, never raised."""
        for provider in providers:
            _check_cancelled(cancel_event, description)
            try:
                point = fetch(provider)
            except MarketDataError as e:
                logger.warning(f"{provider.name} failed for {description}: {e}")
                continue
            except Exception:
                logger.exception(f"Unexpected {provider.name} error for {description}")
                continue

            if point is not None and point.value > ZERO:
                return point
            logger.debug(f"{provider.name} has no data for {description}")

        return None

    def _save_manual(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            on_date: date,
            value: Decimal,
            currency: str | None,
            replace: bool,
    ) -> ResolvedValue:
        if on_date > self.today():
            raise ValidationError(f"Cannot record a manual value for future date {on_date}", field="date")

        existing = self._repository.get_price_snapshot(kind, key, market, on_date)
        if self._is_positive(existing) and not replace:
            raise SnapshotConflictError(key, on_date)

        values = SnapshotValues(
            value=value.quantize(SHARE_PRECISION),
            currency=currency,
            actual_date=on_date,
            source=MANUAL_SOURCE,
        )
        self._repository.upsert_manual_price_snapshot(kind, key, market, on_date, values)
        logger.info(f"Saved manual {kind.value} {key} {on_date}: {values.value}")

        return ResolvedValue(
            key=key,
            requested_date=on_date,
            value=values.value,
            currency=currency,
            actual_date=on_date,
            source=MANUAL_SOURCE,
        )

    def _save_manual_year_end(
            self,
            kind: SnapshotKind,
            key: str,
            market: str,
            year: int,
            value: Decimal,
            currency: str,
            replace: bool,
    ) -> ResolvedValue:
        self._validate_completed_year(year)

        existing = self._repository.get_year_end_snapshot(kind, key, market, year)
        if self._is_positive(existing) and not replace:
            raise SnapshotConflictError(key, year)

        on_date = year_end(year)
        values = SnapshotValues(
            value=value.quantize(SHARE_PRECISION),
            currency=currency,
            actual_date=on_date,
            source=MANUAL_SOURCE,
        )
        self._repository.upsert_manual_year_end_snapshot(kind, key, market, year, values)
        logger.info(f"Saved manual year-end {kind.value} {key} ({market}) {year}: {values.value} {currency}")

        return ResolvedValue(
            key=key,
            requested_date=on_date,
            value=values.value,
            currency=currency,
            actual_date=on_date,
            source=MANUAL_SOURCE,
            from_cache=True,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _is_positive(snapshot) -> bool:
        return (
            snapshot is not None
            and not snapshot.is_not_available
            and snapshot.value is not None
            and snapshot.value > ZERO
        )

    @staticmethod
    def _from_snapshot(key: str, on_date: date, snapshot) -> ResolvedValue:
        return ResolvedValue(
            key=key,
            requested_date=on_date,
            value=Decimal(snapshot.value) if snapshot.value is not None else None,
            currency=snapshot.currency,
            actual_date=snapshot.actual_date,
            source=snapshot.source,
            from_cache=True,
        )

    def _old_enough_for_negative_cache(self, on_date: date) -> bool:
        return self.today() - on_date >= self._negative_min_age

    def _validate_completed_year(self, year: int) -> None:
        current_year = self.today().year
        if year < MIN_SUPPORTED_YEAR or year >= current_year:
            raise ValidationError(
                f"Year must be between {MIN_SUPPORTED_YEAR} and {current_year - 1}, got {year}",
                field="year",
            )
