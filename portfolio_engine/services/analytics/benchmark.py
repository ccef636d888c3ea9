# portfolio_engine/services/analytics/benchmark.py
"""
Annual benchmark returns.

A benchmark's return for year Y compares two December month-end closes:

    start = close at end of December Y-1
    end   = close at end of December Y
    R     = (end / (start / split_ratio) - 1) x 100, rounded to 2 dp (half-up)

split_ratio is the product of the benchmark's splits effective in
(Dec-31 Y-1, Dec-31 Y], so a split during the year does not show up as a
crash.

Both closes live in the shared year-end cache (YearEndSnapshot, kind
BENCHMARK_PRICE). A missing close for a completed year is fetched lazily
through the benchmark's provider chain and cached, positive or negative,
like any other price. The current year's end close is never fetched, so
its return is None until the year is over.

A return is None ("insufficient data"), never 0, when either close is
unavailable. One benchmark failing never affects the others.
"""

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm import Session

from portfolio_engine.models import StockSplit
from portfolio_engine.services.analytics.types import BenchmarkReturns
from portfolio_engine.services.constants import (
    DISPLAY_PERCENTAGE_PRECISION,
    HUNDRED,
    MIN_SUPPORTED_YEAR,
    ONE,
)
from portfolio_engine.services.exceptions import ValidationError
from portfolio_engine.services.market_data.base import MarketDataProvider
from portfolio_engine.services.price_resolution import PriceResolutionService, ResolvedValue
from portfolio_engine.services.repositories import get_all_splits, get_benchmark_selections
from portfolio_engine.services.splits import get_cumulative_split_ratio
from portfolio_engine.utils.dates import year_end

logger = logging.getLogger(__name__)


# =============================================================================
# BENCHMARK CATALOGUE
# =============================================================================

@dataclass(frozen=True)
class BenchmarkDefinition:
    """
    A supported benchmark and where its prices come from.

    Attributes:
        key: Stable identifier used in selections and results
        symbol: Listing symbol
        name: Display name
        market: Listing market code
        currency: Listing currency
        providers: Preferred provider order (names)
    """
    key: str
    symbol: str
    name: str
    market: str
    currency: str
    providers: tuple[str, ...] = ("stooq", "yahoo")


SUPPORTED_BENCHMARKS: dict[str, BenchmarkDefinition] = {
    b.key: b for b in (
        BenchmarkDefinition("All Country", "VWRA", "Vanguard FTSE All-World", "UK", "USD"),
        BenchmarkDefinition("US Large", "VUAA", "Vanguard S&P 500", "UK", "USD"),
        BenchmarkDefinition("US Small", "XRSU", "Xtrackers Russell 2000", "UK", "USD"),
        BenchmarkDefinition("Developed Markets Large", "VHVE", "Vanguard FTSE Developed World", "UK", "USD"),
        BenchmarkDefinition("Developed Markets Small", "WSML", "iShares MSCI World Small Cap", "UK", "USD"),
        BenchmarkDefinition("Dev ex US Large", "EXUS", "Xtrackers MSCI World ex USA", "UK", "USD"),
        BenchmarkDefinition("Emerging Markets", "VFEM", "Vanguard FTSE Emerging Markets", "UK", "USD"),
        BenchmarkDefinition("Europe", "VEUA", "Vanguard FTSE Developed Europe", "UK", "USD"),
        BenchmarkDefinition("Japan", "VJPA", "Vanguard FTSE Japan", "UK", "USD"),
        BenchmarkDefinition("China", "HCHA", "HSBC MSCI China A", "UK", "USD"),
        BenchmarkDefinition("Taiwan 0050", "0050", "Yuanta Taiwan Top 50", "TW", "TWD", providers=("yahoo",)),
    )
}


def get_benchmark(key: str) -> BenchmarkDefinition:
    """
    Raises:
        ValidationError: Unknown benchmark key
    """
    definition = SUPPORTED_BENCHMARKS.get(key)
    if definition is None:
        raise ValidationError(f"Unknown benchmark: '{key}'", field="benchmark_key")
    return definition


# =============================================================================
# SERVICE
# =============================================================================

class BenchmarkReturnService:
    """
    Computes annual benchmark returns through the shared year-end cache.

    Args:
        resolver: Price resolution service (owns cache + provider chain)
        providers: Providers by name; each benchmark uses its preferred
                   order, falling back to the resolver's full chain

    Example:
        service = BenchmarkReturnService(resolver, providers)
        result = service.compute_for_year(2024, ["All Country", "Taiwan 0050"])
        result.returns["All Country"]  # Decimal("17.43") or None
    """

    def __init__(
            self,
            resolver: PriceResolutionService,
            providers: Sequence[MarketDataProvider] = (),
    ) -> None:
        self._resolver = resolver
        self._providers = {p.name: p for p in providers}

    def compute_for_year(
            self,
            year: int,
            benchmark_keys: Iterable[str] | None = None,
            splits: Iterable[StockSplit] = (),
            cancel_event: threading.Event | None = None,
    ) -> BenchmarkReturns:
        """
        Annual returns for the requested benchmarks (all when None).

        Benchmarks are resolved one after another on the caller's session.

        Raises:
            ValidationError: Year outside [2000, current year] or unknown key
            OperationCancelledError: cancel_event was set
        """
        current_year = self._resolver.today().year
        if year < MIN_SUPPORTED_YEAR or year > current_year:
            raise ValidationError(
                f"Year must be between {MIN_SUPPORTED_YEAR} and {current_year}, got {year}",
                field="year",
            )

        keys = list(benchmark_keys) if benchmark_keys is not None else list(SUPPORTED_BENCHMARKS)
        definitions = [get_benchmark(key) for key in keys]
        splits = list(splits)

        result = BenchmarkReturns(year=year)
        for definition in definitions:
            start = self._year_end_price(definition, year - 1, cancel_event)
            end = self._year_end_price(definition, year, cancel_event)

            result.has_start_prices = result.has_start_prices or start is not None
            result.has_end_prices = result.has_end_prices or end is not None

            result.returns[definition.key] = self._annual_return(definition, year, start, end, splits)

        available = sum(1 for r in result.returns.values() if r is not None)
        logger.info(f"Benchmark returns for {year}: {available}/{len(result.returns)} available")
        return result

    def compute_for_user(
            self,
            db: Session,
            user_id: int,
            year: int,
            cancel_event: threading.Event | None = None,
    ) -> BenchmarkReturns:
        """
        Annual returns for the user's selected benchmarks.

        All supported benchmarks are used when the user has no selection.
        Stored keys that are no longer supported are skipped.
        """
        selected = get_benchmark_selections(db, user_id)
        keys = [k for k in selected if k in SUPPORTED_BENCHMARKS]
        for stale in set(selected) - set(keys):
            logger.warning(f"User {user_id} selected unsupported benchmark '{stale}', skipping")

        return self.compute_for_year(
            year,
            benchmark_keys=keys or None,
            splits=get_all_splits(db),
            cancel_event=cancel_event,
        )

    def save_manual_price(
            self,
            benchmark_key: str,
            year: int,
            price: Decimal,
            replace: bool = False,
    ) -> ResolvedValue:
        """
        Enter a benchmark's December close by hand, in its listing currency.

        Raises:
            ValidationError: Unknown key, bad price, or an unfinished year
            SnapshotConflictError: A positive close exists and replace is False
        """
        definition = get_benchmark(benchmark_key)
        return self._resolver.save_manual_benchmark_price(
            definition.symbol,
            definition.market,
            year,
            price,
            definition.currency,
            replace=replace,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _year_end_price(
            self,
            definition: BenchmarkDefinition,
            year: int,
            cancel_event: threading.Event | None,
    ) -> Decimal | None:
        resolved = self._resolver.get_benchmark_year_end_price(
            definition.symbol,
            definition.market,
            year,
            currency=definition.currency,
            providers=self._chain_for(definition),
            cancel_event=cancel_event,
        )
        return resolved.value

    def _chain_for(self, definition: BenchmarkDefinition) -> list[MarketDataProvider] | None:
        chain = [self._providers[name] for name in definition.providers if name in self._providers]
        return chain or None

    @staticmethod
    def _annual_return(
            definition: BenchmarkDefinition,
            year: int,
            start: Decimal | None,
            end: Decimal | None,
            splits: list[StockSplit],
    ) -> Decimal | None:
        if start is None or end is None:
            logger.debug(
                f"{definition.key} {year}: insufficient data "
                f"(start={'ok' if start else 'missing'}, end={'ok' if end else 'missing'})"
            )
            return None

        ratio = get_cumulative_split_ratio(
            definition.symbol,
            definition.market,
            year_end(year - 1),
            splits,
            as_of=year_end(year),
        )
        adjusted_start = start / ratio if ratio != ONE else start

        change = (end / adjusted_start - ONE) * HUNDRED
        return change.quantize(DISPLAY_PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP)
