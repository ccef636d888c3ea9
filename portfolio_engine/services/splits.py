# portfolio_engine/services/splits.py
"""
Stock split adjustment.

Historical quantities and prices are stored as they were traded. Before they
are compared with today's prices they are restated in post-split terms:

    adjusted_shares = shares x cumulative_ratio
    adjusted_price  = price  / cumulative_ratio

where cumulative_ratio is the product of the ratios of every split of the
same (ticker, market) dated strictly after the trade and on/before the
as-of date. A 4-for-1 split has ratio 4; a 1-for-10 reverse split has 0.1.

Adjustment is pure: nothing is persisted and the same inputs always give
the same output. The only persistent operation here is recording a split
(SplitService.add_split), which is idempotent.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portfolio_engine.models import StockSplit
from portfolio_engine.services.repositories import get_all_splits
from portfolio_engine.services.constants import ONE, ZERO
from portfolio_engine.services.exceptions import ValidationError
from portfolio_engine.services.price_resolution import normalize_ticker

logger = logging.getLogger(__name__)

DEFAULT_MARKET = "US"


@dataclass(frozen=True)
class AdjustedValues:
    """
    Split-adjusted view of one transaction.

    Attributes:
        adjusted_shares: Original shares x cumulative_ratio
        adjusted_price: Original price / cumulative_ratio
        cumulative_ratio: Product of applicable split ratios (1 if none)
        has_adjustment: True if at least one split applied
    """

    adjusted_shares: Decimal
    adjusted_price: Decimal
    cumulative_ratio: Decimal
    has_adjustment: bool


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def _normalize_market(market: str | None) -> str:
    return (market or DEFAULT_MARKET).strip().upper()


def applicable_splits(
        ticker: str,
        market: str | None,
        after_date: date,
        splits: Iterable[StockSplit],
        as_of: date | None = None,
) -> list[StockSplit]:
    """
    Splits of (ticker, market) with after_date < split_date <= as_of.

    Ticker matching is case-insensitive. Result is in chronological order;
    same-date splits are ordered by id, then ratio.
    """
    as_of = as_of or date.today()
    ticker = (ticker or "").strip().upper()
    market = _normalize_market(market)

    selected = [
        s for s in splits
        if s.ticker.strip().upper() == ticker
        and _normalize_market(s.market) == market
        and after_date < s.split_date <= as_of
    ]
    return sorted(selected, key=lambda s: (s.split_date, s.id or 0, s.ratio))


def get_cumulative_split_ratio(
        ticker: str,
        market: str | None,
        after_date: date,
        splits: Iterable[StockSplit],
        as_of: date | None = None,
) -> Decimal:
    """
    Product of split ratios effective in (after_date, as_of].

    Returns:
        Decimal("1") when no split applies

    Example:
        Splits of 2 and 3 after the trade compose to 6.
    """
    ratio = ONE
    for split in applicable_splits(ticker, market, after_date, splits, as_of):
        ratio *= Decimal(split.ratio)
    return ratio


def get_adjusted_values(
        transaction,
        all_splits: Iterable[StockSplit],
        as_of: date | None = None,
) -> AdjustedValues:
    """
    Restate a transaction's shares and price in post-split terms.

    Args:
        transaction: Anything with ticker, market, date, quantity, price_per_share
        all_splits: Global split list (filtered here)
        as_of: Ignore splits after this date (default: today)

    Returns:
        AdjustedValues; ratio 1 and has_adjustment False when nothing applies
    """
    shares = Decimal(transaction.quantity or 0)
    price = Decimal(transaction.price_per_share or 0)

    if not transaction.ticker:
        return AdjustedValues(shares, price, ONE, False)

    ratio = get_cumulative_split_ratio(
        transaction.ticker,
        transaction.market,
        transaction.date,
        all_splits,
        as_of,
    )
    if ratio == ONE:
        return AdjustedValues(shares, price, ONE, False)

    return AdjustedValues(
        adjusted_shares=shares * ratio,
        adjusted_price=price / ratio,
        cumulative_ratio=ratio,
        has_adjustment=True,
    )


def detect_market(ticker: str) -> str:
    """
    Guess the listing market from the ticker's shape.

    - Digit-leading (e.g. "2330", "0050")  -> "TW"
    - ".L" suffix (e.g. "VWRA.L")           -> "UK"
    - Anything else                         -> "US"
    """
    ticker = (ticker or "").strip().upper()
    if ticker[:1].isdigit():
        return "TW"
    if ticker.endswith(".L"):
        return "UK"
    return "US"


def validate_split(
        ticker: str,
        split_date: date,
        ratio: Decimal,
        market: str | None = None,
) -> tuple[str, str, Decimal]:
    """
    Validate and normalize split input.

    Returns:
        (ticker, market, ratio) normalized

    Raises:
        ValidationError: Empty/too-long ticker, missing date, ratio <= 0
    """
    ticker = normalize_ticker(ticker)
    if split_date is None:
        raise ValidationError("Split date is required", field="split_date")

    try:
        ratio = Decimal(ratio)
    except (TypeError, ArithmeticError):
        raise ValidationError(f"Invalid split ratio: {ratio!r}", field="ratio")
    if not ratio.is_finite() or ratio <= ZERO:
        raise ValidationError(f"Split ratio must be positive, got {ratio}", field="ratio")

    market = _normalize_market(market) if market else detect_market(ticker)
    return ticker, market, ratio


# =============================================================================
# SPLIT SERVICE
# =============================================================================

class SplitService:
    """
    Records splits in the global split table.

    Example:
        service = SplitService()
        service.add_split(db, "NVDA", date(2024, 6, 10), Decimal("10"))
    """

    def add_split(
            self,
            db: Session,
            ticker: str,
            split_date: date,
            ratio: Decimal,
            market: str | None = None,
    ) -> StockSplit:
        """
        Insert a split, or return the existing row for the same key.

        Raises:
            ValidationError: Invalid input (nothing is written)
        """
        ticker, market, ratio = validate_split(ticker, split_date, ratio, market)

        existing = self._find(db, ticker, market, split_date)
        if existing is not None:
            if Decimal(existing.ratio) != ratio:
                logger.warning(
                    f"Split {ticker} ({market}) {split_date} already recorded "
                    f"with ratio {existing.ratio}; keeping it"
                )
            return existing

        row = {"ticker": ticker, "market": market, "split_date": split_date, "ratio": ratio}
        if self._insert_ignore(db, row):
            logger.info(f"Recorded split {ticker} ({market}) {split_date}: ratio {ratio}")
        else:
            # Inserted concurrently under the same key
            logger.debug(f"Split {ticker} ({market}) {split_date} already present, insert ignored")
        return self._find(db, ticker, market, split_date)

    def get_all_splits(self, db: Session) -> list[StockSplit]:
        return get_all_splits(db)

    @staticmethod
    def _insert_ignore(db: Session, row: dict) -> bool:
        dialect = db.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = pg_insert(StockSplit).values(**row).on_conflict_do_nothing(
                constraint="uq_split_ticker_market_date"
            )
        elif dialect == "sqlite":
            stmt = sqlite_insert(StockSplit).values(**row).on_conflict_do_nothing(
                index_elements=["ticker", "market", "split_date"]
            )
        else:
            try:
                with db.begin_nested():
                    db.add(StockSplit(**row))
            except IntegrityError:
                return False
            db.commit()
            return True

        result = db.execute(stmt)
        db.commit()
        return result.rowcount > 0

    @staticmethod
    def _find(db: Session, ticker: str, market: str, split_date: date) -> StockSplit | None:
        return (
            db.query(StockSplit)
            .filter(
                StockSplit.ticker == ticker,
                StockSplit.market == market,
                StockSplit.split_date == split_date,
            )
            .one_or_none()
        )
