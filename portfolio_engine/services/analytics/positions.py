# portfolio_engine/services/analytics/positions.py
"""
Split-adjusted share positions at a point in time.

Only BUY and SELL move share counts. Quantities are restated with every
split effective on/before the valuation date, so they can be multiplied
by that date's (unadjusted) closing price.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from portfolio_engine.models import StockSplit, TransactionType
from portfolio_engine.services.constants import SHARE_PRECISION, ZERO
from portfolio_engine.services.splits import get_adjusted_values

# Residual below this after a full sell is rounding noise
_DUST = SHARE_PRECISION


@dataclass
class Position:
    ticker: str
    market: str
    currency: str
    shares: Decimal


def calculate_positions(
        transactions: Iterable,
        splits: Iterable[StockSplit],
        as_of: date,
) -> list[Position]:
    """
    Open positions from all trades dated on/before as_of.

    Args:
        transactions: Ledger entries (any order)
        splits: Global split list
        as_of: Valuation date; also the cutoff for split adjustment

    Returns:
        Positions with shares > 0, ordered by (ticker, market)
    """
    splits = list(splits)
    holdings: dict[tuple[str, str], Position] = {}

    for txn in transactions:
        if txn.date > as_of or not txn.ticker:
            continue
        if txn.transaction_type not in (TransactionType.BUY, TransactionType.SELL):
            continue

        ticker = txn.ticker.strip().upper()
        market = (txn.market or "US").strip().upper()
        adjusted = get_adjusted_values(txn, splits, as_of)

        position = holdings.get((ticker, market))
        if position is None:
            position = Position(ticker=ticker, market=market, currency=txn.currency.upper(), shares=ZERO)
            holdings[(ticker, market)] = position

        if txn.transaction_type == TransactionType.BUY:
            position.shares += adjusted.adjusted_shares
        else:
            position.shares -= adjusted.adjusted_shares

    return [
        p for _, p in sorted(holdings.items())
        if p.shares > _DUST
    ]
