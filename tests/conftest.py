# tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Mock provider fixtures
- A resolver wired to the mock provider with a fixed "today"
- Sample data factories
"""

import logging
import os

os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from portfolio_engine.models import (
    Base,
    BenchmarkSelection,
    Portfolio,
    StockSplit,
    Transaction,
    TransactionType,
)
from portfolio_engine.services.exceptions import TickerNotFoundError
from portfolio_engine.services.market_data.base import (
    FX_MARKET,
    HistoricalPricesResult,
    MarketDataProvider,
    OHLCVData,
)
from portfolio_engine.services.price_resolution import PriceResolutionService
from portfolio_engine.services.snapshot_repository import SqlSnapshotRepository

# All resolver-based tests run "on" this date
FIXED_TODAY = date(2026, 3, 16)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# MOCK MARKET DATA PROVIDER
# =============================================================================

class MockMarketDataProvider(MarketDataProvider):
    """
    Mock implementation of MarketDataProvider for testing.

    Closes are configured per (symbol, market) and date. Unknown symbols
    return an empty window, like a provider with no data. Errors can be
    configured per symbol.
    """

    def __init__(self, name: str = "mock"):
        self._name = name
        self._closes: dict[tuple[str, str], dict[date, Decimal]] = {}
        self._errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, str, date, date]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def fx_ticker(self, base_currency: str, quote_currency: str) -> str:
        return f"{base_currency.upper()}{quote_currency.upper()}"

    def set_close(self, symbol: str, market: str, on_date: date, close) -> None:
        """Configure one daily close."""
        self._closes.setdefault((symbol.upper(), market.upper()), {})[on_date] = Decimal(str(close))

    def set_rate(self, base: str, quote: str, on_date: date, rate) -> None:
        self.set_close(self.fx_ticker(base, quote), FX_MARKET, on_date, rate)

    def set_flat_rate(self, base: str, quote: str, start: date, end: date, rate) -> None:
        """Same FX close on every day of [start, end]."""
        current = start
        while current <= end:
            self.set_rate(base, quote, current, rate)
            current += timedelta(days=1)

    def add_error(self, symbol: str, error: Exception) -> None:
        self._errors[symbol.upper()] = error

    def reset_calls(self) -> None:
        self.calls.clear()

    def get_historical_prices(
            self,
            ticker: str,
            market: str,
            start_date: date,
            end_date: date,
    ) -> HistoricalPricesResult:
        ticker = ticker.upper()
        market = market.upper() if market else ""
        self.calls.append((ticker, market, start_date, end_date))

        if ticker in self._errors:
            raise self._errors[ticker]

        closes = self._closes.get((ticker, market), {})
        prices = [
            OHLCVData(date=d, open=c, high=c, low=c, close=c, volume=1000)
            for d, c in sorted(closes.items())
            if start_date <= d <= end_date
        ]
        return HistoricalPricesResult(
            ticker=ticker,
            market=market,
            prices=prices,
            from_date=start_date,
            to_date=end_date,
        )


class NotFoundProvider(MockMarketDataProvider):
    """Provider that knows no symbol at all."""

    def get_historical_prices(self, ticker, market, start_date, end_date):
        self.calls.append((ticker.upper(), market, start_date, end_date))
        raise TickerNotFoundError(ticker=ticker, exchange=market, provider=self.name)


@pytest.fixture
def mock_provider() -> MockMarketDataProvider:
    return MockMarketDataProvider()


@pytest.fixture
def resolver(db, mock_provider) -> PriceResolutionService:
    """Resolver over the test database and the mock provider."""
    return PriceResolutionService(
        repository=SqlSnapshotRepository(db),
        providers=[mock_provider],
        today_provider=lambda: FIXED_TODAY,
    )


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def make_transaction(
        transaction_type: TransactionType = TransactionType.BUY,
        txn_date: date = date(2025, 1, 2),
        ticker: str | None = "AAPL",
        market: str = "US",
        quantity="0",
        price="0",
        fee="0",
        amount=None,
        currency: str = "USD",
        exchange_rate=None,
        id: int | None = None,
        portfolio_id: int | None = None,
) -> Transaction:
    """Unsaved Transaction with every column set explicitly."""
    return Transaction(
        id=id,
        portfolio_id=portfolio_id,
        transaction_type=transaction_type,
        date=txn_date,
        ticker=ticker,
        market=market,
        quantity=Decimal(str(quantity)),
        price_per_share=Decimal(str(price)),
        fee=Decimal(str(fee)),
        amount=Decimal(str(amount)) if amount is not None else None,
        currency=currency,
        exchange_rate=Decimal(str(exchange_rate)) if exchange_rate is not None else None,
    )


def make_split(ticker: str, split_date: date, ratio, market: str = "US", id: int | None = None) -> StockSplit:
    return StockSplit(id=id, ticker=ticker, market=market, split_date=split_date, ratio=Decimal(str(ratio)))


def create_portfolio(
        db: Session,
        user_id: int = 1,
        name: str = "Test Portfolio",
        currency: str = "USD",
        home_currency: str = "TWD",
) -> Portfolio:
    portfolio = Portfolio(user_id=user_id, name=name, currency=currency, home_currency=home_currency)
    db.add(portfolio)
    db.commit()
    db.refresh(portfolio)
    return portfolio


def create_transaction(db: Session, portfolio: Portfolio, **kwargs) -> Transaction:
    txn = make_transaction(portfolio_id=portfolio.id, **kwargs)
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def create_split(db: Session, ticker: str, split_date: date, ratio, market: str = "US") -> StockSplit:
    split = make_split(ticker, split_date, ratio, market)
    db.add(split)
    db.commit()
    db.refresh(split)
    return split


def create_benchmark_selection(db: Session, user_id: int, key: str) -> BenchmarkSelection:
    selection = BenchmarkSelection(user_id=user_id, benchmark_key=key)
    db.add(selection)
    db.commit()
    return selection


@pytest.fixture
def sample_portfolio(db) -> Portfolio:
    return create_portfolio(db)


@pytest.fixture
def preserve_logging():
    """Restore root logger handlers after a test that calls setup_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
