# portfolio_engine/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, ForeignKey, Enum, Numeric, UniqueConstraint, Boolean, Integer, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# Enums help enforce data integrity at the database level
class TransactionType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"

    # Pure currency-ledger movements (no security involved)
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class SnapshotKind(str, enum.Enum):
    """What a cached snapshot value represents."""
    STOCK_PRICE = "STOCK_PRICE"
    EXCHANGE_RATE = "EXCHANGE_RATE"
    BENCHMARK_PRICE = "BENCHMARK_PRICE"


class Portfolio(Base):
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String)

    # Trading (source) currency, e.g. USD for a US brokerage account
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    # Reporting (home) currency, e.g. TWD; DEFAULT_HOME_CURRENCY applies when unset
    home_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="portfolio",
        cascade="all, delete-orphan"
    )


class Transaction(Base):
    """
    A single ledger event.

    Transactions are immutable inputs to every calculation. For BUY/SELL,
    quantity and price_per_share are positive; for DIVIDEND, INTEREST,
    DEPOSIT and WITHDRAWAL the cash value lives in `amount`.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        # "Get all transactions for portfolio X up to date Y"
        Index('ix_transaction_portfolio_date', 'portfolio_id', 'date'),
        Index('ix_transaction_portfolio_ticker_date', 'portfolio_id', 'ticker', 'date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    transaction_type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    date: Mapped[date] = mapped_column(Date, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))  # When it was recorded

    # NULL for pure cash movements
    ticker: Mapped[str | None] = mapped_column(String(20), nullable=True)
    market: Mapped[str] = mapped_column(String(10), default="US")

    # Numeric(18, 8) supports values up to 9,999,999,999.99999999
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal(0))
    price_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal(0))
    fee: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal(0))
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Trade-time rate: 1 unit of transaction currency = X home currency
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="transactions")


class StockSplit(Base):
    """
    Global table of stock splits, shared by all users.

    ratio is new shares per old share: 4.0 for a 4-for-1 split, 0.1 for a
    1-for-10 reverse split.
    """
    __tablename__ = "stock_splits"
    __table_args__ = (
        UniqueConstraint('ticker', 'market', 'split_date', name='uq_split_ticker_market_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    ticker: Mapped[str] = mapped_column(String(20), index=True)
    market: Mapped[str] = mapped_column(String(10), default="US")
    split_date: Mapped[date] = mapped_column(Date)
    ratio: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class PriceSnapshot(Base):
    """
    Exact-date cache of stock prices and exchange rates.

    One row per (kind, key, market, requested date). Rows are append-only:
    automatic fetches insert-or-ignore, only a manual override may replace
    a row.

    Negative cache:
        is_not_available = True with value NULL records that no provider
        could supply a value for that date, so later lookups short-circuit
        without contacting any provider.
    """
    __tablename__ = "price_snapshots"
    __table_args__ = (
        UniqueConstraint('kind', 'key', 'market', 'snapshot_date', name='uq_price_snapshot'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    kind: Mapped[SnapshotKind] = mapped_column(Enum(SnapshotKind))

    # Ticker (e.g. "AAPL") or currency pair (e.g. "USDTWD")
    key: Mapped[str] = mapped_column(String(20), index=True)
    # Empty string for exchange rates
    market: Mapped[str] = mapped_column(String(10), default="")
    snapshot_date: Mapped[date] = mapped_column(Date, index=True)

    value: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    # =========================================================================
    # METADATA (Data Lineage)
    # =========================================================================
    actual_date: Mapped[date | None] = mapped_column(Date, nullable=True)  # Trading day the value came from
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)  # e.g., "yahoo", "stooq", "manual"
    is_not_available: Mapped[bool] = mapped_column(Boolean, default=False)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class YearEndSnapshot(Base):
    """
    Shared year-end cache (value as of Dec-31 of a completed year).

    Benchmarks read both endpoints of an annual return from here; price and
    FX lookups dated Dec-31 consult it after the exact-date cache. The
    current calendar year is never stored.
    """
    __tablename__ = "year_end_snapshots"
    __table_args__ = (
        UniqueConstraint('kind', 'key', 'market', 'year', name='uq_year_end_snapshot'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    kind: Mapped[SnapshotKind] = mapped_column(Enum(SnapshotKind))
    key: Mapped[str] = mapped_column(String(20), index=True)
    market: Mapped[str] = mapped_column(String(10), default="")
    year: Mapped[int] = mapped_column(Integer, index=True)

    value: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    actual_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_not_available: Mapped[bool] = mapped_column(Boolean, default=False)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class BenchmarkSelection(Base):
    """Benchmarks a user has chosen to compare against."""
    __tablename__ = "benchmark_selections"
    __table_args__ = (
        UniqueConstraint('user_id', 'benchmark_key', name='uq_benchmark_selection'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    benchmark_key: Mapped[str] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
