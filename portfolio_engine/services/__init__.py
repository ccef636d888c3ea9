# portfolio_engine/services/__init__.py
"""
Service layer for the portfolio performance engine.

Services:
- Have NO knowledge of any outer surface (CLI, HTTP)
- Raise domain-specific exceptions
- Receive database sessions as parameters
- Are easily testable via dependency injection (providers, repositories)

Usage:
    from portfolio_engine.services import PriceResolutionService
    from portfolio_engine.services import SplitService
    from portfolio_engine.services import (
        ValidationError,
        SnapshotConflictError,
        OperationCancelledError,
    )

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Business constants and limits
    ├── repositories.py              # Ledger read access
    ├── splits.py                    # Split adjustment engine
    ├── snapshot_repository.py       # Price / FX snapshot cache (SQL)
    ├── price_resolution.py          # Get-or-fetch price & FX resolution
    ├── analytics/                   # Return calculations
    │   ├── types.py                 # Analytics data types
    │   ├── positions.py             # Split-adjusted positions
    │   ├── cash_flows.py            # Cash-flow builder
    │   ├── returns.py               # XIRR solver
    │   ├── period_returns.py        # Modified Dietz / TWR
    │   ├── xirr_service.py          # Portfolio / position XIRR
    │   ├── year_performance.py      # Annual performance
    │   └── benchmark.py             # Annual benchmark returns
    └── market_data/                 # Market data package
        ├── base.py                  # Abstract provider interface
        ├── yahoo.py                 # Yahoo Finance implementation
        └── stooq.py                 # Stooq CSV implementation
"""

from portfolio_engine.services.exceptions import (
    # Base exceptions
    ServiceError,
    ValidationError,
    NotFoundError,
    PortfolioNotFoundError,
    # Market data exceptions
    MarketDataError,
    ProviderUnavailableError,
    TickerNotFoundError,
    RateLimitError,
    # FX rate exceptions
    FXRateError,
    FXRateNotFoundError,
    # Snapshot exceptions
    SnapshotError,
    SnapshotConflictError,
    # Operation exceptions
    OperationCancelledError,
)
from portfolio_engine.services.market_data import (
    MarketDataProvider,
    HistoricalPricesResult,
    OHLCVData,
    PricePoint,
    StooqProvider,
    YahooFinanceProvider,
)
from portfolio_engine.services.price_resolution import PriceResolutionService, ResolvedValue
from portfolio_engine.services.snapshot_repository import (
    SnapshotRepository,
    SnapshotValues,
    SqlSnapshotRepository,
)
from portfolio_engine.services.splits import (
    AdjustedValues,
    SplitService,
    get_adjusted_values,
    get_cumulative_split_ratio,
)
from portfolio_engine.services.analytics import (
    BenchmarkReturnService,
    XirrService,
    YearPerformanceService,
)

__all__ = [
    # ==========================================================================
    # Services
    # ==========================================================================
    "PriceResolutionService",
    "ResolvedValue",
    "SplitService",
    "AdjustedValues",
    "get_adjusted_values",
    "get_cumulative_split_ratio",
    "SnapshotRepository",
    "SnapshotValues",
    "SqlSnapshotRepository",
    # Analytics
    "BenchmarkReturnService",
    "XirrService",
    "YearPerformanceService",
    # Market data
    "MarketDataProvider",
    "YahooFinanceProvider",
    "StooqProvider",
    "OHLCVData",
    "HistoricalPricesResult",
    "PricePoint",

    # ==========================================================================
    # Exceptions
    # ==========================================================================
    # Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "PortfolioNotFoundError",
    # Market data
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    # FX rate
    "FXRateError",
    "FXRateNotFoundError",
    # Snapshots
    "SnapshotError",
    "SnapshotConflictError",
    # Operations
    "OperationCancelledError",
]
