# portfolio_engine/services/analytics/__init__.py
"""
Analytics Service Package.

This package turns a transaction ledger into performance figures:
- Cash flows (investor perspective, single valuation currency)
- XIRR (money-weighted, annualized)
- Modified Dietz and TWR for a period
- Annual performance in home and source currency
- Annual benchmark returns

Architecture:
    analytics/
    ├── __init__.py              # This file - package exports
    ├── types.py                 # Data classes for results
    ├── positions.py             # Split-adjusted open positions
    ├── cash_flows.py            # CashFlowBuilder
    ├── returns.py               # XIRR solver (Newton + bisection)
    ├── period_returns.py        # Modified Dietz, TWR, total return
    ├── xirr_service.py          # Portfolio / position XIRR
    ├── year_performance.py      # YearPerformanceService
    └── benchmark.py             # BenchmarkReturnService + catalogue

Usage:
    from portfolio_engine.services.analytics import (
        BenchmarkReturnService,
        XirrService,
        YearPerformanceService,
    )

    perf = YearPerformanceService(resolver).calculate(portfolio, txns, splits, 2025)
    print(f"XIRR (home): {perf.xirr_home}%  TWR (source): {perf.twr_source}%")

Data Flow:
    Transactions + Splits
        ↓
    CashFlowBuilder ──── PriceResolutionService (prices, FX)
        ↓
    ┌─────────────────────────────────────────┐
    │  solve_xirr          period_returns     │
    │  • Newton            • Modified Dietz   │
    │  • Bisection         • TWR              │
    └─────────────────────────────────────────┘
        ↓
    PortfolioXirr / YearPerformance
"""

from portfolio_engine.services.analytics.benchmark import (
    SUPPORTED_BENCHMARKS,
    BenchmarkDefinition,
    BenchmarkReturnService,
    get_benchmark,
)
from portfolio_engine.services.analytics.cash_flows import (
    CashFlowBuilder,
    CashFlowBuildResult,
    CashFlowScope,
    transaction_amount,
)
from portfolio_engine.services.analytics.period_returns import (
    calculate_modified_dietz,
    calculate_period_returns,
    calculate_time_weighted_return,
    calculate_total_return,
    to_contributions,
)
from portfolio_engine.services.analytics.positions import Position, calculate_positions
from portfolio_engine.services.analytics.returns import calculate_xirr, solve_xirr
from portfolio_engine.services.analytics.types import (
    AvailableYears,
    BenchmarkReturns,
    CashFlow,
    CashFlowEvent,
    CashFlowKind,
    FlowValuation,
    MissingItem,
    MissingKind,
    MissingPrice,
    PeriodReturns,
    PortfolioXirr,
    PriceType,
    ReferencePrice,
    XirrConfidence,
    XirrMethod,
    XirrResult,
    YearPerformance,
)
from portfolio_engine.services.analytics.xirr_service import XirrService
from portfolio_engine.services.analytics.year_performance import (
    YearPerformanceService,
    get_available_years,
)

__all__ = [
    # Services
    "BenchmarkReturnService",
    "XirrService",
    "YearPerformanceService",
    "CashFlowBuilder",

    # Benchmark catalogue
    "SUPPORTED_BENCHMARKS",
    "BenchmarkDefinition",
    "get_benchmark",

    # Types
    "AvailableYears",
    "BenchmarkReturns",
    "CashFlow",
    "CashFlowBuildResult",
    "CashFlowEvent",
    "CashFlowKind",
    "CashFlowScope",
    "FlowValuation",
    "MissingItem",
    "MissingKind",
    "MissingPrice",
    "PeriodReturns",
    "PortfolioXirr",
    "Position",
    "PriceType",
    "ReferencePrice",
    "XirrConfidence",
    "XirrMethod",
    "XirrResult",
    "YearPerformance",

    # Individual functions (for testing)
    "calculate_modified_dietz",
    "calculate_period_returns",
    "calculate_positions",
    "calculate_time_weighted_return",
    "calculate_total_return",
    "calculate_xirr",
    "get_available_years",
    "solve_xirr",
    "to_contributions",
    "transaction_amount",
]
