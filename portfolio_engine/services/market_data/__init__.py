# portfolio_engine/services/market_data/__init__.py
"""
Market data providers package.

This package contains:
- Abstract interface for market data providers (base.py)
- Yahoo Finance implementation (yahoo.py)
- Stooq CSV implementation (stooq.py)

Usage:
    from portfolio_engine.services.market_data import (
        MarketDataProvider,
        PricePoint,
        YahooFinanceProvider,
        StooqProvider,
    )

Architecture:
    MarketDataProvider (ABC)
    ├── YahooFinanceProvider (yfinance)
    └── StooqProvider (httpx + pandas CSV)

    PriceResolutionService walks an ordered list of providers and
    caches whatever the first successful one returns.
"""

from portfolio_engine.services.market_data.base import (
    FX_MARKET,
    MARKET_CURRENCIES,
    USD_DENOMINATED_LSE_TICKERS,
    MarketDataProvider,
    OHLCVData,
    HistoricalPricesResult,
    PricePoint,
    listing_currency,
)
from portfolio_engine.services.market_data.stooq import StooqProvider
from portfolio_engine.services.market_data.yahoo import YahooFinanceProvider

__all__ = [
    # Abstract interface
    "MarketDataProvider",
    "FX_MARKET",
    "MARKET_CURRENCIES",
    "USD_DENOMINATED_LSE_TICKERS",
    "listing_currency",
    # Data classes
    "OHLCVData",
    "HistoricalPricesResult",
    "PricePoint",
    # Concrete implementations
    "YahooFinanceProvider",
    "StooqProvider",
]
