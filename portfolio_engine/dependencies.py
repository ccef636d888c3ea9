# portfolio_engine/dependencies.py
"""
Service wiring.

Providers are process-wide singletons (they hold HTTP clients and retry
state); services that touch the snapshot cache are built per session.

Providers are lazily initialized on first use to avoid import-time side effects.

Usage:
    from portfolio_engine.database import session_scope
    from portfolio_engine.dependencies import build_year_performance_service

    with session_scope() as db:
        service = build_year_performance_service(db)
        perf = service.calculate(portfolio, transactions, splits, 2025)
"""

import logging
from functools import lru_cache

from sqlalchemy.orm import Session

from portfolio_engine.config import settings
from portfolio_engine.services.analytics.benchmark import BenchmarkReturnService
from portfolio_engine.services.analytics.xirr_service import XirrService
from portfolio_engine.services.analytics.year_performance import YearPerformanceService
from portfolio_engine.services.market_data.base import MarketDataProvider
from portfolio_engine.services.market_data.stooq import StooqProvider
from portfolio_engine.services.market_data.yahoo import YahooFinanceProvider
from portfolio_engine.services.price_resolution import PriceResolutionService
from portfolio_engine.services.snapshot_repository import SqlSnapshotRepository
from portfolio_engine.services.splits import SplitService

logger = logging.getLogger(__name__)


# =============================================================================
# SINGLETON PROVIDER INSTANCES
# =============================================================================
# Using @lru_cache ensures the function returns the same instance on every call

@lru_cache(maxsize=1)
def get_yahoo_provider() -> YahooFinanceProvider:
    logger.debug("Initializing singleton YahooFinanceProvider")
    return YahooFinanceProvider(timeout=settings.market_data_timeout_seconds)


@lru_cache(maxsize=1)
def get_stooq_provider() -> StooqProvider:
    logger.debug("Initializing singleton StooqProvider")
    return StooqProvider(
        base_url=settings.stooq_base_url,
        timeout=settings.market_data_timeout_seconds,
    )


_PROVIDER_FACTORIES = {
    "yahoo": get_yahoo_provider,
    "stooq": get_stooq_provider,
}


def get_providers() -> list[MarketDataProvider]:
    """
    Provider chain in the configured order (PRICE_PROVIDERS).

    Names are validated by Settings, so every entry has a factory.
    """
    return [_PROVIDER_FACTORIES[name]() for name in settings.price_providers]


@lru_cache(maxsize=1)
def get_split_service() -> SplitService:
    return SplitService()


# =============================================================================
# PER-SESSION SERVICES
# =============================================================================

def build_price_resolution_service(db: Session) -> PriceResolutionService:
    """Resolver bound to the session's snapshot cache."""
    return PriceResolutionService(
        repository=SqlSnapshotRepository(db),
        providers=get_providers(),
        lookback_days=settings.price_lookback_days,
        negative_cache_min_age_days=settings.negative_cache_min_age_days,
    )


def build_benchmark_service(db: Session) -> BenchmarkReturnService:
    return BenchmarkReturnService(build_price_resolution_service(db), providers=get_providers())


def build_year_performance_service(db: Session) -> YearPerformanceService:
    return YearPerformanceService(
        build_price_resolution_service(db),
        default_home_currency=settings.default_home_currency,
    )


def build_xirr_service(db: Session) -> XirrService:
    return XirrService(
        build_price_resolution_service(db),
        default_home_currency=settings.default_home_currency,
    )
