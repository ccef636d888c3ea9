# portfolio_engine/services/analytics/xirr_service.py
"""
Portfolio and position XIRR.

Builds investor-perspective cash flows with CashFlowBuilder, appends the
terminal value at the as-of date and solves. Flows whose exchange rate or
terminal price cannot be resolved are left out and listed on the result,
so a partial answer is always distinguishable from a complete one.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal

from portfolio_engine.models import StockSplit
from portfolio_engine.services.analytics.cash_flows import CashFlowBuilder, CashFlowScope
from portfolio_engine.services.analytics.returns import solve_xirr
from portfolio_engine.services.analytics.types import MissingKind, PortfolioXirr
from portfolio_engine.services.price_resolution import PriceResolutionService, normalize_ticker

logger = logging.getLogger(__name__)


class XirrService:
    """
    XIRR over a whole ledger or a single security.

    Args:
        resolver: Historical FX rates and terminal prices
        scope: SECURITY (trades and income) or LEDGER (deposits/withdrawals)
        default_home_currency: Used when a portfolio has no home currency
    """

    def __init__(
            self,
            resolver: PriceResolutionService,
            scope: CashFlowScope = CashFlowScope.SECURITY,
            default_home_currency: str | None = None,
    ) -> None:
        self._resolver = resolver
        self._builder = CashFlowBuilder(resolver, scope)
        self._default_home_currency = default_home_currency

    def calculate_portfolio_xirr(
            self,
            portfolio,
            transactions: Iterable,
            splits: Iterable[StockSplit] = (),
            as_of: date | None = None,
            currency: str | None = None,
            current_prices: Mapping[str, Decimal] | None = None,
            cancel_event: threading.Event | None = None,
    ) -> PortfolioXirr:
        """
        XIRR of the portfolio from its first transaction to as_of.

        Args:
            portfolio: Anything with currency and home_currency
            transactions: The portfolio's ledger
            splits: Global split list
            as_of: Terminal valuation date (default: today)
            currency: Valuation currency (default: the home currency)
            current_prices: ticker -> price overrides for the terminal value
            cancel_event: Propagated to every resolver lookup

        Returns:
            PortfolioXirr; xirr is None when the flows have no sign change
        """
        as_of = as_of or self._resolver.today()
        home = (portfolio.home_currency or self._default_home_currency or portfolio.currency).upper()
        currency = (currency or home).upper()

        build = self._builder.build(
            transactions,
            as_of,
            currency,
            splits,
            home_currency=home,
            current_prices=current_prices,
            cancel_event=cancel_event,
        )
        result = PortfolioXirr(
            xirr=solve_xirr(build.flows),
            as_of_date=as_of,
            cash_flow_count=len(build.flows),
            missing_exchange_rates=[m for m in build.missing if m.kind == MissingKind.EXCHANGE_RATE],
            missing_prices=[m for m in build.missing if m.kind == MissingKind.PRICE],
        )

        if result.xirr is None:
            logger.info(f"XIRR undefined for {len(build.flows)} flow(s) as of {as_of} in {currency}")
        return result

    def calculate_position_xirr(
            self,
            ticker: str,
            market: str,
            portfolio,
            transactions: Iterable,
            splits: Iterable[StockSplit] = (),
            as_of: date | None = None,
            currency: str | None = None,
            current_price: Decimal | None = None,
            cancel_event: threading.Event | None = None,
    ) -> PortfolioXirr:
        """XIRR restricted to one security's trades and income."""
        ticker = normalize_ticker(ticker)
        market = (market or "US").strip().upper()

        selected = [
            t for t in transactions
            if t.ticker
            and t.ticker.strip().upper() == ticker
            and (t.market or "US").strip().upper() == market
        ]
        overrides = {ticker: current_price} if current_price is not None else None

        return self.calculate_portfolio_xirr(
            portfolio,
            selected,
            splits,
            as_of=as_of,
            currency=currency,
            current_prices=overrides,
            cancel_event=cancel_event,
        )
