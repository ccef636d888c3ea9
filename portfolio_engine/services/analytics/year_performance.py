# portfolio_engine/services/analytics/year_performance.py
"""
Annual performance of a portfolio.

For calendar year Y the period runs from Jan-1 to Dec-31 (or today while
Y is the current year). Every figure is computed twice, independently:
once in the portfolio's home currency (e.g. TWD) and once in its source
currency (e.g. USD), so currency moves are visible as the gap between the
two.

Inputs per currency:
    start value   positions held on Dec-31 of Y-1, priced at that date
    end value     positions held at period end, priced at period end
    flows         BUY / SELL / DIVIDEND / INTEREST dated inside the period
    valuations    portfolio value around each flow date (for TWR)

Outputs per currency:
    net contributions   buys - sells - income received
    total return        (end - start - net) / start
    XIRR                on [-start @ Jan-1, flows..., +end @ period end]
    Modified Dietz      on contributions over the period
    TWR                 chained over the flow dates

A price or rate that cannot be resolved never raises: the position is
left out of the value, reported in missing_prices with the reference date
and the price type (YearStart, YearEnd or Valuation), and is_complete is
False. Caller-supplied reference prices win over resolved ones.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from portfolio_engine.models import StockSplit, TransactionType
from portfolio_engine.services.analytics.cash_flows import CashFlowBuilder, transaction_amount
from portfolio_engine.services.analytics.period_returns import (
    calculate_modified_dietz,
    calculate_time_weighted_return,
    calculate_total_return,
)
from portfolio_engine.services.analytics.positions import calculate_positions
from portfolio_engine.services.analytics.returns import calculate_xirr
from portfolio_engine.services.analytics.types import (
    AvailableYears,
    CashFlow,
    FlowValuation,
    MissingPrice,
    PriceType,
    ReferencePrice,
    YearPerformance,
)
from portfolio_engine.services.constants import (
    CURRENCY_PRECISION,
    DISPLAY_PERCENTAGE_PRECISION,
    HUNDRED,
    MIN_SUPPORTED_YEAR,
    ONE,
    ZERO,
)
from portfolio_engine.services.exceptions import ValidationError
from portfolio_engine.services.price_resolution import PriceResolutionService
from portfolio_engine.utils.dates import year_end, year_start

logger = logging.getLogger(__name__)

_FLOW_TYPES = frozenset({
    TransactionType.BUY,
    TransactionType.SELL,
    TransactionType.DIVIDEND,
    TransactionType.INTEREST,
})


def _percent(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return (value * HUNDRED).quantize(DISPLAY_PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP)


def _money(value: Decimal) -> Decimal:
    return value.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


def get_available_years(transactions: Iterable, today: date) -> AvailableYears:
    """
    Years with something to show, newest first.

    Runs from the earliest transaction year to the current year. An empty
    ledger yields only the current year.
    """
    dates = [t.date for t in transactions if t.date <= today]
    if not dates:
        return AvailableYears(years=[today.year], earliest_year=None, current_year=today.year)

    earliest = max(min(dates).year, MIN_SUPPORTED_YEAR)
    return AvailableYears(
        years=list(range(today.year, earliest - 1, -1)),
        earliest_year=earliest,
        current_year=today.year,
    )


class _CurrencyFigures:
    """Per-currency intermediate results."""

    def __init__(self) -> None:
        self.start_value = ZERO
        self.end_value = ZERO
        self.net_contributions = ZERO
        self.total_return: Decimal | None = None
        self.xirr: Decimal | None = None
        self.modified_dietz: Decimal | None = None
        self.twr: Decimal | None = None
        self.flow_count = 0


class YearPerformanceService:
    """
    Composes positions, cash flows and the return calculators into
    annual figures.

    Args:
        resolver: Historical prices and exchange rates
        default_home_currency: Used when a portfolio has no home currency

    Example:
        service = YearPerformanceService(resolver)
        perf = service.calculate(portfolio, transactions, splits, 2025)
        perf.xirr_home, perf.twr_source, perf.is_complete
    """

    def __init__(
            self,
            resolver: PriceResolutionService,
            default_home_currency: str | None = None,
    ) -> None:
        self._resolver = resolver
        self._builder = CashFlowBuilder(resolver)
        self._default_home_currency = default_home_currency

    def get_available_years(self, transactions: Iterable) -> AvailableYears:
        return get_available_years(transactions, self._resolver.today())

    def calculate(
            self,
            portfolio,
            transactions: Iterable,
            splits: Iterable[StockSplit],
            year: int,
            year_start_prices: Mapping[str, ReferencePrice] | None = None,
            year_end_prices: Mapping[str, ReferencePrice] | None = None,
            cancel_event: threading.Event | None = None,
    ) -> YearPerformance:
        """
        Annual performance in home and source currency.

        Args:
            portfolio: Anything with currency (source) and home_currency
            transactions: The portfolio's ledger
            splits: Global split list
            year: Calendar year, 2000 through the current year
            year_start_prices: ticker -> price at Dec-31 of year-1
            year_end_prices: ticker -> price at period end
            cancel_event: Propagated to every resolver lookup

        Raises:
            ValidationError: Year out of range
            OperationCancelledError: cancel_event was set
        """
        today = self._resolver.today()
        if year < MIN_SUPPORTED_YEAR or year > today.year:
            raise ValidationError(
                f"Year must be between {MIN_SUPPORTED_YEAR} and {today.year}, got {year}",
                field="year",
            )

        home = (portfolio.home_currency or self._default_home_currency or portfolio.currency).upper()
        source = portfolio.currency.upper()
        txns = sorted(transactions, key=lambda t: (t.date, t.id or 0))
        splits = list(splits)

        period_start = year_start(year)
        start_ref = year_end(year - 1)
        period_end = min(year_end(year), today)

        start_refs = _normalize_references(year_start_prices)
        end_refs = _normalize_references(year_end_prices)

        missing: dict[MissingPrice, None] = {}
        figures = {}
        for currency in dict.fromkeys((home, source)):
            figures[currency] = self._compute(
                txns, splits, currency, home, period_start, start_ref, period_end,
                start_refs, end_refs, missing, cancel_event,
            )

        home_figures, source_figures = figures[home], figures[source]
        result = YearPerformance(
            year=year,
            home_currency=home,
            source_currency=source,
            start_value_home=_money(home_figures.start_value),
            end_value_home=_money(home_figures.end_value),
            net_contributions_home=_money(home_figures.net_contributions),
            total_return_home=_percent(home_figures.total_return),
            xirr_home=_percent(home_figures.xirr),
            modified_dietz_home=_percent(home_figures.modified_dietz),
            twr_home=_percent(home_figures.twr),
            start_value_source=_money(source_figures.start_value),
            end_value_source=_money(source_figures.end_value),
            net_contributions_source=_money(source_figures.net_contributions),
            total_return_source=_percent(source_figures.total_return),
            xirr_source=_percent(source_figures.xirr),
            modified_dietz_source=_percent(source_figures.modified_dietz),
            twr_source=_percent(source_figures.twr),
            cash_flow_count=home_figures.flow_count,
            missing_prices=list(missing),
            is_complete=not missing,
        )

        logger.info(
            f"Year performance {year} ({home}/{source}): "
            f"xirr={result.xirr_home}/{result.xirr_source} "
            f"twr={result.twr_home}/{result.twr_source} "
            f"complete={result.is_complete}"
        )
        return result

    # =========================================================================
    # PER-CURRENCY COMPUTATION
    # =========================================================================

    def _compute(
            self,
            txns: list,
            splits: list[StockSplit],
            currency: str,
            home: str,
            period_start: date,
            start_ref: date,
            period_end: date,
            start_prices: dict[str, ReferencePrice],
            end_prices: dict[str, ReferencePrice],
            missing: dict[MissingPrice, None],
            cancel_event: threading.Event | None,
    ) -> _CurrencyFigures:
        figures = _CurrencyFigures()

        figures.start_value = self._value_positions(
            txns, splits, start_ref, currency, home, start_prices, PriceType.YEAR_START, missing, cancel_event
        )
        figures.end_value = self._value_positions(
            txns, splits, period_end, currency, home, end_prices, PriceType.YEAR_END, missing, cancel_event
        )

        # Investor-perspective flows inside the period, grouped by date
        flows: list[CashFlow] = []
        for txn in txns:
            if txn.date < period_start or txn.date > period_end:
                continue
            if txn.transaction_type not in _FLOW_TYPES:
                continue
            amount = transaction_amount(txn)
            if amount == ZERO:
                continue

            fx = self._builder.transaction_rate(txn, currency, home, cancel_event)
            if fx is None:
                missing[MissingPrice(txn.ticker or txn.currency.upper(), txn.date, PriceType.VALUATION)] = None
                continue
            flows.append(CashFlow(date=txn.date, amount=amount * fx))

        figures.flow_count = len(flows)
        contributions = [CashFlow(date=cf.date, amount=-cf.amount) for cf in flows]
        figures.net_contributions = sum((cf.amount for cf in contributions), ZERO)

        figures.total_return = calculate_total_return(
            figures.start_value, figures.end_value, figures.net_contributions
        )

        xirr_flows = [CashFlow(date=period_start, amount=-figures.start_value)] + flows
        xirr_flows.append(CashFlow(date=period_end, amount=figures.end_value))
        figures.xirr = calculate_xirr(xirr_flows)

        figures.modified_dietz = calculate_modified_dietz(
            figures.start_value, figures.end_value, contributions, period_start, period_end
        )

        valuations = self._flow_valuations(
            txns, splits, contributions, period_end, currency, home, missing, cancel_event
        )
        if valuations is not None:
            figures.twr = calculate_time_weighted_return(figures.start_value, figures.end_value, valuations)

        return figures

    def _flow_valuations(
            self,
            txns: list,
            splits: list[StockSplit],
            contributions: list[CashFlow],
            period_end: date,
            currency: str,
            home: str,
            missing: dict[MissingPrice, None],
            cancel_event: threading.Event | None,
    ) -> list[FlowValuation] | None:
        """
        Value around each flow date strictly before period end.

        value_after is the market value of the holdings after that day's
        trades; value_before backs the day's contributions out of it.
        Returns None when any valuation could not be completed.
        """
        by_date: dict[date, Decimal] = {}
        for cf in contributions:
            if cf.date < period_end:
                by_date[cf.date] = by_date.get(cf.date, ZERO) + cf.amount

        valuations = []
        complete = True
        for flow_date, contributed in sorted(by_date.items()):
            gaps: dict[MissingPrice, None] = {}
            value_after = self._value_positions(
                txns, splits, flow_date, currency, home, {}, PriceType.VALUATION, gaps, cancel_event
            )
            if gaps:
                missing.update(gaps)
                complete = False
                continue
            valuations.append(FlowValuation(
                date=flow_date,
                value_before=value_after - contributed,
                value_after=value_after,
            ))

        if not complete:
            logger.debug(f"TWR in {currency} skipped: incomplete interior valuations")
            return None
        return valuations

    def _value_positions(
            self,
            txns: list,
            splits: list[StockSplit],
            on_date: date,
            currency: str,
            home: str,
            references: dict[str, ReferencePrice],
            price_type: PriceType,
            missing: dict[MissingPrice, None],
            cancel_event: threading.Event | None,
    ) -> Decimal:
        total = ZERO
        for position in calculate_positions(txns, splits, on_date):
            reference = references.get(position.ticker)

            if reference is not None:
                price = reference.price
            else:
                price = self._resolver.get_stock_price(
                    position.ticker, position.market, on_date, cancel_event=cancel_event
                ).value
            if price is None:
                missing[MissingPrice(position.ticker, on_date, price_type)] = None
                continue

            fx = self._position_rate(position.currency, currency, home, on_date, reference, cancel_event)
            if fx is None:
                missing[MissingPrice(position.ticker, on_date, price_type)] = None
                continue

            total += position.shares * price * fx
        return total

    def _position_rate(
            self,
            position_currency: str,
            currency: str,
            home: str,
            on_date: date,
            reference: ReferencePrice | None,
            cancel_event: threading.Event | None,
    ) -> Decimal | None:
        if position_currency == currency:
            return ONE
        if reference is not None and reference.exchange_rate and currency == home:
            return Decimal(reference.exchange_rate)
        return self._resolver.get_exchange_rate(
            position_currency, currency, on_date, cancel_event=cancel_event
        ).value


def _normalize_references(prices: Mapping[str, ReferencePrice] | None) -> dict[str, ReferencePrice]:
    return {ticker.strip().upper(): ref for ticker, ref in (prices or {}).items()}
