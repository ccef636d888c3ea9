# portfolio_engine/services/analytics/types.py
"""
Data types for the analytics services.

This module defines the data structures passed between the cash-flow
builder, the return solvers and the composition services. All monetary
values use Decimal.

Architecture:
    - CashFlow / CashFlowEvent: Dated signed amounts (investor perspective)
    - MissingItem / MissingPrice: Inputs that could not be resolved
    - XirrResult: Solver output with confidence
    - FlowValuation: Portfolio value just before/after an interior flow (TWR)
    - PeriodReturns: Modified Dietz + TWR for one period
    - YearPerformance: Annual figures in home and source currency
    - BenchmarkReturns: Annual benchmark returns by key

Sign convention (investor perspective):
    Negative = money leaves the investor (buy, deposit, starting value)
    Positive = money returns to the investor (sell, dividend, terminal value)
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum


# =============================================================================
# CASH FLOWS
# =============================================================================

@dataclass
class CashFlow:
    """
    A dated signed amount, the minimal input of the XIRR solver.

    Attributes:
        date: When the cash flow occurred
        amount: Negative = invested, positive = returned to the investor
    """
    date: date
    amount: Decimal


class CashFlowKind(str, Enum):
    INFLOW = "inflow"                  # Money returned to the investor
    OUTFLOW = "outflow"                # Money paid in by the investor
    TERMINAL_VALUE = "terminal_value"  # Market value at the as-of date


@dataclass
class CashFlowEvent(CashFlow):
    """
    A CashFlow with its provenance.

    Attributes:
        kind: Inflow, outflow or terminal value
        transaction_id: Originating transaction (None for terminal/boundary flows)
        ticker: Security involved, if any
    """
    kind: CashFlowKind = CashFlowKind.OUTFLOW
    transaction_id: int | None = None
    ticker: str | None = None


# =============================================================================
# MISSING DATA
# =============================================================================

class MissingKind(str, Enum):
    EXCHANGE_RATE = "exchange_rate"
    PRICE = "price"


@dataclass(frozen=True)
class MissingItem:
    """
    An input the builder could not resolve; its flow was left out.

    Attributes:
        kind: Exchange rate or price
        date: Date the value was needed for
        key: Currency code (for FX) or ticker (for prices)
        transaction_id: Affected transaction, if any
    """
    kind: MissingKind
    date: date
    key: str
    transaction_id: int | None = None


class PriceType(str, Enum):
    YEAR_START = "YearStart"
    YEAR_END = "YearEnd"
    VALUATION = "Valuation"


@dataclass(frozen=True)
class MissingPrice:
    """
    A price (or its FX rate) missing from an annual calculation.

    Attributes:
        ticker: Security
        date: Reference date the price was needed for
        price_type: YearStart, YearEnd, or Valuation (interior flow date)
    """
    ticker: str
    date: date
    price_type: PriceType


# =============================================================================
# XIRR
# =============================================================================

class XirrConfidence(str, Enum):
    HIGH = "high"  # Newton-Raphson or bisection converged
    LOW = "low"    # Best bisection estimate, not converged


class XirrMethod(str, Enum):
    NEWTON = "newton"
    BISECTION = "bisection"


@dataclass
class XirrResult:
    """
    Annualized money-weighted return.

    Attributes:
        rate: Annual rate as decimal (0.10 = 10%)
        cash_flow_count: Number of dated flows used
        earliest_transaction_date: Date of the first flow
        confidence: HIGH when the solver converged
        method: Which solver produced the rate
        iterations: Iterations spent in the final method
    """
    rate: Decimal
    cash_flow_count: int
    earliest_transaction_date: date
    confidence: XirrConfidence = XirrConfidence.HIGH
    method: XirrMethod = XirrMethod.NEWTON
    iterations: int = 0

    @property
    def percentage(self) -> Decimal:
        return self.rate * 100


@dataclass
class PortfolioXirr:
    """
    XIRR of a portfolio or a single position, with what was left out.

    Attributes:
        xirr: Solver result, None when undefined (no sign change or no flows)
        as_of_date: Terminal valuation date
        missing_exchange_rates: FX lookups that failed (transaction skipped)
        missing_prices: Positions whose terminal price failed
        is_complete: False whenever anything is missing
    """
    xirr: XirrResult | None
    as_of_date: date
    cash_flow_count: int = 0
    missing_exchange_rates: list[MissingItem] = field(default_factory=list)
    missing_prices: list[MissingItem] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing_exchange_rates and not self.missing_prices


# =============================================================================
# PERIOD RETURNS
# =============================================================================

@dataclass(frozen=True)
class FlowValuation:
    """
    Portfolio value around one interior external flow (for TWR).

    Attributes:
        date: Flow date
        value_before: Market value just before the flow
        value_after: Market value just after the flow
    """
    date: date
    value_before: Decimal
    value_after: Decimal


@dataclass
class PeriodReturns:
    """
    Modified Dietz and TWR for a single period, as decimals.

    Either is None when undefined (zero-length period, non-positive
    denominator, no positive sub-period start).
    """
    modified_dietz: Decimal | None = None
    time_weighted: Decimal | None = None


# =============================================================================
# YEAR PERFORMANCE
# =============================================================================

@dataclass(frozen=True)
class ReferencePrice:
    """
    Caller-supplied boundary price.

    Attributes:
        price: Close in the security's trading currency
        exchange_rate: Trading currency -> home currency rate (optional)
    """
    price: Decimal
    exchange_rate: Decimal | None = None


@dataclass
class YearPerformance:
    """
    Annual performance of a portfolio in home and source currency.

    Percentages (xirr_*, modified_dietz_*, twr_*, total_return_*) are
    expressed in percent, rounded to 2 decimals.
    """
    year: int
    home_currency: str
    source_currency: str

    start_value_home: Decimal | None = None
    end_value_home: Decimal | None = None
    net_contributions_home: Decimal = Decimal("0")
    total_return_home: Decimal | None = None
    xirr_home: Decimal | None = None
    modified_dietz_home: Decimal | None = None
    twr_home: Decimal | None = None

    start_value_source: Decimal | None = None
    end_value_source: Decimal | None = None
    net_contributions_source: Decimal = Decimal("0")
    total_return_source: Decimal | None = None
    xirr_source: Decimal | None = None
    modified_dietz_source: Decimal | None = None
    twr_source: Decimal | None = None

    cash_flow_count: int = 0
    missing_prices: list[MissingPrice] = field(default_factory=list)
    is_complete: bool = True


@dataclass
class AvailableYears:
    years: list[int] = field(default_factory=list)
    earliest_year: int | None = None
    current_year: int | None = None


# =============================================================================
# BENCHMARKS
# =============================================================================

@dataclass
class BenchmarkReturns:
    """
    Annual returns of the requested benchmarks.

    Attributes:
        year: Calendar year
        returns: key -> return in percent (2 dp), None = insufficient data
        has_start_prices: At least one benchmark had a start price
        has_end_prices: At least one benchmark had an end price
    """
    year: int
    returns: dict[str, Decimal | None] = field(default_factory=dict)
    has_start_prices: bool = False
    has_end_prices: bool = False
