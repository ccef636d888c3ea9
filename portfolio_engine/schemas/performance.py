# portfolio_engine/schemas/performance.py
"""
Pydantic schemas for performance results.

These schemas are the external representation of the analytics results:
- XIRR (portfolio / position)
- Annual performance in home and source currency
- Annual benchmark returns

Design decisions:
- Field names are camelCase on the wire (alias), snake_case in Python
- All numeric values are serialized as STRINGS to preserve Decimal precision
- XIRR rate is a decimal (0.10 = 10%); annual figures are percentages (2 dp)
- Null means "cannot be calculated" (insufficient data), never zero
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from portfolio_engine.services.analytics.types import (
    BenchmarkReturns,
    MissingItem,
    MissingPrice,
    PortfolioXirr,
    XirrResult,
    YearPerformance,
)


def _to_str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# XIRR
# =============================================================================

class XirrResultSchema(_CamelModel):
    """Solver output. rate is a decimal string ("0.10000000" = 10%)."""

    rate: str = Field(..., description="Annual rate as decimal")
    cash_flow_count: int = Field(..., description="Number of dated flows used")
    earliest_transaction_date: date = Field(..., description="Date of the first flow")
    confidence: str = Field(..., description="'high' when the solver converged, else 'low'")

    @classmethod
    def from_result(cls, result: XirrResult) -> "XirrResultSchema":
        return cls(
            rate=str(result.rate),
            cash_flow_count=result.cash_flow_count,
            earliest_transaction_date=result.earliest_transaction_date,
            confidence=result.confidence.value,
        )


class MissingItemSchema(_CamelModel):
    kind: str
    date: date
    key: str
    transaction_id: int | None = None

    @classmethod
    def from_item(cls, item: MissingItem) -> "MissingItemSchema":
        return cls(kind=item.kind.value, date=item.date, key=item.key, transaction_id=item.transaction_id)


class PortfolioXirrResponse(_CamelModel):
    """XIRR with everything that had to be left out."""

    xirr: XirrResultSchema | None = Field(None, description="Null when XIRR is undefined")
    as_of_date: date
    cash_flow_count: int = 0
    missing_exchange_rates: list[MissingItemSchema] = Field(default_factory=list)
    missing_prices: list[MissingItemSchema] = Field(default_factory=list)
    is_complete: bool = True

    @classmethod
    def from_result(cls, result: PortfolioXirr) -> "PortfolioXirrResponse":
        return cls(
            xirr=XirrResultSchema.from_result(result.xirr) if result.xirr else None,
            as_of_date=result.as_of_date,
            cash_flow_count=result.cash_flow_count,
            missing_exchange_rates=[MissingItemSchema.from_item(m) for m in result.missing_exchange_rates],
            missing_prices=[MissingItemSchema.from_item(m) for m in result.missing_prices],
            is_complete=result.is_complete,
        )


# =============================================================================
# YEAR PERFORMANCE
# =============================================================================

class MissingPriceSchema(_CamelModel):
    ticker: str
    date: date
    price_type: str = Field(..., description="YearStart, YearEnd or Valuation")

    @classmethod
    def from_missing(cls, missing: MissingPrice) -> "MissingPriceSchema":
        return cls(ticker=missing.ticker, date=missing.date, price_type=missing.price_type.value)


class YearPerformanceSchema(_CamelModel):
    """
    Annual performance, side by side in home and source currency.

    Values are currency amounts (2 dp); returns are percentages (2 dp).
    """

    year: int
    home_currency: str
    source_currency: str

    start_value_home: str | None = None
    end_value_home: str | None = None
    net_contributions_home: str | None = None
    total_return_home: str | None = None
    xirr_home: str | None = None
    modified_dietz_home: str | None = None
    twr_home: str | None = None

    start_value_source: str | None = None
    end_value_source: str | None = None
    net_contributions_source: str | None = None
    total_return_source: str | None = None
    xirr_source: str | None = None
    modified_dietz_source: str | None = None
    twr_source: str | None = None

    cash_flow_count: int = 0
    missing_prices: list[MissingPriceSchema] = Field(default_factory=list)
    is_complete: bool = True

    @classmethod
    def from_result(cls, result: YearPerformance) -> "YearPerformanceSchema":
        amounts = {}
        for suffix in ("home", "source"):
            for name in (
                "start_value", "end_value", "net_contributions", "total_return",
                "xirr", "modified_dietz", "twr",
            ):
                attr = f"{name}_{suffix}"
                amounts[attr] = _to_str(getattr(result, attr))

        return cls(
            year=result.year,
            home_currency=result.home_currency,
            source_currency=result.source_currency,
            cash_flow_count=result.cash_flow_count,
            missing_prices=[MissingPriceSchema.from_missing(m) for m in result.missing_prices],
            is_complete=result.is_complete,
            **amounts,
        )


class AvailableYearsResponse(_CamelModel):
    years: list[int]
    earliest_year: int | None = None
    current_year: int | None = None


# =============================================================================
# BENCHMARKS
# =============================================================================

class BenchmarkReturnsResponse(_CamelModel):
    """
    Annual benchmark returns.

    returns maps benchmark key to a percentage string; null means
    insufficient data (a missing start or end price).
    """

    year: int
    returns: dict[str, str | None] = Field(default_factory=dict)
    has_start_prices: bool = False
    has_end_prices: bool = False

    @classmethod
    def from_result(cls, result: BenchmarkReturns) -> "BenchmarkReturnsResponse":
        return cls(
            year=result.year,
            returns={key: _to_str(value) for key, value in result.returns.items()},
            has_start_prices=result.has_start_prices,
            has_end_prices=result.has_end_prices,
        )
