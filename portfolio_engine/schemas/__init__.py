# portfolio_engine/schemas/__init__.py
"""
Pydantic schemas for serializing engine results.

- performance: XIRR, annual performance and benchmark returns

Usage:
    from portfolio_engine.schemas import YearPerformanceSchema

    payload = YearPerformanceSchema.from_result(perf).model_dump(by_alias=True)
"""

from portfolio_engine.schemas.performance import (
    AvailableYearsResponse,
    BenchmarkReturnsResponse,
    MissingItemSchema,
    MissingPriceSchema,
    PortfolioXirrResponse,
    XirrResultSchema,
    YearPerformanceSchema,
)

__all__ = [
    "AvailableYearsResponse",
    "BenchmarkReturnsResponse",
    "MissingItemSchema",
    "MissingPriceSchema",
    "PortfolioXirrResponse",
    "XirrResultSchema",
    "YearPerformanceSchema",
]
