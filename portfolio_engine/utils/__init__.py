# portfolio_engine/utils/__init__.py
"""
Cross-cutting utilities for the portfolio engine.

- logging: Logging configuration with correlation ID support
- context: Run-scoped correlation IDs
- dates: Calendar helpers (year boundaries, month ends)

Usage:
    from portfolio_engine.utils import setup_logging, run_context
    from portfolio_engine.utils.dates import year_end
"""

from portfolio_engine.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    run_context,
)
from portfolio_engine.utils.logging import setup_logging

__all__ = [
    # Logging
    "setup_logging",
    # Context
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "run_context",
]
