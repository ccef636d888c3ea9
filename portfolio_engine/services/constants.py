# portfolio_engine/services/constants.py
"""
Centralized constants for the portfolio performance engine.

This module provides a single source of truth for the business constants
used across the services: day counts, solver parameters, cache rules and
precision levels.

Usage:
    from portfolio_engine.services.constants import (
        CALENDAR_DAYS_PER_YEAR,
        IRR_MAX_ITERATIONS,
        PRICE_LOOKBACK_DAYS,
    )
"""

from decimal import Decimal


# =============================================================================
# FINANCIAL CALENDAR CONSTANTS
# =============================================================================

# Standard number of calendar days in a year
# XIRR uses actual days / 365
CALENDAR_DAYS_PER_YEAR: int = 365

# Earliest year accepted for annual performance and benchmark requests
MIN_SUPPORTED_YEAR: int = 2000


# =============================================================================
# PRICE & FX LOOKBACK SETTINGS
# =============================================================================

# Days to look back for the nearest trading day on/before a requested date.
# Covers weekends plus multi-day holidays (Lunar New Year, Christmas week).
PRICE_LOOKBACK_DAYS: int = 10

# Window used for month-end lookups (last trading day of a month)
MONTH_END_LOOKBACK_DAYS: int = 7


# =============================================================================
# SNAPSHOT CACHE RULES
# =============================================================================

# A "not available" marker is only written for dates at least this old.
# Recent dates may still be published by a provider later.
NEGATIVE_CACHE_MIN_AGE_DAYS: int = 7

# Source tag stored with manually entered values
MANUAL_SOURCE: str = "manual"


# =============================================================================
# IRR/XIRR CALCULATION SETTINGS
# =============================================================================

# Maximum iterations for Newton-Raphson method in XIRR calculation
IRR_MAX_ITERATIONS: int = 100

# Convergence tolerance on the rate step |Δr|
IRR_TOLERANCE: Decimal = Decimal("0.0000001")

# Initial guess for IRR iteration (10% annual return)
IRR_INITIAL_GUESS: Decimal = Decimal("0.1")

# Below this absolute derivative Newton-Raphson is abandoned for bisection
IRR_MIN_DERIVATIVE: Decimal = Decimal("1E-10")

# Bisection bracket
IRR_BISECTION_LOW: Decimal = Decimal("-0.999")
IRR_BISECTION_HIGH: Decimal = Decimal("10")

# The high bound is expanded x10 until a sign change is found, up to this cap
IRR_BISECTION_MAX_HIGH: Decimal = Decimal("1000000")

# Maximum bisection iterations
IRR_BISECTION_MAX_ITERATIONS: int = 200

# Working precision for Decimal arithmetic inside the solver
IRR_DECIMAL_PRECISION: int = 34


# =============================================================================
# DECIMAL PRECISION CONSTANTS
# =============================================================================

# Currency amounts: 2 decimal places (e.g., $1234.56)
CURRENCY_PRECISION: Decimal = Decimal("0.01")

# Share quantities, prices and FX rates: 8 decimal places
SHARE_PRECISION: Decimal = Decimal("0.00000001")

# XIRR rate precision (0.000001%)
RATE_PRECISION: Decimal = Decimal("0.00000001")

# Display percentage: 2 decimal places (e.g., 12.34%)
# Used for: benchmark returns, performance percentages
DISPLAY_PERCENTAGE_PRECISION: Decimal = Decimal("0.01")


# =============================================================================
# EXTERNAL API TIMEOUT SETTINGS
# =============================================================================

# Default timeout for external API calls (market data providers)
EXTERNAL_API_TIMEOUT_SECONDS: int = 10


# =============================================================================
# UTILITY CONSTANTS
# =============================================================================

# Type-safe zero for Decimal comparisons
ZERO: Decimal = Decimal("0")

ONE: Decimal = Decimal("1")

HUNDRED: Decimal = Decimal("100")
