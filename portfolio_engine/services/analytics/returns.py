# portfolio_engine/services/analytics/returns.py
"""
XIRR (money-weighted, annualized return) solver.

XIRR is the rate r that zeroes the net present value of a set of dated
cash flows:

    XNPV(r) = Σ CF_i / (1 + r)^((d_i - d_0) / 365) = 0

with derivative

    XNPV'(r) = Σ -t_i · CF_i / (1 + r)^(t_i + 1),   t_i = (d_i - d_0) / 365

Solver strategy:
    1. Newton-Raphson from r = 0.1, converged when |Δr| < 1e-7, at most
       100 iterations.
    2. If the derivative vanishes, the iterate leaves the domain (r <= -1)
       or Newton does not converge, bisection on [-0.999, 10]. The upper
       bound is expanded x10 (up to 1e6) until XNPV changes sign.
    3. If no bracket can be found, the bisection point with the smallest
       |XNPV| is returned with LOW confidence.

XIRR is undefined (None) unless there is at least one negative and one
positive flow. Undefined is not an error.

Precision Note:
    The whole solver runs in Decimal with 34 significant digits. Decimal
    supports non-integer exponents for positive bases, so no float
    conversion is needed. The result is rounded to 8 decimal places.
"""

import logging
import decimal
from collections.abc import Iterable
from decimal import Decimal, ROUND_HALF_UP

from portfolio_engine.services.analytics.types import (
    CashFlow,
    XirrConfidence,
    XirrMethod,
    XirrResult,
)
from portfolio_engine.services.constants import (
    CALENDAR_DAYS_PER_YEAR,
    IRR_BISECTION_HIGH,
    IRR_BISECTION_LOW,
    IRR_BISECTION_MAX_HIGH,
    IRR_BISECTION_MAX_ITERATIONS,
    IRR_DECIMAL_PRECISION,
    IRR_INITIAL_GUESS,
    IRR_MAX_ITERATIONS,
    IRR_MIN_DERIVATIVE,
    IRR_TOLERANCE,
    ONE,
    RATE_PRECISION,
    ZERO,
)

logger = logging.getLogger(__name__)

_DAYS_PER_YEAR = Decimal(CALENDAR_DAYS_PER_YEAR)
_TWO = Decimal("2")
_TEN = Decimal("10")

# (years since first flow, amount)
_Points = list[tuple[Decimal, Decimal]]


# =============================================================================
# XNPV AND DERIVATIVE
# =============================================================================

def _xnpv(rate: Decimal, points: _Points) -> Decimal:
    base = ONE + rate
    return sum((amount / base ** years for years, amount in points), ZERO)


def _xnpv_derivative(rate: Decimal, points: _Points) -> Decimal:
    base = ONE + rate
    return sum(
        (-years * amount / base ** (years + ONE) for years, amount in points if years > ZERO),
        ZERO,
    )


# =============================================================================
# SOLVERS
# =============================================================================

def _newton_raphson(points: _Points) -> tuple[Decimal, int] | None:
    """
    Returns:
        (rate, iterations) on convergence, None if Newton must give up
    """
    rate = IRR_INITIAL_GUESS

    for iteration in range(1, IRR_MAX_ITERATIONS + 1):
        npv = _xnpv(rate, points)
        derivative = _xnpv_derivative(rate, points)

        if abs(derivative) < IRR_MIN_DERIVATIVE:
            logger.debug(f"XIRR Newton: derivative ~0 at r={rate}, iteration {iteration}")
            return None

        next_rate = rate - npv / derivative
        if next_rate <= -ONE:
            logger.debug(f"XIRR Newton: iterate left domain (r={next_rate}), iteration {iteration}")
            return None

        if abs(next_rate - rate) < IRR_TOLERANCE:
            return next_rate, iteration

        rate = next_rate

    logger.debug(f"XIRR Newton: no convergence after {IRR_MAX_ITERATIONS} iterations")
    return None


def _bisection(points: _Points) -> tuple[Decimal, int, bool]:
    """
    Returns:
        (rate, iterations, converged)
    """
    low, high = IRR_BISECTION_LOW, IRR_BISECTION_HIGH
    f_low = _xnpv(low, points)
    f_high = _xnpv(high, points)

    # Track the best point seen in case no sign change is ever found
    best_rate, best_value = (low, f_low) if abs(f_low) <= abs(f_high) else (high, f_high)

    while (f_low > ZERO) == (f_high > ZERO) and high < IRR_BISECTION_MAX_HIGH:
        high = high * _TEN
        f_high = _xnpv(high, points)
        if abs(f_high) < abs(best_value):
            best_rate, best_value = high, f_high

    if (f_low > ZERO) == (f_high > ZERO):
        logger.warning("XIRR bisection: no sign change in bracket, returning best estimate")
        return best_rate, 0, False

    mid = low
    for iteration in range(1, IRR_BISECTION_MAX_ITERATIONS + 1):
        mid = (low + high) / _TWO
        f_mid = _xnpv(mid, points)

        if f_mid == ZERO or (high - low) / _TWO < IRR_TOLERANCE:
            return mid, iteration, True

        if (f_mid > ZERO) == (f_low > ZERO):
            low, f_low = mid, f_mid
        else:
            high = mid

    return mid, IRR_BISECTION_MAX_ITERATIONS, False


# =============================================================================
# PUBLIC API
# =============================================================================

def solve_xirr(cash_flows: Iterable[CashFlow]) -> XirrResult | None:
    """
    Solve XIRR for a set of dated cash flows.

    Args:
        cash_flows: Dated signed amounts (negative = invested,
                    positive = returned, terminal value positive)

    Returns:
        XirrResult, or None when there is not at least one negative and
        one positive non-zero flow

    Example:
        >>> flows = [
        ...     CashFlow(date(2024, 1, 1), Decimal("-100")),
        ...     CashFlow(date(2024, 12, 31), Decimal("110")),
        ... ]
        >>> solve_xirr(flows).rate  # ~0.10
    """
    flows = sorted(
        (cf for cf in cash_flows if cf.amount != ZERO),
        key=lambda cf: cf.date,
    )
    if not any(cf.amount < ZERO for cf in flows) or not any(cf.amount > ZERO for cf in flows):
        return None

    first_date = flows[0].date

    with decimal.localcontext() as ctx:
        ctx.prec = IRR_DECIMAL_PRECISION
        points = [
            (Decimal((cf.date - first_date).days) / _DAYS_PER_YEAR, Decimal(cf.amount))
            for cf in flows
        ]

        newton = _newton_raphson(points)
        if newton is not None:
            rate, iterations = newton
            method = XirrMethod.NEWTON
            confidence = XirrConfidence.HIGH
        else:
            rate, iterations, converged = _bisection(points)
            method = XirrMethod.BISECTION
            confidence = XirrConfidence.HIGH if converged else XirrConfidence.LOW

    result = XirrResult(
        rate=rate.quantize(RATE_PRECISION, rounding=ROUND_HALF_UP),
        cash_flow_count=len(flows),
        earliest_transaction_date=first_date,
        confidence=confidence,
        method=method,
        iterations=iterations,
    )
    logger.debug(
        f"XIRR solved: rate={result.rate} method={method.value} "
        f"iterations={iterations} confidence={confidence.value} flows={len(flows)}"
    )
    return result


def calculate_xirr(cash_flows: Iterable[CashFlow]) -> Decimal | None:
    """
    Convenience wrapper returning only the rate.

    Returns:
        Annual rate as decimal (0.10 = 10%), or None if undefined
    """
    result = solve_xirr(cash_flows)
    return result.rate if result is not None else None
