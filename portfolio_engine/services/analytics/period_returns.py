# portfolio_engine/services/analytics/period_returns.py
"""
Period return calculators: Modified Dietz and Time-Weighted Return.

Both take external flows from the PORTFOLIO's perspective (contributions):
positive = money put into the portfolio, negative = money taken out. This
is the opposite sign of the investor-perspective flows fed to XIRR; use
`to_contributions` to convert.

Formulas:
    Modified Dietz:
        w_i = (D - d_i) / D              D = period days, d_i = days since start
        R   = (V_end - V_start - Σ CF_i) / (V_start + Σ w_i · CF_i)

    TWR (sub-period linking at each flow date):
        r_j = (V_end_j - CF_j) / V_start_j - 1
        TWR = Π (1 + r_j) - 1

        With each flow carrying the value just before it (value_before) and
        just after it (value_after), the sub-period ending at a flow has
        V_end_j - CF_j = value_before, and the next one starts at value_after.

All functions return decimals (0.15 = 15%) or None when undefined.
"""

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from portfolio_engine.services.analytics.types import CashFlow, FlowValuation, PeriodReturns
from portfolio_engine.services.constants import ONE, ZERO

logger = logging.getLogger(__name__)


def to_contributions(flows: Iterable[CashFlow]) -> list[CashFlow]:
    """Flip investor-perspective flows into portfolio contributions."""
    return [CashFlow(date=cf.date, amount=-cf.amount) for cf in flows]


# =============================================================================
# MODIFIED DIETZ
# =============================================================================

def calculate_modified_dietz(
        start_value: Decimal,
        end_value: Decimal,
        flows: Iterable[CashFlow],
        period_start: date,
        period_end: date,
) -> Decimal | None:
    """
    Money-weighted period return, each flow weighted by time invested.

    Args:
        start_value: Market value at period_start
        end_value: Market value at period_end
        flows: Contributions (positive = into the portfolio)
        period_start: First day of the period
        period_end: Last day of the period

    Returns:
        Return as decimal, or None when the period has no length or the
        weighted capital is not positive

    Note:
        Flows dated outside [period_start, period_end] are ignored.
    """
    period_days = (period_end - period_start).days
    if period_days <= 0:
        return None

    total_days = Decimal(period_days)
    net_flow = ZERO
    weighted_flow = ZERO

    for cf in flows:
        if cf.date < period_start or cf.date > period_end:
            continue
        weight = (total_days - Decimal((cf.date - period_start).days)) / total_days
        net_flow += cf.amount
        weighted_flow += weight * cf.amount

    denominator = start_value + weighted_flow
    if denominator <= ZERO:
        logger.debug(f"Modified Dietz undefined: weighted capital {denominator} <= 0")
        return None

    return (end_value - start_value - net_flow) / denominator


# =============================================================================
# TIME-WEIGHTED RETURN
# =============================================================================

def calculate_time_weighted_return(
        start_value: Decimal,
        end_value: Decimal,
        flow_valuations: Iterable[FlowValuation],
) -> Decimal | None:
    """
    Chain-linked return, neutral to the size and timing of flows.

    Args:
        start_value: Market value at the start of the period
        end_value: Market value at the end of the period
        flow_valuations: One entry per interior flow date with the value
                         just before and just after the flow

    Returns:
        TWR as decimal, or None if no sub-period starts with a positive value

    Note:
        Sub-periods that start at zero (nothing held) are skipped, so a
        portfolio funded mid-period is measured from its first holding.
    """
    factor = ONE
    current_start = start_value
    has_period = False

    for valuation in sorted(flow_valuations, key=lambda v: v.date):
        if current_start > ZERO:
            factor *= valuation.value_before / current_start
            has_period = True
        current_start = valuation.value_after

    if current_start > ZERO:
        factor *= end_value / current_start
        has_period = True

    if not has_period:
        return None

    return factor - ONE


def calculate_period_returns(
        start_value: Decimal,
        end_value: Decimal,
        flows: Iterable[CashFlow],
        period_start: date,
        period_end: date,
        flow_valuations: Iterable[FlowValuation] = (),
) -> PeriodReturns:
    """
    Modified Dietz and TWR for the same period.

    Args:
        flows: Contributions (positive = into the portfolio)
        flow_valuations: Values around each interior flow date (TWR)
    """
    return PeriodReturns(
        modified_dietz=calculate_modified_dietz(start_value, end_value, list(flows), period_start, period_end),
        time_weighted=calculate_time_weighted_return(start_value, end_value, flow_valuations),
    )


def calculate_total_return(
        start_value: Decimal,
        end_value: Decimal,
        net_contributions: Decimal,
) -> Decimal | None:
    """
    Gain over the period relative to capital at risk.

    Formula:
        (end - start - net_contributions) / start       when start > 0
        (end - net_contributions) / net_contributions   when nothing was held at start

    Returns:
        Return as decimal, or None if there is no capital base
    """
    if start_value > ZERO:
        return (end_value - start_value - net_contributions) / start_value
    if net_contributions > ZERO:
        return (end_value - net_contributions) / net_contributions
    return None
