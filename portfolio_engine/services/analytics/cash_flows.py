# portfolio_engine/services/analytics/cash_flows.py
"""
Cash-flow builder.

Turns ledger transactions into dated, signed amounts in a single valuation
currency, ready for the XIRR solver and the period-return calculators.

Scopes:
    SECURITY (default)
        BUY                 -(shares x price + fee) x fx
        SELL                +(shares x price - fee) x fx
        DIVIDEND / INTEREST +amount x fx
        DEPOSIT / WITHDRAWAL excluded (pure currency-ledger movements)
        terminal            Σ open shares x price(as_of) x fx(as_of)

    LEDGER
        DEPOSIT             -amount x fx
        WITHDRAWAL          +amount x fx
        BUY/SELL/DIVIDEND/INTEREST are internal to the ledger and excluded
        terminal            positions + cash balance of the ledger

FX choice for a transaction:
    - 1 when the transaction currency is the valuation currency
    - the recorded trade-time exchange_rate when valuing in home currency
    - otherwise the resolver's rate on the transaction date

Nothing is ever silently dropped: a transaction whose rate, or a position
whose price, cannot be resolved is left out and reported in `missing`.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from portfolio_engine.models import StockSplit, TransactionType
from portfolio_engine.services.analytics.positions import calculate_positions
from portfolio_engine.services.analytics.types import (
    CashFlowEvent,
    CashFlowKind,
    MissingItem,
    MissingKind,
)
from portfolio_engine.services.constants import ONE, ZERO
from portfolio_engine.services.price_resolution import PriceResolutionService

logger = logging.getLogger(__name__)


class CashFlowScope(str, Enum):
    SECURITY = "security"
    LEDGER = "ledger"


_SECURITY_TYPES = frozenset({
    TransactionType.BUY,
    TransactionType.SELL,
    TransactionType.DIVIDEND,
    TransactionType.INTEREST,
})
_LEDGER_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.WITHDRAWAL})


@dataclass
class CashFlowBuildResult:
    """
    Attributes:
        flows: Dated signed amounts, terminal value last
        missing: Inputs that could not be resolved
        terminal_value: Market value at as_of (0 if nothing held)
    """
    flows: list[CashFlowEvent] = field(default_factory=list)
    missing: list[MissingItem] = field(default_factory=list)
    terminal_value: Decimal = ZERO

    @property
    def is_complete(self) -> bool:
        return not self.missing


# =============================================================================
# SIGNED AMOUNTS
# =============================================================================

def transaction_amount(txn) -> Decimal:
    """
    Signed amount of a transaction in its own currency (investor perspective).

    Returns 0 for transaction types that carry no cash amount.
    """
    quantity = Decimal(txn.quantity or 0)
    price = Decimal(txn.price_per_share or 0)
    fee = Decimal(txn.fee or 0)
    amount = Decimal(txn.amount or 0)

    txn_type = txn.transaction_type
    if txn_type == TransactionType.BUY:
        return -(quantity * price + fee)
    if txn_type == TransactionType.SELL:
        return quantity * price - fee
    if txn_type in (TransactionType.DIVIDEND, TransactionType.INTEREST, TransactionType.WITHDRAWAL):
        return amount
    if txn_type == TransactionType.DEPOSIT:
        return -amount
    return ZERO


def _cash_effect(txn) -> Decimal:
    """Effect of a transaction on the ledger's cash balance."""
    if txn.transaction_type in _LEDGER_TYPES:
        return -transaction_amount(txn)
    return transaction_amount(txn)


# =============================================================================
# BUILDER
# =============================================================================

class CashFlowBuilder:
    """
    Builds XIRR-ready cash flows from transactions.

    Args:
        resolver: Supplies historical FX rates and terminal prices
        scope: SECURITY (default) or LEDGER

    Example:
        builder = CashFlowBuilder(resolver)
        result = builder.build(transactions, date(2025, 12, 31), "TWD", splits, home_currency="TWD")
        rate = calculate_xirr(result.flows)
    """

    def __init__(
            self,
            resolver: PriceResolutionService,
            scope: CashFlowScope = CashFlowScope.SECURITY,
    ) -> None:
        self._resolver = resolver
        self._scope = scope

    def build(
            self,
            transactions: Iterable,
            as_of: date,
            valuation_currency: str,
            splits: Iterable[StockSplit] = (),
            home_currency: str | None = None,
            current_prices: Mapping[str, Decimal] | None = None,
            cancel_event: threading.Event | None = None,
    ) -> CashFlowBuildResult:
        """
        Build flows for all transactions dated on/before as_of plus a terminal flow.

        Args:
            transactions: Ledger entries
            as_of: Terminal valuation date
            valuation_currency: Currency all flows are expressed in
            splits: Global split list for share adjustment
            home_currency: Portfolio home currency (enables trade-time rates)
            current_prices: ticker -> price overrides for the terminal value
            cancel_event: Propagated to resolver lookups

        Returns:
            CashFlowBuildResult
        """
        valuation_currency = valuation_currency.upper()
        home_currency = home_currency.upper() if home_currency else None
        included = _SECURITY_TYPES if self._scope == CashFlowScope.SECURITY else _LEDGER_TYPES

        txns = sorted(
            (t for t in transactions if t.date <= as_of),
            key=lambda t: (t.date, t.id or 0),
        )
        result = CashFlowBuildResult()

        for txn in txns:
            if txn.transaction_type not in included:
                continue
            amount = transaction_amount(txn)
            if amount == ZERO:
                continue

            fx = self.transaction_rate(txn, valuation_currency, home_currency, cancel_event)
            if fx is None:
                result.missing.append(MissingItem(
                    kind=MissingKind.EXCHANGE_RATE,
                    date=txn.date,
                    key=txn.currency.upper(),
                    transaction_id=txn.id,
                ))
                logger.debug(f"Skipping transaction {txn.id}: no {txn.currency}/{valuation_currency} rate on {txn.date}")
                continue

            value = amount * fx
            result.flows.append(CashFlowEvent(
                date=txn.date,
                amount=value,
                kind=CashFlowKind.INFLOW if value > ZERO else CashFlowKind.OUTFLOW,
                transaction_id=txn.id,
                ticker=txn.ticker,
            ))

        terminal = self._terminal_value(
            txns, splits, as_of, valuation_currency, current_prices, result.missing, cancel_event
        )
        if self._scope == CashFlowScope.LEDGER:
            terminal += self._cash_balance(txns, as_of, valuation_currency, result.missing, cancel_event)

        result.terminal_value = terminal
        if terminal != ZERO:
            result.flows.append(CashFlowEvent(
                date=as_of,
                amount=terminal,
                kind=CashFlowKind.TERMINAL_VALUE,
            ))

        if result.missing:
            logger.warning(
                f"Cash flows built with {len(result.missing)} missing input(s) "
                f"({len(result.flows)} flows, as_of={as_of}, currency={valuation_currency})"
            )
        return result

    def transaction_rate(
            self,
            txn,
            valuation_currency: str,
            home_currency: str | None,
            cancel_event: threading.Event | None = None,
    ) -> Decimal | None:
        """FX rate from the transaction currency into valuation_currency, or None."""
        currency = txn.currency.upper()
        if currency == valuation_currency:
            return ONE
        if home_currency and valuation_currency == home_currency and txn.exchange_rate:
            return Decimal(txn.exchange_rate)

        resolved = self._resolver.get_exchange_rate(
            currency, valuation_currency, txn.date, cancel_event=cancel_event
        )
        return resolved.value

    # =========================================================================
    # TERMINAL VALUE
    # =========================================================================

    def _terminal_value(
            self,
            txns: list,
            splits: Iterable[StockSplit],
            as_of: date,
            valuation_currency: str,
            current_prices: Mapping[str, Decimal] | None,
            missing: list[MissingItem],
            cancel_event: threading.Event | None,
    ) -> Decimal:
        overrides = {k.upper(): Decimal(v) for k, v in (current_prices or {}).items()}
        total = ZERO

        for position in calculate_positions(txns, splits, as_of):
            price = overrides.get(position.ticker)
            if price is None:
                resolved = self._resolver.get_stock_price(
                    position.ticker, position.market, as_of, cancel_event=cancel_event
                )
                price = resolved.value
            if price is None:
                missing.append(MissingItem(kind=MissingKind.PRICE, date=as_of, key=position.ticker))
                continue

            fx = self._rate_on(position.currency, valuation_currency, as_of, missing, cancel_event)
            if fx is None:
                continue

            total += position.shares * price * fx

        return total

    def _cash_balance(
            self,
            txns: list,
            as_of: date,
            valuation_currency: str,
            missing: list[MissingItem],
            cancel_event: threading.Event | None,
    ) -> Decimal:
        balances: dict[str, Decimal] = {}
        for txn in txns:
            currency = txn.currency.upper()
            balances[currency] = balances.get(currency, ZERO) + _cash_effect(txn)

        total = ZERO
        for currency, balance in sorted(balances.items()):
            if balance == ZERO:
                continue
            fx = self._rate_on(currency, valuation_currency, as_of, missing, cancel_event)
            if fx is not None:
                total += balance * fx
        return total

    def _rate_on(
            self,
            currency: str,
            valuation_currency: str,
            on_date: date,
            missing: list[MissingItem],
            cancel_event: threading.Event | None,
    ) -> Decimal | None:
        if currency == valuation_currency:
            return ONE
        resolved = self._resolver.get_exchange_rate(currency, valuation_currency, on_date, cancel_event=cancel_event)
        if resolved.value is None:
            missing.append(MissingItem(kind=MissingKind.EXCHANGE_RATE, date=on_date, key=currency))
        return resolved.value
