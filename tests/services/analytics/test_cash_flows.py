# tests/services/analytics/test_cash_flows.py
"""
Tests for the cash-flow builder and position calculation.

Test Coverage:
- transaction_amount signs per transaction type
- SECURITY scope: trades, income, terminal value
- FX choice: same currency, trade-time rate, resolver
- Missing FX / price reported, never silently dropped
- Split-adjusted positions and terminal value
- LEDGER scope: deposits/withdrawals plus cash balance
"""

from datetime import date
from decimal import Decimal

import pytest

from portfolio_engine.models import TransactionType
from portfolio_engine.services.analytics.cash_flows import (
    CashFlowBuilder,
    CashFlowScope,
    transaction_amount,
)
from portfolio_engine.services.analytics.positions import calculate_positions
from portfolio_engine.services.analytics.types import CashFlowKind, MissingKind
from tests.conftest import make_split, make_transaction

AS_OF = date(2025, 12, 31)


# =============================================================================
# SIGNED AMOUNTS
# =============================================================================

class TestTransactionAmount:
    """Investor-perspective sign per transaction type."""

    @pytest.mark.parametrize("txn_type,kwargs,expected", [
        (TransactionType.BUY, {"quantity": 10, "price": 100, "fee": 5}, "-1005"),
        (TransactionType.SELL, {"quantity": 10, "price": 120, "fee": 5}, "1195"),
        (TransactionType.DIVIDEND, {"amount": 30}, "30"),
        (TransactionType.INTEREST, {"amount": "1.25"}, "1.25"),
        (TransactionType.DEPOSIT, {"amount": 1000}, "-1000"),
        (TransactionType.WITHDRAWAL, {"amount": 200}, "200"),
    ])
    def test_signs(self, txn_type, kwargs, expected):
        txn = make_transaction(transaction_type=txn_type, **kwargs)
        assert transaction_amount(txn) == Decimal(expected)


# =============================================================================
# POSITIONS
# =============================================================================

class TestPositions:
    """Tests for calculate_positions."""

    def test_buys_minus_sells(self):
        txns = [
            make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100),
            make_transaction(TransactionType.SELL, date(2025, 3, 2), quantity=4, price=110),
        ]
        positions = calculate_positions(txns, [], AS_OF)

        assert len(positions) == 1
        assert positions[0].shares == Decimal("6")
        assert positions[0].currency == "USD"

    def test_fully_sold_position_dropped(self):
        txns = [
            make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100),
            make_transaction(TransactionType.SELL, date(2025, 3, 2), quantity=10, price=110),
        ]
        assert calculate_positions(txns, [], AS_OF) == []

    def test_future_trades_ignored(self):
        txns = [make_transaction(txn_date=date(2026, 1, 5), quantity=10, price=100)]
        assert calculate_positions(txns, [], AS_OF) == []

    def test_split_adjusted(self):
        txns = [
            make_transaction(ticker="NVDA", txn_date=date(2024, 1, 2), quantity=3, price=495),
            make_transaction(ticker="NVDA", txn_date=date(2024, 7, 1), quantity=5, price=120),
        ]
        splits = [make_split("NVDA", date(2024, 6, 10), 10)]

        positions = calculate_positions(txns, splits, AS_OF)

        # 3 x 10 (pre-split) + 5 (post-split)
        assert positions[0].shares == Decimal("35")

    def test_split_after_as_of_not_applied(self):
        txns = [make_transaction(ticker="NVDA", txn_date=date(2024, 1, 2), quantity=3, price=495)]
        splits = [make_split("NVDA", date(2024, 6, 10), 10)]

        positions = calculate_positions(txns, splits, date(2024, 6, 9))

        assert positions[0].shares == Decimal("3")

    def test_ordered_by_ticker(self):
        txns = [
            make_transaction(ticker="MSFT", quantity=1, price=400),
            make_transaction(ticker="AAPL", quantity=1, price=200),
        ]
        assert [p.ticker for p in calculate_positions(txns, [], AS_OF)] == ["AAPL", "MSFT"]


# =============================================================================
# SECURITY SCOPE
# =============================================================================

class TestSecurityScope:
    """Tests for the default (trades and income) scope."""

    def test_trades_income_and_terminal_value(self, resolver, mock_provider):
        mock_provider.set_close("AAPL", "US", AS_OF, 130)
        txns = [
            make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100, id=1),
            make_transaction(TransactionType.DIVIDEND, date(2025, 6, 2), amount=5, id=2),
            make_transaction(TransactionType.DEPOSIT, date(2025, 1, 1), ticker=None, amount=5000, id=3),
        ]

        result = CashFlowBuilder(resolver).build(txns, AS_OF, "USD")

        assert [(f.date, f.amount) for f in result.flows] == [
            (date(2025, 1, 2), Decimal("-1000")),
            (date(2025, 6, 2), Decimal("5")),
            (AS_OF, Decimal("1300")),
        ]
        assert result.flows[-1].kind == CashFlowKind.TERMINAL_VALUE
        assert result.flows[0].transaction_id == 1
        assert result.terminal_value == Decimal("1300")
        assert result.is_complete

    def test_transactions_after_as_of_excluded(self, resolver, mock_provider):
        mock_provider.set_close("AAPL", "US", date(2025, 6, 30), 120)
        txns = [
            make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100),
            make_transaction(txn_date=date(2025, 9, 1), quantity=10, price=140),
        ]

        result = CashFlowBuilder(resolver).build(txns, date(2025, 6, 30), "USD")

        assert len(result.flows) == 2
        assert result.terminal_value == Decimal("1200")

    def test_trade_time_rate_used_for_home_currency(self, resolver, mock_provider):
        mock_provider.set_close("AAPL", "US", AS_OF, 130)
        mock_provider.set_rate("USD", "TWD", AS_OF, 31)
        txns = [make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100, exchange_rate=30)]

        result = CashFlowBuilder(resolver).build(txns, AS_OF, "TWD", home_currency="TWD")

        assert result.flows[0].amount == Decimal("-30000")
        assert result.terminal_value == Decimal("40300")
        # Only the terminal FX and price were looked up
        fx_calls = [c for c in mock_provider.calls if c[0] == "USDTWD"]
        assert len(fx_calls) == 1

    def test_resolver_rate_when_not_home_currency(self, resolver, mock_provider):
        mock_provider.set_close("AAPL", "US", AS_OF, 130)
        mock_provider.set_rate("USD", "EUR", date(2025, 1, 2), "0.9")
        mock_provider.set_rate("USD", "EUR", AS_OF, "0.95")
        txns = [make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100, exchange_rate=30)]

        result = CashFlowBuilder(resolver).build(txns, AS_OF, "EUR", home_currency="TWD")

        assert result.flows[0].amount == Decimal("-900")
        assert result.terminal_value == Decimal("1235")

    def test_missing_fx_recorded_and_flow_excluded(self, resolver, mock_provider):
        mock_provider.set_close("AAPL", "US", AS_OF, 130)
        txns = [make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100, id=7)]

        result = CashFlowBuilder(resolver).build(txns, AS_OF, "EUR")

        assert not result.is_complete
        first = result.missing[0]
        assert first.kind == MissingKind.EXCHANGE_RATE
        assert first.transaction_id == 7
        assert first.key == "USD"
        # Terminal value also needs USD->EUR
        assert result.flows == []

    def test_missing_price_recorded(self, resolver):
        txns = [make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100)]

        result = CashFlowBuilder(resolver).build(txns, AS_OF, "USD")

        assert [m.kind for m in result.missing] == [MissingKind.PRICE]
        assert result.missing[0].key == "AAPL"
        assert result.terminal_value == Decimal("0")
        assert len(result.flows) == 1

    def test_current_price_override(self, resolver, mock_provider):
        txns = [make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100)]

        result = CashFlowBuilder(resolver).build(
            txns, AS_OF, "USD", current_prices={"aapl": Decimal("150")}
        )

        assert result.terminal_value == Decimal("1500")
        assert mock_provider.call_count == 0

    def test_terminal_value_split_adjusted(self, resolver, mock_provider):
        mock_provider.set_close("NVDA", "US", AS_OF, 130)
        txns = [make_transaction(ticker="NVDA", txn_date=date(2024, 1, 2), quantity=3, price=495)]
        splits = [make_split("NVDA", date(2024, 6, 10), 10)]

        result = CashFlowBuilder(resolver).build(txns, AS_OF, "USD", splits)

        assert result.terminal_value == Decimal("3900")


# =============================================================================
# LEDGER SCOPE
# =============================================================================

class TestLedgerScope:
    """Tests for deposit/withdrawal based flows."""

    def test_deposits_and_cash_balance(self, resolver, mock_provider):
        mock_provider.set_close("AAPL", "US", AS_OF, 130)
        txns = [
            make_transaction(TransactionType.DEPOSIT, date(2025, 1, 1), ticker=None, amount=1500),
            make_transaction(txn_date=date(2025, 1, 2), quantity=10, price=100),
            make_transaction(TransactionType.WITHDRAWAL, date(2025, 6, 1), ticker=None, amount=200),
        ]

        result = CashFlowBuilder(resolver, CashFlowScope.LEDGER).build(txns, AS_OF, "USD")

        assert [f.amount for f in result.flows] == [Decimal("-1500"), Decimal("200"), Decimal("1600")]
        # 10 x 130 held + (1500 - 1000 - 200) cash
        assert result.terminal_value == Decimal("1600")
