# portfolio_engine/services/repositories.py
"""
Read-only queries for the engine's inputs.

Services receive plain lists from these functions and never query the
ledger themselves, so the calculations can be driven from tests with
in-memory objects.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_engine.models import BenchmarkSelection, Portfolio, StockSplit, Transaction
from portfolio_engine.services.exceptions import PortfolioNotFoundError


def get_portfolio(db: Session, portfolio_id: int) -> Portfolio:
    """
    Raises:
        PortfolioNotFoundError: No portfolio with this id
    """
    portfolio = db.get(Portfolio, portfolio_id)
    if portfolio is None:
        raise PortfolioNotFoundError(portfolio_id)
    return portfolio


def get_transactions_by_portfolio(db: Session, portfolio_id: int) -> list[Transaction]:
    """All transactions of a portfolio in chronological (then insertion) order."""
    stmt = (
        select(Transaction)
        .where(Transaction.portfolio_id == portfolio_id)
        .order_by(Transaction.date, Transaction.id)
    )
    return list(db.execute(stmt).scalars().all())


def get_all_splits(db: Session) -> list[StockSplit]:
    stmt = select(StockSplit).order_by(StockSplit.split_date, StockSplit.id)
    return list(db.execute(stmt).scalars().all())


def get_benchmark_selections(db: Session, user_id: int) -> list[str]:
    """Benchmark keys chosen by a user, in the order they were added."""
    stmt = (
        select(BenchmarkSelection.benchmark_key)
        .where(BenchmarkSelection.user_id == user_id)
        .order_by(BenchmarkSelection.id)
    )
    return list(db.execute(stmt).scalars().all())
