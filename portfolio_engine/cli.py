# portfolio_engine/cli.py
"""
Operator command line.

Commands:
    init-db               Create missing tables
    benchmark-returns     Annual benchmark returns (user selection or all)
    year-performance      Annual performance of a portfolio
    xirr                  Portfolio (or single position) XIRR
    save-year-end-price   Record a manual year-end close (security or benchmark)
    add-split             Record a stock split

Results are printed as JSON with camelCase keys. Domain errors are logged
and turn into exit code 1.

Usage:
    portfolio-engine benchmark-returns --year 2024
    portfolio-engine year-performance --portfolio-id 1 --year 2025
    portfolio-engine xirr --portfolio-id 1 --ticker VWRA --market UK
"""

import argparse
import json
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation

from portfolio_engine.config import settings
from portfolio_engine.database import init_db, session_scope
from portfolio_engine.dependencies import (
    build_benchmark_service,
    build_price_resolution_service,
    build_xirr_service,
    build_year_performance_service,
    get_split_service,
)
from portfolio_engine.schemas.performance import (
    BenchmarkReturnsResponse,
    PortfolioXirrResponse,
    YearPerformanceSchema,
)
from portfolio_engine.services.analytics.benchmark import SUPPORTED_BENCHMARKS
from portfolio_engine.services.exceptions import ServiceError, ValidationError
from portfolio_engine.services.repositories import (
    get_all_splits,
    get_portfolio,
    get_transactions_by_portfolio,
)
from portfolio_engine.utils.context import run_context
from portfolio_engine.utils.logging import setup_logging

logger = logging.getLogger(__name__)


# =============================================================================
# ARGUMENT TYPES
# =============================================================================

def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: '{value}'")


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date (YYYY-MM-DD): '{value}'")


def _emit(model) -> None:
    print(json.dumps(model.model_dump(mode="json", by_alias=True), indent=2))


# =============================================================================
# COMMANDS
# =============================================================================

def _cmd_init_db(args: argparse.Namespace) -> None:
    init_db()
    print("Database initialized")


def _cmd_benchmark_returns(args: argparse.Namespace) -> None:
    with session_scope() as db:
        service = build_benchmark_service(db)
        if args.benchmark:
            result = service.compute_for_year(args.year, args.benchmark, splits=get_all_splits(db))
        elif args.user_id is not None:
            result = service.compute_for_user(db, args.user_id, args.year)
        else:
            result = service.compute_for_year(args.year, splits=get_all_splits(db))
        _emit(BenchmarkReturnsResponse.from_result(result))


def _cmd_year_performance(args: argparse.Namespace) -> None:
    with session_scope() as db:
        portfolio = get_portfolio(db, args.portfolio_id)
        transactions = get_transactions_by_portfolio(db, args.portfolio_id)
        service = build_year_performance_service(db)
        result = service.calculate(portfolio, transactions, get_all_splits(db), args.year)
        _emit(YearPerformanceSchema.from_result(result))


def _cmd_xirr(args: argparse.Namespace) -> None:
    with session_scope() as db:
        portfolio = get_portfolio(db, args.portfolio_id)
        transactions = get_transactions_by_portfolio(db, args.portfolio_id)
        splits = get_all_splits(db)
        service = build_xirr_service(db)

        if args.ticker:
            result = service.calculate_position_xirr(
                args.ticker, args.market, portfolio, transactions, splits,
                as_of=args.as_of, currency=args.currency,
            )
        else:
            result = service.calculate_portfolio_xirr(
                portfolio, transactions, splits, as_of=args.as_of, currency=args.currency,
            )
        _emit(PortfolioXirrResponse.from_result(result))


def _cmd_save_year_end_price(args: argparse.Namespace) -> None:
    with session_scope() as db:
        if args.benchmark:
            saved = build_benchmark_service(db).save_manual_price(
                args.benchmark, args.year, args.price, replace=args.replace,
            )
        else:
            if not args.currency:
                raise ValidationError("--currency is required with --ticker", field="currency")
            resolver = build_price_resolution_service(db)
            saved = resolver.save_manual_year_end_price(
                args.ticker, args.market, args.year, args.price, args.currency, replace=args.replace,
            )
        print(f"Saved {saved.key} {args.year} year-end price {saved.value} {saved.currency}")


def _cmd_add_split(args: argparse.Namespace) -> None:
    with session_scope() as db:
        split = get_split_service().add_split(db, args.ticker, args.date, args.ratio, args.market)
        print(f"Split {split.ticker} ({split.market}) {split.split_date}: ratio {split.ratio}")


# =============================================================================
# PARSER
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portfolio-engine",
        description="Portfolio performance and valuation engine",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--log-format", choices=("text", "json"), default=None, help="Override LOG_FORMAT")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create missing tables")
    p.set_defaults(handler=_cmd_init_db)

    p = sub.add_parser("benchmark-returns", help="Annual benchmark returns")
    p.add_argument("--year", type=int, required=True)
    p.add_argument("--user-id", type=int, default=None, help="Use this user's benchmark selection")
    p.add_argument(
        "--benchmark", action="append", choices=sorted(SUPPORTED_BENCHMARKS),
        help="Benchmark key (repeatable); default is all",
    )
    p.set_defaults(handler=_cmd_benchmark_returns)

    p = sub.add_parser("year-performance", help="Annual performance of a portfolio")
    p.add_argument("--portfolio-id", type=int, required=True)
    p.add_argument("--year", type=int, required=True)
    p.set_defaults(handler=_cmd_year_performance)

    p = sub.add_parser("xirr", help="Portfolio or position XIRR")
    p.add_argument("--portfolio-id", type=int, required=True)
    p.add_argument("--as-of", type=_iso_date, default=None)
    p.add_argument("--currency", default=None, help="Valuation currency (default: home)")
    p.add_argument("--ticker", default=None, help="Restrict to one security")
    p.add_argument("--market", default="US")
    p.set_defaults(handler=_cmd_xirr)

    p = sub.add_parser("save-year-end-price", help="Record a manual year-end close")
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--ticker", help="Security ticker")
    target.add_argument(
        "--benchmark", choices=sorted(SUPPORTED_BENCHMARKS),
        help="Benchmark key; the close is in the benchmark's listing currency",
    )
    p.add_argument("--market", default="US")
    p.add_argument("--year", type=int, required=True)
    p.add_argument("--price", type=_decimal, required=True)
    p.add_argument("--currency", default=None, help="Required with --ticker")
    p.add_argument("--replace", action="store_true", help="Overwrite an existing value")
    p.set_defaults(handler=_cmd_save_year_end_price)

    p = sub.add_parser("add-split", help="Record a stock split")
    p.add_argument("--ticker", required=True)
    p.add_argument("--date", type=_iso_date, required=True)
    p.add_argument("--ratio", type=_decimal, required=True)
    p.add_argument("--market", default=None, help="Detected from the ticker when omitted")
    p.set_defaults(handler=_cmd_add_split)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, log_format=args.log_format)

    with run_context():
        logger.debug(f"Running '{args.command}' (environment={settings.environment})")
        try:
            args.handler(args)
        except ServiceError as e:
            logger.error(f"{args.command} failed: {e}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
