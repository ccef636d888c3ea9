# portfolio_engine/utils/context.py
"""
Run context for the portfolio engine.

Every unit of work (a CLI command, one benchmark batch, one scheduled
refresh) can carry a correlation ID so that the log lines it produces,
including the provider calls made on its behalf, can be grouped together.

Uses Python's contextvars, so the ID follows the current thread or task
without being passed through every call.

Usage:
    from portfolio_engine.utils.context import run_context

    with run_context() as correlation_id:
        service.compute_for_year(2024)
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """Return the correlation ID of the current run, or None if not set."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


def new_correlation_id() -> str:
    """Short random ID, long enough to be unique within a log file."""
    return uuid.uuid4().hex[:12]


@contextmanager
def run_context(correlation_id: str | None = None) -> Iterator[str]:
    """
    Bind a correlation ID for the duration of a block.

    The previous value is restored on exit, so nested runs behave.

    Args:
        correlation_id: Explicit ID to use; a new one is generated if omitted

    Yields:
        The correlation ID in effect inside the block
    """
    value = correlation_id or new_correlation_id()
    token = _correlation_id_var.set(value)
    try:
        yield value
    finally:
        _correlation_id_var.reset(token)
