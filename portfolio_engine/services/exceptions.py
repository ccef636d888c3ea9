# portfolio_engine/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO transport
knowledge. Callers (CLI, an API layer, a scheduler) decide how to present them.

Three classes of failure exist in the engine:
    1. Input validation  -> raised synchronously (ValidationError), nothing persisted
    2. Partial data      -> NEVER raised; surfaced as is_complete=False + missing list
    3. Provider failure  -> caught per provider, logged, turned into a negative
                            cache entry; only reaches callers through the
                            MarketDataError family when a provider is used directly

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── NotFoundError
    │   └── PortfolioNotFoundError
    ├── MarketDataError
    │   ├── ProviderUnavailableError
    │   ├── TickerNotFoundError
    │   └── RateLimitError
    ├── FXRateError
    │   └── FXRateNotFoundError
    ├── SnapshotError
    │   └── SnapshotConflictError
    └── OperationCancelledError
"""

from datetime import date


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    Covers programmatic validation of engine inputs: non-positive split
    ratios, malformed currency codes, non-positive manual prices, years
    outside the supported range.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Portfolio")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class PortfolioNotFoundError(NotFoundError):
    """
    Raised when a portfolio cannot be found.

    Attributes:
        portfolio_id: ID of the portfolio that was not found
    """

    def __init__(self, portfolio_id: int) -> None:
        self.portfolio_id = portfolio_id
        super().__init__(
            f"Portfolio {portfolio_id} not found",
            resource_type="Portfolio",
            resource_id=portfolio_id,
        )


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(MarketDataError):
    """
    Raised when a market data provider is temporarily unavailable.

    Examples:
    - Network timeout
    - Server errors (500, 502, 503)
    - Unparseable payload

    This is a retryable error.
    """

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class TickerNotFoundError(MarketDataError):
    """
    Raised when a symbol is not known to the provider.

    This is NOT a retryable error.
    """

    def __init__(self, ticker: str, exchange: str, provider: str) -> None:
        message = f"Ticker '{ticker}' on market '{exchange}' not found by {provider}"
        super().__init__(message, provider=provider)
        self.ticker = ticker
        self.exchange = exchange


class RateLimitError(MarketDataError):
    """
    Raised when the provider's rate limit has been exceeded.

    This is a retryable error (with backoff).

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


# =============================================================================
# FX RATE ERRORS
# =============================================================================


class FXRateError(ServiceError):
    """
    Base exception for FX rate errors.

    Attributes:
        base_currency: The base currency code
        quote_currency: The quote currency code
    """

    def __init__(
            self,
            message: str,
            base_currency: str | None = None,
            quote_currency: str | None = None,
    ) -> None:
        self.base_currency = base_currency
        self.quote_currency = quote_currency
        super().__init__(message)


class FXRateNotFoundError(FXRateError):
    """
    Raised when a conversion is required but no rate can be resolved.

    Only raised by the strict conversion helper; calculation paths record
    the gap in their missing-items list instead.

    Attributes:
        date: The date for which rate was requested
    """

    def __init__(
            self,
            base_currency: str,
            quote_currency: str,
            rate_date: date,
            message: str | None = None
    ) -> None:
        self.date = rate_date
        msg = message or f"No FX rate found for {base_currency}/{quote_currency} on {rate_date}"
        super().__init__(msg, base_currency=base_currency, quote_currency=quote_currency)


# =============================================================================
# SNAPSHOT CACHE ERRORS
# =============================================================================


class SnapshotError(ServiceError):
    """Base exception for snapshot cache errors."""
    pass


class SnapshotConflictError(SnapshotError):
    """
    Raised when a manual override would replace an existing positive snapshot.

    Automatic fetches never overwrite snapshots; manual overrides may only
    replace a missing row or a "not available" marker unless replace=True.

    Attributes:
        key: Ticker or currency pair of the snapshot
        period: Date or year the snapshot belongs to
    """

    def __init__(self, key: str, period: date | int) -> None:
        self.key = key
        self.period = period
        super().__init__(f"A snapshot for {key} ({period}) already exists")


# =============================================================================
# CANCELLATION
# =============================================================================


class OperationCancelledError(ServiceError):
    """
    Raised when the caller's cancellation signal fires.

    No partial snapshot is persisted once this is raised.
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Operation cancelled: {operation}")


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    # Not Found
    "NotFoundError",
    "PortfolioNotFoundError",
    # Market Data
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    # FX Rate
    "FXRateError",
    "FXRateNotFoundError",
    # Snapshots
    "SnapshotError",
    "SnapshotConflictError",
    # Cancellation
    "OperationCancelledError",
]
