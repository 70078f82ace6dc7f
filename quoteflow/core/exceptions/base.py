"""Core exception types for quoteflow."""

from __future__ import annotations

from typing import Any


class QuoteflowError(Exception):
    """Base class for every error raised by quoteflow."""

    def __init__(
        self,
        message: str,
        error_code: str = "GENERAL_ERROR",
        details: dict[str, Any] | None = None,
    ):
        """Initialise the error.

        Args:
            message: human readable message
            error_code: stable machine readable code
            details: extra structured context
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ConfigurationError(QuoteflowError):
    """Invalid or unreadable configuration."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class FetchError(QuoteflowError):
    """A single provider call failed; the failure is scoped to one instrument."""

    def __init__(
        self,
        message: str,
        symbol: str,
        provider_name: str = "yfinance",
        error_code: str = "FETCH_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details.setdefault("symbol", symbol)
        super_details.setdefault("provider", provider_name)
        super().__init__(message, error_code, super_details)
        self.symbol = symbol
        self.provider_name = provider_name


class FetchTimeoutError(FetchError):
    """The provider did not answer within the client timeout."""

    def __init__(
        self,
        symbol: str,
        timeout: float,
        provider_name: str = "yfinance",
    ):
        super().__init__(
            f"Request for {symbol} timed out after {timeout:g}s",
            symbol,
            provider_name,
            "FETCH_TIMEOUT",
            {"timeout": timeout},
        )
        self.timeout = timeout


class BatchCycleError(QuoteflowError):
    """A whole scheduler cycle could not run."""

    def __init__(
        self,
        message: str,
        error_code: str = "BATCH_CYCLE_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, error_code, details)


class UniverseError(BatchCycleError):
    """The instrument universe could not be loaded."""

    def __init__(self, message: str, path: str | None = None):
        details = {"path": path} if path else None
        super().__init__(message, "UNIVERSE_ERROR", details)
        self.path = path


class PersistenceError(QuoteflowError):
    """A durable store write or read failed."""

    def __init__(
        self,
        message: str,
        store: str,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details["store"] = store
        super().__init__(message, "PERSISTENCE_ERROR", super_details)
        self.store = store


class AuthenticationError(QuoteflowError):
    """A push connection presented missing or invalid credentials."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, "AUTHENTICATION_ERROR")


class ConnectionLimitError(QuoteflowError):
    """Too many push connections from one client address."""

    def __init__(self, address: str, limit: int):
        super().__init__(
            f"Too many connections from {address}",
            "CONNECTION_LIMIT",
            {"address": address, "limit": limit},
        )
        self.address = address
        self.limit = limit


class SymbolNotFoundError(QuoteflowError):
    """The requested symbol is not part of the instrument universe."""

    def __init__(self, symbol: str):
        super().__init__(f"Unknown symbol: {symbol}", "SYMBOL_NOT_FOUND", {"symbol": symbol})
        self.symbol = symbol
