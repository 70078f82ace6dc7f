"""Exception handling module."""

from quoteflow.core.exceptions.base import (
    AuthenticationError,
    BatchCycleError,
    ConfigurationError,
    ConnectionLimitError,
    FetchError,
    FetchTimeoutError,
    PersistenceError,
    QuoteflowError,
    SymbolNotFoundError,
    UniverseError,
)

__all__ = [
    "QuoteflowError",
    "ConfigurationError",
    "FetchError",
    "FetchTimeoutError",
    "BatchCycleError",
    "UniverseError",
    "PersistenceError",
    "AuthenticationError",
    "ConnectionLimitError",
    "SymbolNotFoundError",
]
