"""Tests for the exception hierarchy."""

from __future__ import annotations

from quoteflow.core.exceptions import (
    AuthenticationError,
    BatchCycleError,
    ConnectionLimitError,
    FetchError,
    FetchTimeoutError,
    PersistenceError,
    QuoteflowError,
    SymbolNotFoundError,
    UniverseError,
)


def test_fetch_errors_carry_symbol_and_provider() -> None:
    error = FetchError("HTTP 500", "TCS.NS")

    assert isinstance(error, QuoteflowError)
    assert error.error_code == "FETCH_ERROR"
    assert error.details == {"symbol": "TCS.NS", "provider": "yfinance"}
    assert str(error) == "HTTP 500"


def test_timeout_is_a_fetch_error() -> None:
    error = FetchTimeoutError("TCS.NS", 15)

    assert isinstance(error, FetchError)
    assert error.error_code == "FETCH_TIMEOUT"
    assert error.details["timeout"] == 15
    assert "15s" in error.message


def test_universe_error_is_a_cycle_error() -> None:
    error = UniverseError("Universe file not found", "data/universe.json")

    assert isinstance(error, BatchCycleError)
    assert error.error_code == "UNIVERSE_ERROR"
    assert error.details == {"path": "data/universe.json"}


def test_remaining_codes() -> None:
    assert PersistenceError("disk full", "history").details == {"store": "history"}
    assert AuthenticationError().error_code == "AUTHENTICATION_ERROR"
    assert ConnectionLimitError("10.0.0.1", 20).details == {"address": "10.0.0.1", "limit": 20}
    assert SymbolNotFoundError("NOPE").error_code == "SYMBOL_NOT_FOUND"
