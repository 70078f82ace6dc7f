"""Pytest configuration and shared fakes for the quoteflow test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from quoteflow.core.config import QuoteflowSettings
from quoteflow.core.data.universe import InstrumentUniverse
from quoteflow.core.exceptions import FetchError
from quoteflow.core.models import Bar, ChartPoint, InstrumentRef, Quote
from quoteflow.core.monitoring import MetricsCollector
from quoteflow.core.runtime import QuoteflowRuntime


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command-line options for controlling integration tests."""

    parser.addoption(
        "--quoteflow-run-integration",
        action="store_true",
        default=False,
        help="Run quoteflow integration tests that require network access.",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: marks quoteflow tests requiring network or external services",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly requested."""

    if config.getoption("--quoteflow-run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="integration tests require --quoteflow-run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def make_instrument(symbol: str, provider_symbol: str | None = None, **extra: Any) -> InstrumentRef:
    return InstrumentRef(symbol=symbol, provider_symbol=provider_symbol or f"{symbol}.NS", **extra)


def make_universe(*symbols: str) -> InstrumentUniverse:
    return InstrumentUniverse(instruments=[make_instrument(symbol) for symbol in symbols])


def make_quote(symbol: str, price: float | None = 100.0, previous_close: float | None = 100.0, **extra: Any) -> Quote:
    return Quote(symbol=symbol, current_price=price, previous_close=previous_close, **extra)


def daily_bars(start: date, closes: Iterable[float]) -> list[Bar]:
    return [
        Bar(date=start + timedelta(days=offset), open=close, high=close + 1, low=close - 1, close=close, volume=1000)
        for offset, close in enumerate(closes)
    ]


class FakeFetcher:
    """In-memory quote provider recording every call.

    ``quotes`` and ``bars`` map provider symbols to results; an exception
    instance as the value is raised instead. ``gate`` (when set) is awaited by
    every quote fetch so tests can hold a cycle open.
    """

    name = "fake"

    def __init__(
        self,
        quotes: dict[str, Quote | Exception] | None = None,
        bars: dict[str, list[Bar] | Exception] | None = None,
    ) -> None:
        self.quotes = quotes or {}
        self.bars = bars or {}
        self.chart_points: dict[str, list[ChartPoint] | Exception] = {}
        self.analytics: dict[str, Any] = {}
        self.quote_calls: list[str] = []
        self.bar_calls: list[tuple[str, datetime, datetime]] = []
        self.gate: asyncio.Event | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_quote(self, symbol: str) -> Quote:
        self.quote_calls.append(symbol)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            result = self.quotes.get(symbol)
            if isinstance(result, Exception):
                raise result
            if result is None:
                raise FetchError(f"No quote for {symbol}", symbol, self.name)
            return result
        finally:
            self.in_flight -= 1

    async def fetch_bars(self, symbol: str, start: datetime, end: datetime, interval: str = "1d") -> list[Bar]:
        self.bar_calls.append((symbol, start, end))
        await asyncio.sleep(0)
        result = self.bars.get(symbol, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def fetch_chart(self, symbol: str, range_name: str = "1mo") -> list[ChartPoint]:
        result = self.chart_points.get(symbol, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def _analytics(self, kind: str, symbol: str) -> Any:
        value = self.analytics.get(kind)
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_fundamentals(self, symbol: str) -> dict[str, Any] | None:
        return await self._analytics("fundamentals", symbol)

    async def fetch_options_chain(self, symbol: str) -> dict[str, Any] | None:
        return await self._analytics("options", symbol)

    async def fetch_insider_transactions(self, symbol: str) -> list[dict[str, Any]] | None:
        return await self._analytics("insider", symbol)

    async def fetch_recommendations(self, symbol: str) -> list[dict[str, Any]] | None:
        return await self._analytics("recommendations", symbol)


class FixedClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class SleepRecorder:
    """Records requested delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class GatedSleep:
    """Records delays and blocks until :meth:`release` is called."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._event = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._event.wait()

    def release(self) -> None:
        self._event.set()


def build_test_runtime(tmp_path, fetcher: FakeFetcher | None = None, *symbols: str, **sections: Any):
    """Runtime over file-backed DuckDB stores in ``tmp_path``, an in-memory universe and a private registry."""

    settings = QuoteflowSettings(
        storage={
            "instruments_database": str(tmp_path / "quotes.duckdb"),
            "history_database": str(tmp_path / "history.duckdb"),
        },
        **sections,
    )
    return QuoteflowRuntime.build(
        settings,
        fetcher=fetcher or FakeFetcher(),
        universe=make_universe(*(symbols or ("TCS", "INFY"))),
        metrics=MetricsCollector(registry=CollectorRegistry()),
    )


async def settle(rounds: int = 10) -> None:
    """Yield to the event loop a few times so spawned tasks make progress."""

    for _ in range(rounds):
        await asyncio.sleep(0)

