"""Provider interface consumed by the schedulers and the query service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from quoteflow.core.models import Bar, ChartPoint, Quote

CHART_RANGES: dict[str, tuple[str, str]] = {
    "1d": ("1d", "5m"),
    "5d": ("5d", "15m"),
    "1mo": ("1mo", "1d"),
    "1y": ("1y", "1d"),
    "max": ("max", "1wk"),
}
DEFAULT_CHART_RANGE = "1mo"


def resolve_chart_range(range_name: str | None) -> tuple[str, str, str]:
    """Map a chart range to ``(range, period, interval)``; unknown ranges fall back to one month."""

    key = range_name if range_name in CHART_RANGES else DEFAULT_CHART_RANGE
    period, interval = CHART_RANGES[key]
    return key, period, interval


@runtime_checkable
class QuoteProvider(Protocol):
    """Anything able to return quotes and bars for a provider symbol.

    ``fetch_quote`` and ``fetch_bars`` raise :class:`~quoteflow.core.exceptions.FetchError`
    on failure and return empty/minimal results when the provider simply has no data.
    The analytics calls are best-effort and return ``None`` on failure.
    """

    name: str

    async def fetch_quote(self, symbol: str) -> Quote: ...

    async def fetch_bars(self, symbol: str, start: datetime, end: datetime, interval: str = "1d") -> list[Bar]: ...

    async def fetch_chart(self, symbol: str, range_name: str = DEFAULT_CHART_RANGE) -> list[ChartPoint]: ...

    async def fetch_fundamentals(self, symbol: str) -> dict[str, Any] | None: ...

    async def fetch_options_chain(self, symbol: str) -> dict[str, Any] | None: ...

    async def fetch_insider_transactions(self, symbol: str) -> list[dict[str, Any]] | None: ...

    async def fetch_recommendations(self, symbol: str) -> list[dict[str, Any]] | None: ...
