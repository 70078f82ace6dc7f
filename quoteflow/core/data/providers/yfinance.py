"""Yahoo Finance quote fetcher."""

from __future__ import annotations

import asyncio
import json
import math
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from time import perf_counter
from typing import Any, TypeVar

import pandas as pd
import yfinance as yf

from quoteflow.core.data.providers.base import DEFAULT_CHART_RANGE, resolve_chart_range
from quoteflow.core.exceptions import FetchError, FetchTimeoutError
from quoteflow.core.logging import get_logger
from quoteflow.core.models import Bar, ChartPoint, Quote
from quoteflow.core.monitoring import MetricsCollector

logger = get_logger(__name__)

T = TypeVar("T")

_FUNDAMENTAL_KEYS = (
    "longName",
    "sector",
    "industry",
    "marketCap",
    "trailingPE",
    "forwardPE",
    "priceToBook",
    "dividendYield",
    "beta",
    "trailingEps",
    "profitMargins",
    "returnOnEquity",
    "debtToEquity",
    "fiftyTwoWeekLow",
    "fiftyTwoWeekHigh",
)


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _integer(value: Any) -> int | None:
    number = _number(value)
    return int(number) if number is not None else None


def _first(info: Mapping[str, Any], *keys: str) -> float | None:
    for key in keys:
        number = _number(info.get(key))
        if number is not None:
            return number
    return None


def quote_from_info(symbol: str, info: Mapping[str, Any] | None, recent: list[Bar] | None = None) -> Quote:
    """Normalise a ``Ticker.info`` mapping (plus recent daily bars) into a :class:`Quote`.

    The most recent bar, when present, overrides day high/low and fills a
    missing price or volume. An empty mapping with no bars yields a minimal
    quote whose volatile fields are ``None``.
    """

    info = info or {}
    latest = recent[-1] if recent else None

    current_price = _first(info, "currentPrice", "regularMarketPrice")
    previous_close = _first(info, "previousClose", "regularMarketPreviousClose")
    day_high = _first(info, "dayHigh", "regularMarketDayHigh")
    day_low = _first(info, "dayLow", "regularMarketDayLow")
    volume = _integer(info.get("volume", info.get("regularMarketVolume")))

    if latest is not None:
        day_high = latest.high if latest.high is not None else day_high
        day_low = latest.low if latest.low is not None else day_low
        if current_price is None:
            current_price = latest.close
        if volume is None:
            volume = latest.volume
        if previous_close is None and recent is not None and len(recent) >= 2:
            previous_close = recent[-2].close

    change = change_percent = None
    if current_price is not None and previous_close:
        change = current_price - previous_close
        change_percent = change / previous_close * 100

    return Quote(
        symbol=symbol,
        name=info.get("longName") or info.get("shortName"),
        current_price=current_price,
        previous_close=previous_close,
        open=_first(info, "open", "regularMarketOpen"),
        day_high=day_high,
        day_low=day_low,
        volume=volume,
        market_cap=_number(info.get("marketCap")),
        currency=info.get("currency"),
        change=change,
        change_percent=change_percent,
        fifty_two_week_low=_number(info.get("fiftyTwoWeekLow")),
        fifty_two_week_high=_number(info.get("fiftyTwoWeekHigh")),
    )


def bars_from_frame(frame: pd.DataFrame | None) -> list[Bar]:
    """Convert a ``Ticker.history`` frame into bars ordered by date, one per date (last wins)."""

    if frame is None or frame.empty:
        return []
    by_date: dict[Any, Bar] = {}
    for timestamp, row in frame.iterrows():
        bar_date = pd.Timestamp(timestamp).date()
        by_date[bar_date] = Bar(
            date=bar_date,
            open=_number(row.get("Open")),
            high=_number(row.get("High")),
            low=_number(row.get("Low")),
            close=_number(row.get("Close")),
            volume=_integer(row.get("Volume")),
        )
    return [by_date[key] for key in sorted(by_date)]


def chart_points_from_frame(frame: pd.DataFrame | None) -> list[ChartPoint]:
    if frame is None or frame.empty:
        return []
    points: list[ChartPoint] = []
    for timestamp, row in frame.iterrows():
        stamp = pd.Timestamp(timestamp)
        stamp = stamp.tz_localize(UTC) if stamp.tzinfo is None else stamp.tz_convert(UTC)
        points.append(
            ChartPoint(
                timestamp=stamp.to_pydatetime(),
                open=_number(row.get("Open")),
                high=_number(row.get("High")),
                low=_number(row.get("Low")),
                close=_number(row.get("Close")),
                volume=_integer(row.get("Volume")),
            )
        )
    return points


def _frame_records(frame: pd.DataFrame | None, *, limit: int | None = None) -> list[dict[str, Any]]:
    if frame is None or frame.empty:
        return []
    if limit is not None:
        frame = frame.head(limit)
    return json.loads(frame.reset_index().to_json(orient="records", date_format="iso"))


class YFinanceQuoteFetcher:
    """Async facade over the blocking ``yfinance`` client.

    Every provider call runs in a worker thread and is bounded by ``timeout``
    seconds. ``ticker_factory`` defaults to :class:`yfinance.Ticker` and can be
    replaced in tests.
    """

    name = "yfinance"

    def __init__(
        self,
        *,
        timeout: float = 15.0,
        quote_window_days: int = 5,
        ticker_factory: Callable[[str], Any] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.timeout = timeout
        self.quote_window_days = quote_window_days
        self._ticker_factory = ticker_factory or yf.Ticker
        self._metrics = metrics

    async def _call(self, kind: str, symbol: str, func: Callable[[], T]) -> T:
        started = perf_counter()
        try:
            result = await asyncio.wait_for(asyncio.to_thread(func), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            self._observe(kind, started, success=False)
            raise FetchTimeoutError(symbol, self.timeout, self.name) from exc
        except FetchError:
            self._observe(kind, started, success=False)
            raise
        except Exception as exc:
            self._observe(kind, started, success=False)
            raise FetchError(str(exc) or type(exc).__name__, symbol, self.name) from exc
        self._observe(kind, started, success=True)
        return result

    def _observe(self, kind: str, started: float, *, success: bool) -> None:
        if self._metrics is not None:
            self._metrics.observe_fetch(kind, perf_counter() - started, success=success)

    async def fetch_quote(self, symbol: str) -> Quote:
        """Latest quote for ``symbol``; raises :class:`FetchError` on provider failure."""

        def _load() -> Quote:
            ticker = self._ticker_factory(symbol)
            info = ticker.info or {}
            recent = bars_from_frame(ticker.history(period=f"{self.quote_window_days}d", interval="1d"))
            return quote_from_info(symbol, info, recent)

        quote = await self._call("quote", symbol, _load)
        if not quote.has_price:
            logger.bind(symbol=symbol).debug(f"No price data returned for {symbol}")
        return quote

    async def fetch_bars(self, symbol: str, start: datetime, end: datetime, interval: str = "1d") -> list[Bar]:
        """Daily bars in ``[start, end]``, ordered and de-duplicated by date."""

        # history() treats ``end`` as exclusive.
        end_exclusive = (end + timedelta(days=1)).date().isoformat()
        start_day = start.date().isoformat()

        def _load() -> list[Bar]:
            ticker = self._ticker_factory(symbol)
            return bars_from_frame(ticker.history(start=start_day, end=end_exclusive, interval=interval))

        return await self._call("bars", symbol, _load)

    async def fetch_chart(self, symbol: str, range_name: str = DEFAULT_CHART_RANGE) -> list[ChartPoint]:
        _, period, interval = resolve_chart_range(range_name)

        def _load() -> list[ChartPoint]:
            ticker = self._ticker_factory(symbol)
            return chart_points_from_frame(ticker.history(period=period, interval=interval))

        return await self._call("chart", symbol, _load)

    async def _best_effort(self, kind: str, symbol: str, func: Callable[[], T]) -> T | None:
        try:
            return await self._call(kind, symbol, func)
        except FetchError as exc:
            logger.bind(symbol=symbol, error_code=exc.error_code).warning(f"{kind} lookup failed for {symbol}: {exc}")
            return None

    async def fetch_fundamentals(self, symbol: str) -> dict[str, Any] | None:
        def _load() -> dict[str, Any]:
            info = self._ticker_factory(symbol).info or {}
            return {key: info.get(key) for key in _FUNDAMENTAL_KEYS if info.get(key) is not None}

        return await self._best_effort("fundamentals", symbol, _load)

    async def fetch_options_chain(self, symbol: str) -> dict[str, Any] | None:
        """Calls and puts for the nearest expiry, or an empty chain when none is listed."""

        def _load() -> dict[str, Any]:
            ticker = self._ticker_factory(symbol)
            expiries = list(ticker.options or ())
            if not expiries:
                return {"expirations": [], "expiry": None, "calls": [], "puts": []}
            chain = ticker.option_chain(expiries[0])
            return {
                "expirations": expiries,
                "expiry": expiries[0],
                "calls": _frame_records(chain.calls),
                "puts": _frame_records(chain.puts),
            }

        return await self._best_effort("options", symbol, _load)

    async def fetch_insider_transactions(self, symbol: str) -> list[dict[str, Any]] | None:
        return await self._best_effort(
            "insider",
            symbol,
            lambda: _frame_records(self._ticker_factory(symbol).insider_transactions, limit=50),
        )

    async def fetch_recommendations(self, symbol: str) -> list[dict[str, Any]] | None:
        return await self._best_effort(
            "recommendations",
            symbol,
            lambda: _frame_records(self._ticker_factory(symbol).recommendations),
        )
