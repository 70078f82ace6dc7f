"""Market data models produced by the quote fetcher and the snapshot store."""

from __future__ import annotations

import datetime as dt

from pydantic import ConfigDict, Field

from quoteflow.core.models.base import QuoteflowModel


class Quote(QuoteflowModel):
    """Latest quote for one instrument. Volatile fields are ``None`` when the provider has no data."""

    symbol: str
    name: str | None = None
    current_price: float | None = None
    previous_close: float | None = None
    open: float | None = None
    day_high: float | None = None
    day_low: float | None = None
    volume: int | None = None
    market_cap: float | None = None
    currency: str | None = None
    change: float | None = None
    change_percent: float | None = None
    fifty_two_week_low: float | None = None
    fifty_two_week_high: float | None = None

    @property
    def has_price(self) -> bool:
        return self.current_price is not None


class Bar(QuoteflowModel):
    """One calendar-day OHLCV record."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float | None = None
    volume: int | None = None


class ChartPoint(QuoteflowModel):
    """Timestamped OHLCV point used for intraday and range charts."""

    model_config = ConfigDict(frozen=True)

    timestamp: dt.datetime
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float | None = None
    volume: int | None = None


class FetchFailure(QuoteflowModel):
    """Per-instrument fetch failure recorded during a cycle."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    message: str
    error_code: str = "FETCH_ERROR"


class SnapshotEntry(QuoteflowModel):
    """Latest known state of one universe instrument."""

    symbol: str
    provider_symbol: str
    series: str | None = None
    name: str
    current_price: float | None = None
    previous_close: float | None = None
    change: float | None = None
    change_percent: float | None = None
    day_high: float | None = None
    day_low: float | None = None
    volume: int | None = None
    currency: str
    last_updated: dt.datetime | None = None


class DataUpdate(QuoteflowModel):
    """Pushed to the instrument's room after a successful live fetch."""

    symbol: str
    display_symbol: str
    quote: Quote
    timestamp: dt.datetime


class TopMover(QuoteflowModel):
    symbol: str
    name: str
    current_price: float
    previous_close: float
    change: float
    change_percent: float


class TopMovers(QuoteflowModel):
    gainers: list[TopMover] = Field(default_factory=list)
    losers: list[TopMover] = Field(default_factory=list)
    timestamp: dt.datetime
