"""Read-side query surface over the snapshot, the schedulers and the stores."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from datetime import date
from typing import Any

from quoteflow.core.data.providers.base import QuoteProvider, resolve_chart_range
from quoteflow.core.data.storage.history import HistoryStore
from quoteflow.core.data.universe import InstrumentUniverse
from quoteflow.core.exceptions import FetchError, SymbolNotFoundError
from quoteflow.core.logging import get_logger
from quoteflow.core.models import (
    Bar,
    DataUpdate,
    IngestMeta,
    InstrumentRef,
    PauseState,
    SnapshotEntry,
    TopMovers,
    UpdateProgress,
)
from quoteflow.core.services.events import Event, EventBus, EventKind
from quoteflow.core.services.indicators import indicator_frame, latest_indicators
from quoteflow.core.services.movers import compute_top_movers
from quoteflow.core.services.snapshot import LiveSnapshotStore

logger = get_logger(__name__)


class RecentUpdates:
    """Latest data update per instrument, bounded to the ``limit`` most recently updated."""

    def __init__(self, limit: int = 100) -> None:
        self.limit = limit
        self._updates: OrderedDict[str, DataUpdate] = OrderedDict()

    def record(self, update: DataUpdate) -> None:
        self._updates[update.symbol] = update
        self._updates.move_to_end(update.symbol)
        while len(self._updates) > self.limit:
            self._updates.popitem(last=False)

    def attach(self, bus: EventBus) -> Callable[[], None]:
        def _on_update(event: Event) -> None:
            self.record(event.payload)

        return bus.subscribe(EventKind.DATA_UPDATE, _on_update)

    def as_dict(self) -> dict[str, DataUpdate]:
        return dict(self._updates)

    def __len__(self) -> int:
        return len(self._updates)


class QueryService:
    """Answers the pull-side questions asked by HTTP clients and the CLI."""

    def __init__(
        self,
        universe: InstrumentUniverse,
        snapshot: LiveSnapshotStore,
        fetcher: QuoteProvider,
        history: HistoryStore,
        bus: EventBus,
        progress: Callable[[], UpdateProgress],
        *,
        recent: RecentUpdates | None = None,
        top_movers_limit: int = 10,
    ) -> None:
        self._universe = universe
        self._snapshot = snapshot
        self._fetcher = fetcher
        self._history = history
        self._bus = bus
        self._progress = progress
        self.recent = recent or RecentUpdates()
        self._top_movers_limit = top_movers_limit

    def resolve(self, symbol: str) -> InstrumentRef:
        self._universe.ensure_loaded()
        instrument = self._universe.find(symbol)
        if instrument is None:
            raise SymbolNotFoundError(symbol)
        return instrument

    def symbols(self) -> list[InstrumentRef]:
        return self._universe.ensure_loaded()

    def snapshot(self) -> list[SnapshotEntry]:
        return self._snapshot.get_snapshot()

    def snapshot_entry(self, symbol: str) -> SnapshotEntry:
        return self._snapshot.entry_for(self.resolve(symbol))

    def progress(self) -> UpdateProgress:
        return self._progress()

    def recent_updates(self) -> dict[str, DataUpdate]:
        return self.recent.as_dict()

    def pause_state(self) -> PauseState:
        return self._bus.pause_state

    def top_movers(self) -> TopMovers:
        """Last published movers, or a fresh ranking of the current snapshot before the first cycle."""

        latest = self._bus.latest_top_movers
        if latest is not None:
            return latest
        return compute_top_movers(self._snapshot.get_snapshot(), self._top_movers_limit)

    def ingest_status(self) -> dict[str, Any]:
        meta: IngestMeta = self._history.get_meta()
        return {"meta": meta, "statusCounts": self._history.status_counts()}

    async def chart(self, symbol: str, range_name: str | None = None) -> dict[str, Any]:
        instrument = self.resolve(symbol)
        resolved, _, interval = resolve_chart_range(range_name)
        points = await self._fetcher.fetch_chart(instrument.provider_symbol, resolved)
        return {"symbol": instrument.provider_symbol, "range": resolved, "interval": interval, "points": points}

    async def insights(self, symbol: str, range_name: str | None = None) -> dict[str, Any]:
        """Chart plus best-effort analytics; any part that fails comes back as ``None``."""

        instrument = self.resolve(symbol)
        provider_symbol = instrument.provider_symbol
        resolved, _, _ = resolve_chart_range(range_name)
        chart, fundamentals, options, insider, recommendations = await asyncio.gather(
            self._fetcher.fetch_chart(provider_symbol, resolved),
            self._fetcher.fetch_fundamentals(provider_symbol),
            self._fetcher.fetch_options_chain(provider_symbol),
            self._fetcher.fetch_insider_transactions(provider_symbol),
            self._fetcher.fetch_recommendations(provider_symbol),
            return_exceptions=True,
        )
        if isinstance(chart, FetchError):
            logger.bind(symbol=provider_symbol, error_code=chart.error_code).warning(
                f"Chart unavailable for insights on {provider_symbol}: {chart.message}"
            )
            chart = None
        parts = {"fundamentals": fundamentals, "options": options, "insider": insider, "recommendations": recommendations}
        for key, value in parts.items():
            if isinstance(value, BaseException):
                if not isinstance(value, Exception):
                    raise value
                logger.bind(symbol=provider_symbol).warning(f"{key} unavailable for {provider_symbol}: {value}")
                parts[key] = None
        if isinstance(chart, BaseException):
            raise chart
        return {
            "symbol": provider_symbol,
            "snapshot": self._snapshot.entry_for(instrument),
            "chart": {"range": resolved, "points": chart},
            **parts,
        }

    def historical_bars(self, symbol: str, start: date | None = None, end: date | None = None) -> list[Bar]:
        instrument = self.resolve(symbol)
        return self._history.get_bars(instrument.provider_symbol, start, end)

    def indicators(
        self,
        symbol: str,
        *,
        start: date | None = None,
        end: date | None = None,
        sma_period: int = 20,
        ema_period: int = 20,
        rsi_period: int = 14,
    ) -> dict[str, Any]:
        """SMA, EMA, RSI and MACD over the stored daily bars of ``symbol``."""

        instrument = self.resolve(symbol)
        bars = self._history.get_bars(instrument.provider_symbol, start, end)
        frame = indicator_frame(bars, sma_period=sma_period, ema_period=ema_period, rsi_period=rsi_period)
        series = [
            {"date": index.isoformat(), **{column: _clean(row[column]) for column in frame.columns}}
            for index, row in frame.iterrows()
        ]
        return {
            "symbol": instrument.provider_symbol,
            "bars": len(bars),
            "latest": latest_indicators(frame) if not frame.empty else {},
            "series": series,
        }


def _clean(value: Any) -> float | None:
    if value is None:
        return None
    number = float(value)
    return None if number != number else number
