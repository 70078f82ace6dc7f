"""Wires the stores, schedulers, bus and query service into one runtime."""

from __future__ import annotations

from dataclasses import dataclass

from quoteflow.core.config import QuoteflowSettings
from quoteflow.core.data.providers import YFinanceQuoteFetcher
from quoteflow.core.data.providers.base import QuoteProvider
from quoteflow.core.data.storage import DuckDBFactory, DuckDBFactoryConfig, HistoryStore, InstrumentStore
from quoteflow.core.data.universe import InstrumentUniverse
from quoteflow.core.exceptions import PersistenceError
from quoteflow.core.logging import get_logger
from quoteflow.core.monitoring import MetricsCollector, get_metrics_collector
from quoteflow.core.services.events import EventBus
from quoteflow.core.services.queries import QueryService, RecentUpdates
from quoteflow.core.services.recorder import DailyHistoricalRecorder
from quoteflow.core.services.refresh import LiveRefreshScheduler
from quoteflow.core.services.snapshot import LiveSnapshotStore

logger = get_logger(__name__)


@dataclass
class QuoteflowRuntime:
    """Everything a running quoteflow process needs, built once per process."""

    settings: QuoteflowSettings
    universe: InstrumentUniverse
    fetcher: QuoteProvider
    bus: EventBus
    snapshot: LiveSnapshotStore
    instrument_store: InstrumentStore
    history: HistoryStore
    refresh: LiveRefreshScheduler
    recorder: DailyHistoricalRecorder
    queries: QueryService
    metrics: MetricsCollector

    @classmethod
    def build(
        cls,
        settings: QuoteflowSettings,
        *,
        fetcher: QuoteProvider | None = None,
        universe: InstrumentUniverse | None = None,
        metrics: MetricsCollector | None = None,
    ) -> QuoteflowRuntime:
        metrics = metrics or get_metrics_collector()
        universe = universe or InstrumentUniverse(settings.universe.path, limit=settings.universe.symbol_limit)
        fetcher = fetcher or YFinanceQuoteFetcher(
            timeout=settings.provider.timeout,
            quote_window_days=settings.provider.quote_window_days,
            metrics=metrics,
        )
        pragmas = {"threads": settings.storage.threads}
        instrument_store = InstrumentStore(
            DuckDBFactory(DuckDBFactoryConfig(database=settings.storage.instruments_database, pragmas=pragmas))
        )
        history = HistoryStore(
            DuckDBFactory(DuckDBFactoryConfig(database=settings.storage.history_database, pragmas=pragmas))
        )
        bus = EventBus()
        snapshot = LiveSnapshotStore(universe, default_currency=settings.universe.default_currency)
        refresh = LiveRefreshScheduler(
            universe,
            fetcher,
            snapshot,
            bus,
            settings=settings.refresh,
            instrument_store=instrument_store,
            metrics=metrics,
        )
        recorder = DailyHistoricalRecorder(
            universe,
            fetcher,
            history,
            bus,
            settings=settings.recorder,
            metrics=metrics,
        )
        recent = RecentUpdates(settings.broadcast.recent_updates_limit)
        recent.attach(bus)
        queries = QueryService(
            universe,
            snapshot,
            fetcher,
            history,
            bus,
            refresh.progress,
            recent=recent,
            top_movers_limit=settings.refresh.top_movers_limit,
        )
        return cls(
            settings=settings,
            universe=universe,
            fetcher=fetcher,
            bus=bus,
            snapshot=snapshot,
            instrument_store=instrument_store,
            history=history,
            refresh=refresh,
            recorder=recorder,
            queries=queries,
            metrics=metrics,
        )

    def warm_start(self) -> int:
        """Seed the live snapshot from the relational store. Returns the number of entries seeded."""

        try:
            cached = self.instrument_store.load_cached()
        except PersistenceError as exc:
            logger.bind(error_code=exc.error_code).warning(f"Warm start skipped: {exc.message}")
            return 0
        seeded = sum(1 for row in cached if self.snapshot.seed(row.provider_symbol, row.quote, row.last_updated))
        logger.info(f"Warm-started {seeded} snapshot entries from the instrument store")
        return seeded

    async def start(self) -> None:
        self.warm_start()
        if self.settings.refresh.enabled:
            self.refresh.start()
        if self.settings.recorder.enabled:
            self.recorder.start()

    async def stop(self) -> None:
        await self.refresh.stop()
        await self.recorder.stop()
        await self.bus.drain()

    def close(self) -> None:
        self.instrument_store.close()
        self.history.close()
