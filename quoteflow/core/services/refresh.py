"""Periodic live-refresh scheduler."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from time import perf_counter

from quoteflow.core.config import RefreshSettings
from quoteflow.core.data.providers.base import QuoteProvider
from quoteflow.core.data.storage.instruments import InstrumentStore
from quoteflow.core.data.universe import InstrumentUniverse
from quoteflow.core.exceptions import BatchCycleError, FetchError, PersistenceError, QuoteflowError
from quoteflow.core.logging import get_logger, log_context
from quoteflow.core.models import DataUpdate, FetchFailure, InstrumentRef, Quote, UpdateProgress
from quoteflow.core.monitoring import MetricsCollector
from quoteflow.core.services.batch import partition, run_with_concurrency
from quoteflow.core.services.events import EventBus, EventKind
from quoteflow.core.services.movers import compute_top_movers
from quoteflow.core.services.snapshot import LiveSnapshotStore
from quoteflow.core.services.timers import ClockFn, PeriodicTask, ScheduledTask, SleepFn, utc_now

logger = get_logger(__name__)

SCHEDULER_NAME = "live_refresh"


class SchedulerStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class RefreshState:
    """Mutable progress of the live-refresh scheduler, injectable for inspection."""

    status: SchedulerStatus = SchedulerStatus.IDLE
    total: int = 0
    processed: int = 0
    last_update: datetime | None = None

    @property
    def running(self) -> bool:
        return self.status is SchedulerStatus.RUNNING

    def begin(self, total: int) -> None:
        self.status = SchedulerStatus.RUNNING
        self.total = total
        self.processed = 0

    def finish(self, at: datetime) -> None:
        self.status = SchedulerStatus.IDLE
        self.last_update = at

    def fail(self) -> None:
        self.status = SchedulerStatus.IDLE

    def progress(self) -> UpdateProgress:
        return UpdateProgress(
            is_updating=self.running,
            total_symbols=self.total,
            processed_symbols=self.processed,
            last_update=self.last_update,
        )


@dataclass(slots=True, frozen=True)
class RefreshReport:
    """Outcome of one completed live-refresh cycle."""

    started_at: datetime
    finished_at: datetime
    total: int
    succeeded: int
    failures: tuple[FetchFailure, ...] = field(default_factory=tuple)
    duration_ms: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.failures)


class LiveRefreshScheduler:
    """Refreshes every universe instrument in batches and publishes the results.

    ``trigger()`` is single-flight: while a cycle runs, further triggers await
    that same cycle instead of starting a new one.
    """

    def __init__(
        self,
        universe: InstrumentUniverse,
        fetcher: QuoteProvider,
        snapshot: LiveSnapshotStore,
        bus: EventBus,
        *,
        settings: RefreshSettings | None = None,
        instrument_store: InstrumentStore | None = None,
        state: RefreshState | None = None,
        metrics: MetricsCollector | None = None,
        sleep: SleepFn = asyncio.sleep,
        timer_sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = utc_now,
    ) -> None:
        self.settings = settings or RefreshSettings()
        self._universe = universe
        self._fetcher = fetcher
        self._snapshot = snapshot
        self._bus = bus
        self._store = instrument_store
        self.state = state or RefreshState()
        self._metrics = metrics
        self._sleep = sleep
        self._timer_sleep = timer_sleep
        self._clock = clock
        self._inflight: asyncio.Task[RefreshReport | None] | None = None
        self._eager: asyncio.Task[RefreshReport | None] | None = None
        self._periodic: PeriodicTask | None = None
        self.retry_handle: ScheduledTask | None = None

    # -- lifecycle ------------------------------------------------------

    def start(self, *, run_immediately: bool = True) -> None:
        """Start the periodic timer, plus one eager cycle unless disabled."""

        if self._periodic is not None:
            return
        self._periodic = PeriodicTask(
            self.settings.interval, self.trigger, name="live-refresh-periodic", sleep=self._timer_sleep
        ).start()
        if run_immediately:
            self._eager = asyncio.get_running_loop().create_task(self.trigger(), name="live-refresh-eager")
        logger.info(f"Live refresh scheduled every {self.settings.interval:g}s")

    async def stop(self) -> None:
        """Cancel timers and any cycle still running at shutdown."""

        if self._periodic is not None:
            self._periodic.cancel()
            await self._periodic.wait()
            self._periodic = None
        if self.retry_handle is not None:
            self.retry_handle.cancel()
            await self.retry_handle.wait()
        for task in (self._eager, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    # -- cycle ----------------------------------------------------------

    def progress(self) -> UpdateProgress:
        return self.state.progress()

    async def trigger(self) -> RefreshReport | None:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.get_running_loop().create_task(self._run_cycle(), name="live-refresh-cycle")
        return await asyncio.shield(self._inflight)

    def _publish_progress(self) -> None:
        progress = self.state.progress()
        if self._metrics is not None:
            self._metrics.set_refresh_progress(progress.processed_symbols, progress.total_symbols)
        self._bus.publish(EventKind.PROGRESS, progress)

    async def _run_cycle(self) -> RefreshReport | None:
        with log_context(scheduler=SCHEDULER_NAME):
            started = perf_counter()
            try:
                report = await self._execute()
            except asyncio.CancelledError:
                self.state.fail()
                raise
            except Exception as exc:
                error = exc if isinstance(exc, BatchCycleError) else BatchCycleError(f"Live refresh cycle failed: {exc}")
                logger.bind(error_code=error.error_code).opt(exception=exc).error(error.message)
                self.state.fail()
                self._publish_progress()
                self._observe(started, "error")
                self._schedule_retry()
                return None
            self._observe(started, "ok")
            logger.info(
                f"Live refresh finished: {report.succeeded}/{report.total} updated, "
                f"{report.failed} failed in {report.duration_ms:.0f}ms"
            )
            return report

    def _observe(self, started: float, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.observe_cycle(SCHEDULER_NAME, perf_counter() - started, outcome=outcome)

    async def _execute(self) -> RefreshReport:
        started_at = self._clock()
        started = perf_counter()
        instruments = self._universe.ensure_loaded()

        self.state.begin(len(instruments))
        self._publish_progress()
        logger.info(f"Live refresh started for {len(instruments)} instruments")

        succeeded = 0
        failures: list[FetchFailure] = []
        batches = partition(instruments, self.settings.batch_size)
        for position, batch in enumerate(batches):
            outcomes = await run_with_concurrency(batch, self.settings.fan_out, self._refresh_instrument)
            for outcome in outcomes:
                if outcome.ok:
                    succeeded += 1
                    continue
                error = outcome.error
                failures.append(
                    FetchFailure(
                        symbol=outcome.item.provider_symbol,
                        message=str(error) if error is not None else "skipped",
                        error_code=error.error_code if isinstance(error, QuoteflowError) else "UNEXPECTED_ERROR",
                    )
                )
            if position < len(batches) - 1:
                await self._sleep(self.settings.batch_delay)

        finished_at = self._clock()
        self.state.finish(finished_at)
        self._publish_progress()
        movers = compute_top_movers(self._snapshot.get_snapshot(), self.settings.top_movers_limit, now=finished_at)
        self._bus.publish(EventKind.TOP_MOVERS, movers)
        return RefreshReport(
            started_at=started_at,
            finished_at=finished_at,
            total=len(instruments),
            succeeded=succeeded,
            failures=tuple(failures),
            duration_ms=(perf_counter() - started) * 1000,
        )

    async def _refresh_instrument(self, instrument: InstrumentRef) -> None:
        try:
            try:
                quote = await self._fetcher.fetch_quote(instrument.provider_symbol)
            except FetchError as exc:
                logger.bind(symbol=instrument.provider_symbol, error_code=exc.error_code).warning(
                    f"Quote fetch failed for {instrument.provider_symbol}: {exc.message}"
                )
                raise
            stamp = self._snapshot.upsert(instrument.provider_symbol, quote)
            self._bus.publish(
                EventKind.DATA_UPDATE,
                DataUpdate(
                    symbol=instrument.provider_symbol,
                    display_symbol=instrument.symbol,
                    quote=quote,
                    timestamp=stamp,
                ),
            )
            self._persist(instrument, quote, stamp)
        finally:
            self.state.processed += 1
            self._publish_progress()

    def _persist(self, instrument: InstrumentRef, quote: Quote, stamp: datetime) -> None:
        if self._store is None:
            return
        try:
            self._store.save_quote(instrument, quote, stamp)
        except PersistenceError as exc:
            logger.bind(symbol=instrument.provider_symbol, error_code=exc.error_code).warning(exc.message)

    def _schedule_retry(self) -> None:
        if self.retry_handle is not None and self.retry_handle.pending:
            return
        logger.info(f"Retrying live refresh in {self.settings.retry_delay:g}s")
        self.retry_handle = ScheduledTask(
            self.settings.retry_delay,
            self.trigger,
            name="live-refresh-retry",
            sleep=self._timer_sleep,
            clock=self._clock,
        ).start()
