"""Once-a-day historical bar recorder with startup catch-up and per-instrument watermarks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from time import perf_counter

from quoteflow.core.config import RecorderSettings
from quoteflow.core.data.providers.base import QuoteProvider
from quoteflow.core.data.storage.history import HistoryStore
from quoteflow.core.data.universe import InstrumentUniverse
from quoteflow.core.exceptions import QuoteflowError
from quoteflow.core.logging import get_logger, log_context
from quoteflow.core.models import InstrumentRef
from quoteflow.core.monitoring import MetricsCollector
from quoteflow.core.services.batch import partition, run_with_concurrency
from quoteflow.core.services.events import EventBus
from quoteflow.core.services.scheduling import delay_until, local_date, next_run_instant, should_catch_up
from quoteflow.core.services.timers import ClockFn, ScheduledTask, SleepFn, utc_now

logger = get_logger(__name__)

SCHEDULER_NAME = "daily_ingest"
PAUSE_REASON = "ohlcv_daily_ingest"
REASON_SCHEDULED = "scheduled"
REASON_CATCHUP = "startup_catchup_missed"
REASON_MANUAL = "manual"

STATUS_OK = "ok"
STATUS_NO_DATA = "no_data"
ERROR_MESSAGE_LIMIT = 200


def error_status(message: str) -> str:
    return f"error:{message[:ERROR_MESSAGE_LIMIT]}"


def ingest_window_start(watermark: date | None, today: date, *, lookback_days: int, seed_days: int) -> date:
    """First date to fetch: ``lookback_days`` before the watermark, or ``seed_days`` before today."""

    if watermark is not None:
        return watermark - timedelta(days=lookback_days)
    return today - timedelta(days=seed_days)


@dataclass(slots=True, frozen=True)
class InstrumentIngestResult:
    symbol: str
    status: str
    window_start: date
    bars_written: int = 0
    watermark: date | None = None

    @property
    def ok(self) -> bool:
        return not self.status.startswith("error")


@dataclass(slots=True, frozen=True)
class IngestReport:
    """Outcome of one recorder run. ``error`` is set when the run aborted as a whole."""

    reason: str
    started_at: datetime
    finished_at: datetime
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    no_data: int = 0
    results: tuple[InstrumentIngestResult, ...] = field(default_factory=tuple)
    error: str | None = None
    duration_ms: float = 0.0


class DailyHistoricalRecorder:
    """Fetches daily bars for the whole universe once per local day.

    Live updates are paused for the duration of a run and always resumed
    afterwards. A failing run is logged and reported, never raised, and the
    next scheduled run is always armed.
    """

    def __init__(
        self,
        universe: InstrumentUniverse,
        fetcher: QuoteProvider,
        history: HistoryStore,
        bus: EventBus,
        *,
        settings: RecorderSettings | None = None,
        metrics: MetricsCollector | None = None,
        sleep: SleepFn = asyncio.sleep,
        timer_sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = utc_now,
    ) -> None:
        self.settings = settings or RecorderSettings()
        self._zone = self.settings.zone
        self._universe = universe
        self._fetcher = fetcher
        self._history = history
        self._bus = bus
        self._metrics = metrics
        self._sleep = sleep
        self._timer_sleep = timer_sleep
        self._clock = clock
        self._inflight: asyncio.Task[IngestReport] | None = None
        self._catchup: asyncio.Task[IngestReport] | None = None
        self._stopped = False
        self.next_run: ScheduledTask | None = None

    # -- scheduling -----------------------------------------------------

    def next_run_instant(self, now: datetime | None = None) -> datetime:
        return next_run_instant(now or self._clock(), self.settings.hour, self.settings.minute, self._zone)

    def start(self) -> asyncio.Task[IngestReport] | None:
        """Run a catch-up if today's run was missed, then arm the regular schedule.

        Returns the catch-up task when one was started.
        """

        self._stopped = False
        meta = self._history.get_meta()
        now = self._clock()
        if should_catch_up(now, meta.last_success_date, self.settings.hour, self.settings.minute, self._zone):
            logger.info(f"Daily ingest missed for {local_date(now, self._zone)}; running catch-up")
            self._catchup = asyncio.get_running_loop().create_task(self.run(REASON_CATCHUP), name="daily-ingest-catchup")
        self.schedule_next()
        return self._catchup

    def schedule_next(self) -> ScheduledTask | None:
        if self._stopped:
            return None
        if self.next_run is not None:
            self.next_run.cancel()
        now = self._clock()
        target = self.next_run_instant(now)
        self.next_run = ScheduledTask(
            delay_until(target, now),
            self._scheduled_run,
            name="daily-ingest",
            sleep=self._timer_sleep,
            clock=self._clock,
        ).start()
        logger.info(f"Next daily ingest at {target.astimezone(self._zone).isoformat()}")
        return self.next_run

    async def _scheduled_run(self) -> None:
        try:
            await self.run(REASON_SCHEDULED)
        finally:
            self.schedule_next()

    async def stop(self) -> None:
        self._stopped = True
        if self.next_run is not None:
            self.next_run.cancel()
            await self.next_run.wait()
        for task in (self._catchup, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    # -- runs -----------------------------------------------------------

    async def run(self, reason: str = REASON_MANUAL) -> IngestReport:
        """Run (or join) an ingest. Concurrent callers share the in-flight run."""

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.get_running_loop().create_task(self._run(reason), name=f"daily-ingest-{reason}")
        return await asyncio.shield(self._inflight)

    async def _run(self, reason: str) -> IngestReport:
        with log_context(scheduler=SCHEDULER_NAME, reason=reason):
            started_at = self._clock()
            started = perf_counter()
            results: list[InstrumentIngestResult] = []
            failed = 0
            error: str | None = None
            try:
                self._history.record_attempt(started_at, reason)
                self._set_paused(True)
                instruments = self._universe.read(limit=self.settings.symbol_limit)
                today = local_date(started_at, self._zone)
                logger.info(f"Daily ingest started for {len(instruments)} instruments")

                batches = partition(instruments, self.settings.batch_size)
                for position, batch in enumerate(batches):
                    outcomes = await run_with_concurrency(
                        batch,
                        self.settings.concurrency,
                        lambda instrument: self._ingest_instrument(instrument, today),
                    )
                    for outcome in outcomes:
                        if outcome.ok and outcome.value is not None:
                            results.append(outcome.value)
                        else:
                            failed += 1
                    if position < len(batches) - 1:
                        await self._sleep(self.settings.batch_delay)

                succeeded = len(results)
                self._history.record_success(today, self._clock(), success_count=succeeded, failure_count=failed)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = exc.message if isinstance(exc, QuoteflowError) else str(exc) or type(exc).__name__
                code = exc.error_code if isinstance(exc, QuoteflowError) else "BATCH_CYCLE_ERROR"
                logger.bind(error_code=code).opt(exception=exc).error(f"Daily ingest failed: {error}")
            finally:
                self._set_paused(False)

            finished_at = self._clock()
            duration = perf_counter() - started
            if self._metrics is not None:
                self._metrics.observe_cycle(SCHEDULER_NAME, duration, outcome="error" if error else "ok")
            report = IngestReport(
                reason=reason,
                started_at=started_at,
                finished_at=finished_at,
                total=len(results) + failed,
                succeeded=len(results),
                failed=failed,
                no_data=sum(1 for result in results if result.status == STATUS_NO_DATA),
                results=tuple(results),
                error=error,
                duration_ms=duration * 1000,
            )
            if error is None:
                logger.info(
                    f"Daily ingest finished: {report.succeeded} ok ({report.no_data} without data), "
                    f"{report.failed} failed in {report.duration_ms:.0f}ms"
                )
            return report

    def _set_paused(self, paused: bool) -> None:
        self._bus.set_paused(paused, PAUSE_REASON if paused else None)
        if self._metrics is not None:
            self._metrics.set_paused(paused)

    def _record_status(self, status: str) -> None:
        if self._metrics is not None:
            self._metrics.record_ingest_status(status)

    async def _ingest_instrument(self, instrument: InstrumentRef, today: date) -> InstrumentIngestResult:
        symbol = instrument.provider_symbol
        watermark = self._history.get_watermark(symbol)
        window_start = ingest_window_start(
            watermark,
            today,
            lookback_days=self.settings.lookback_days,
            seed_days=self.settings.seed_days,
        )
        start = datetime.combine(window_start, time(), tzinfo=self._zone)
        end = self._clock().astimezone(self._zone)

        try:
            bars = await self._fetcher.fetch_bars(symbol, start, end)
            if not bars:
                self._history.set_status(symbol, STATUS_NO_DATA, self._clock(), display_symbol=instrument.symbol)
                self._record_status(STATUS_NO_DATA)
                return InstrumentIngestResult(symbol, STATUS_NO_DATA, window_start, watermark=watermark)

            now = self._clock()
            written = self._history.upsert_bars(symbol, bars, now)
            stored = self._history.advance_watermark(
                symbol, max(bar.date for bar in bars), now, display_symbol=instrument.symbol
            )
            self._history.set_status(symbol, STATUS_OK, now, display_symbol=instrument.symbol)
        except Exception as exc:
            message = exc.message if isinstance(exc, QuoteflowError) else str(exc) or type(exc).__name__
            logger.bind(symbol=symbol).warning(f"Daily ingest failed for {symbol}: {message}")
            self._record_status("error")
            self._history.set_status(symbol, error_status(message), self._clock(), display_symbol=instrument.symbol)
            raise

        self._record_status(STATUS_OK)
        return InstrumentIngestResult(symbol, STATUS_OK, window_start, bars_written=written, watermark=stored)

    async def backfill(self, symbol: str, since: date) -> InstrumentIngestResult:
        """Re-fetch ``symbol`` from ``since`` and set its watermark to the newest bar fetched.

        Unlike a regular run this may move the watermark backwards.
        """

        instrument = self._universe.find(symbol)
        provider_symbol = instrument.provider_symbol if instrument is not None else symbol
        start = datetime.combine(since, time(), tzinfo=self._zone)
        end = self._clock().astimezone(self._zone)
        with log_context(scheduler=SCHEDULER_NAME, reason="backfill"):
            bars = await self._fetcher.fetch_bars(provider_symbol, start, end)
            now = self._clock()
            if not bars:
                self._history.set_status(provider_symbol, STATUS_NO_DATA, now)
                return InstrumentIngestResult(provider_symbol, STATUS_NO_DATA, since)
            written = self._history.upsert_bars(provider_symbol, bars, now)
            newest = max(bar.date for bar in bars)
            self._history.reset_watermark(provider_symbol, newest, now)
            self._history.set_status(provider_symbol, STATUS_OK, now)
            logger.info(f"Backfilled {written} bars for {provider_symbol} since {since.isoformat()}")
            return InstrumentIngestResult(provider_symbol, STATUS_OK, since, bars_written=written, watermark=newest)
