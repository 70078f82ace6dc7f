"""Tests for the live-refresh scheduler."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from conftest import FakeFetcher, GatedSleep, SleepRecorder, make_quote, make_universe, settle

from quoteflow.core.config import RefreshSettings
from quoteflow.core.data.storage import DuckDBFactory, InstrumentStore
from quoteflow.core.data.universe import InstrumentUniverse
from quoteflow.core.exceptions import FetchError, PersistenceError
from quoteflow.core.services.events import EventBus, EventKind
from quoteflow.core.services.refresh import LiveRefreshScheduler, RefreshState, SchedulerStatus
from quoteflow.core.services.snapshot import LiveSnapshotStore

SETTINGS = RefreshSettings(batch_size=2, fan_out=2, batch_delay=20, retry_delay=30, interval=300)


def _fetcher() -> FakeFetcher:
    return FakeFetcher(
        quotes={
            "TCS.NS": make_quote("TCS.NS", 110.0, 100.0),
            "INFY.NS": FetchError("provider unavailable", "INFY.NS"),
            "SBIN.NS": make_quote("SBIN.NS", 90.0, 100.0),
        }
    )


def _scheduler(universe, fetcher, *, sleep=None, timer_sleep=None, store=None):
    bus = EventBus()
    snapshot = LiveSnapshotStore(universe)
    scheduler = LiveRefreshScheduler(
        universe,
        fetcher,
        snapshot,
        bus,
        settings=SETTINGS,
        instrument_store=store,
        sleep=sleep or SleepRecorder(),
        timer_sleep=timer_sleep or GatedSleep(),
    )
    return scheduler, bus, snapshot


class StepSleep:
    """Blocks every sleeper until :meth:`step` lets exactly one through."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._permits = asyncio.Semaphore(0)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._permits.acquire()

    def step(self) -> None:
        self._permits.release()


class TestRefreshCycle:
    @pytest.mark.asyncio
    async def test_cycle_isolates_failures_and_updates_snapshot(self) -> None:
        scheduler, bus, snapshot = _scheduler(make_universe("TCS", "INFY", "SBIN"), _fetcher())
        updates: list[object] = []
        bus.subscribe(EventKind.DATA_UPDATE, lambda event: updates.append(event.payload))

        report = await scheduler.trigger()

        assert report is not None
        assert report.total == 3
        assert report.succeeded == 2
        assert [failure.symbol for failure in report.failures] == ["INFY.NS"]
        assert report.failures[0].error_code == "FETCH_ERROR"
        assert [update.display_symbol for update in updates] == ["TCS", "SBIN"]
        assert snapshot.live_count == 2
        assert len(snapshot.get_snapshot()) == 3

    @pytest.mark.asyncio
    async def test_progress_is_published_per_instrument(self) -> None:
        scheduler, bus, _ = _scheduler(make_universe("TCS", "INFY", "SBIN"), _fetcher())
        progress: list[tuple[bool, int, int]] = []
        bus.subscribe(
            EventKind.PROGRESS,
            lambda event: progress.append(
                (event.payload.is_updating, event.payload.processed_symbols, event.payload.total_symbols)
            ),
        )

        await scheduler.trigger()

        assert progress == [(True, 0, 3), (True, 1, 3), (True, 2, 3), (True, 3, 3), (False, 3, 3)]
        final = scheduler.progress()
        assert final.progress_percent == 100
        assert final.last_update is not None

    @pytest.mark.asyncio
    async def test_batch_delay_only_between_batches(self) -> None:
        sleep = SleepRecorder()
        scheduler, _, _ = _scheduler(make_universe("TCS", "INFY", "SBIN"), _fetcher(), sleep=sleep)

        await scheduler.trigger()

        assert sleep.delays == [20]

    @pytest.mark.asyncio
    async def test_fan_out_is_bounded(self) -> None:
        fetcher = FakeFetcher(quotes={f"S{i}.NS": make_quote(f"S{i}.NS") for i in range(6)})
        scheduler, _, _ = _scheduler(make_universe(*(f"S{i}" for i in range(6))), fetcher)

        await scheduler.trigger()

        assert fetcher.max_in_flight <= SETTINGS.fan_out

    @pytest.mark.asyncio
    async def test_top_movers_published_after_cycle(self) -> None:
        scheduler, bus, _ = _scheduler(make_universe("TCS", "INFY", "SBIN"), _fetcher())

        await scheduler.trigger()

        movers = bus.latest_top_movers
        assert [mover.symbol for mover in movers.gainers] == ["TCS"]
        assert [mover.symbol for mover in movers.losers] == ["SBIN"]


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_triggers_share_one_cycle(self) -> None:
        fetcher = _fetcher()
        fetcher.gate = asyncio.Event()
        scheduler, _, _ = _scheduler(make_universe("TCS", "INFY", "SBIN"), fetcher)

        first = asyncio.create_task(scheduler.trigger())
        second = asyncio.create_task(scheduler.trigger())
        await settle()
        assert scheduler.state.status is SchedulerStatus.RUNNING

        fetcher.gate.set()
        report_a, report_b = await asyncio.gather(first, second)

        assert report_a is report_b
        assert len(fetcher.quote_calls) == 3

    @pytest.mark.asyncio
    async def test_sequential_triggers_run_new_cycles(self) -> None:
        fetcher = _fetcher()
        scheduler, _, _ = _scheduler(make_universe("TCS", "INFY", "SBIN"), fetcher)

        await scheduler.trigger()
        await scheduler.trigger()

        assert len(fetcher.quote_calls) == 6

    @pytest.mark.asyncio
    async def test_timer_tick_during_a_slow_cycle_joins_it(self) -> None:
        fetcher = _fetcher()
        fetcher.gate = asyncio.Event()
        timer_sleep = StepSleep()
        scheduler, _, _ = _scheduler(make_universe("TCS", "SBIN"), fetcher, timer_sleep=timer_sleep)

        scheduler.start(run_immediately=False)
        await settle()
        timer_sleep.step()
        await settle()
        assert scheduler.state.status is SchedulerStatus.RUNNING
        assert len(fetcher.quote_calls) == 2

        timer_sleep.step()
        await settle()
        assert len(timer_sleep.delays) == 3
        assert len(fetcher.quote_calls) == 2
        assert fetcher.max_in_flight == 2

        fetcher.gate.set()
        await settle(50)
        assert scheduler.progress().processed_symbols == 2
        assert not scheduler.progress().is_updating
        await scheduler.stop()


class TestCycleFailure:
    @pytest.mark.asyncio
    async def test_failed_cycle_schedules_one_retry(self, tmp_path: Path) -> None:
        timer_sleep = GatedSleep()
        universe = InstrumentUniverse(tmp_path / "universe.json")
        scheduler, _, _ = _scheduler(universe, _fetcher(), timer_sleep=timer_sleep)

        assert await scheduler.trigger() is None
        assert await scheduler.trigger() is None
        await settle()

        assert scheduler.state.status is SchedulerStatus.IDLE
        assert timer_sleep.delays == [30]
        assert scheduler.retry_handle is not None and scheduler.retry_handle.pending
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_retry_runs_a_new_cycle(self, tmp_path: Path) -> None:
        timer_sleep = GatedSleep()
        path = tmp_path / "universe.json"
        universe = InstrumentUniverse(path)
        fetcher = _fetcher()
        scheduler, _, snapshot = _scheduler(universe, fetcher, timer_sleep=timer_sleep)

        assert await scheduler.trigger() is None
        path.write_text(json.dumps([{"symbol": "TCS", "yahooSymbol": "TCS.NS"}]), encoding="utf-8")
        timer_sleep.release()
        await scheduler.retry_handle.wait()

        assert fetcher.quote_calls == ["TCS.NS"]
        assert snapshot.live_count == 1
        assert scheduler.progress().last_update is not None

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_fail_instrument(self) -> None:
        class BrokenStore:
            def save_quote(self, instrument, quote, updated_at):
                raise PersistenceError("disk full", "instruments")

        scheduler, _, _ = _scheduler(make_universe("TCS"), _fetcher(), store=BrokenStore())

        report = await scheduler.trigger()

        assert report.succeeded == 1
        assert report.failed == 0


@pytest.mark.asyncio
async def test_successful_quotes_are_persisted() -> None:
    store = InstrumentStore(DuckDBFactory())
    scheduler, _, _ = _scheduler(make_universe("TCS", "INFY", "SBIN"), _fetcher(), store=store)

    await scheduler.trigger()

    cached = {row.provider_symbol: row for row in store.load_cached()}
    assert set(cached) == {"TCS.NS", "SBIN.NS"}
    assert cached["TCS.NS"].quote.current_price == 110.0
    assert cached["TCS.NS"].last_updated is not None
    store.close()


@pytest.mark.asyncio
async def test_start_runs_eagerly_and_stop_cancels_timers() -> None:
    scheduler, bus, _ = _scheduler(make_universe("TCS"), _fetcher())
    finished = asyncio.Event()
    bus.subscribe(EventKind.TOP_MOVERS, lambda event: finished.set())

    scheduler.start()
    await asyncio.wait_for(finished.wait(), timeout=1)
    await scheduler.stop()

    assert scheduler.progress().processed_symbols == 1


def test_injected_state_is_used() -> None:
    state = RefreshState()
    scheduler = LiveRefreshScheduler(
        make_universe("TCS"), _fetcher(), LiveSnapshotStore(make_universe("TCS")), EventBus(), state=state
    )

    state.begin(4)
    state.processed = 1

    assert scheduler.progress().progress_percent == 25
    assert scheduler.progress().is_updating
