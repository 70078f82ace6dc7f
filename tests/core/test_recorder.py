"""Tests for the daily historical recorder."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, date, datetime, time
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
from conftest import FakeFetcher, FixedClock, GatedSleep, SleepRecorder, daily_bars, make_universe
from prometheus_client import CollectorRegistry

from quoteflow.core.config import RecorderSettings
from quoteflow.core.data.storage import DuckDBFactory, HistoryStore
from quoteflow.core.data.universe import InstrumentUniverse
from quoteflow.core.exceptions import FetchError
from quoteflow.core.monitoring import MetricsCollector
from quoteflow.core.services.events import EventBus, EventKind
from quoteflow.core.services.recorder import (
    PAUSE_REASON,
    REASON_CATCHUP,
    REASON_SCHEDULED,
    DailyHistoricalRecorder,
    error_status,
    ingest_window_start,
)
from quoteflow.core.services.snapshot import LiveSnapshotStore

KOLKATA = ZoneInfo("Asia/Kolkata")
SETTINGS = RecorderSettings(batch_size=2, concurrency=2, batch_delay=5, lookback_days=3, seed_days=10)


class OnceSleep:
    """Returns immediately the first time, then blocks until cancelled."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) > 1:
            await asyncio.Event().wait()


@pytest.fixture
def history() -> HistoryStore:
    store = HistoryStore(DuckDBFactory())
    yield store
    store.close()


@pytest.fixture
def clock() -> FixedClock:
    # 22:30 in Kolkata, after the 22:00 run time.
    return FixedClock(datetime(2024, 6, 14, 17, 0, tzinfo=UTC))


def _fetcher() -> FakeFetcher:
    return FakeFetcher(
        bars={
            "TCS.NS": daily_bars(date(2024, 6, 10), [100.0, 101.0, 102.0]),
            "INFY.NS": [],
            "SBIN.NS": FetchError("x" * 300, "SBIN.NS"),
        }
    )


def _recorder(universe, fetcher, history, clock, **kwargs) -> tuple[DailyHistoricalRecorder, EventBus]:
    bus = EventBus(clock=clock)
    recorder = DailyHistoricalRecorder(
        universe,
        fetcher,
        history,
        bus,
        settings=kwargs.pop("settings", SETTINGS),
        sleep=kwargs.pop("sleep", SleepRecorder()),
        timer_sleep=kwargs.pop("timer_sleep", GatedSleep()),
        clock=clock,
        **kwargs,
    )
    return recorder, bus


def test_ingest_window_start() -> None:
    today = date(2024, 6, 14)

    assert ingest_window_start(None, today, lookback_days=3, seed_days=10) == date(2024, 6, 4)
    assert ingest_window_start(date(2024, 6, 12), today, lookback_days=3, seed_days=10) == date(2024, 6, 9)


def test_error_status_is_truncated() -> None:
    status = error_status("y" * 500)

    assert status.startswith("error:")
    assert len(status) == len("error:") + 200


class TestIngestRun:
    @pytest.mark.asyncio
    async def test_run_records_bars_watermarks_and_statuses(self, history, clock) -> None:
        fetcher = _fetcher()
        recorder, _ = _recorder(make_universe("TCS", "INFY", "SBIN"), fetcher, history, clock)

        report = await recorder.run()

        assert report.error is None
        assert (report.total, report.succeeded, report.failed, report.no_data) == (3, 2, 1, 1)
        assert history.count_bars("TCS.NS") == 3
        assert history.get_watermark("TCS.NS") == date(2024, 6, 12)
        assert history.get_status("TCS.NS").fetch_status == "ok"
        assert history.get_status("TCS.NS").display_symbol == "TCS"
        assert history.get_status("INFY.NS").fetch_status == "no_data"
        sbin = history.get_status("SBIN.NS").fetch_status
        assert sbin == "error:" + "x" * 200

    @pytest.mark.asyncio
    async def test_first_run_seeds_then_uses_watermark_lookback(self, history, clock) -> None:
        fetcher = _fetcher()
        recorder, _ = _recorder(make_universe("TCS"), fetcher, history, clock)

        await recorder.run()
        await recorder.run()

        first_start, second_start = fetcher.bar_calls[0][1], fetcher.bar_calls[1][1]
        assert first_start == datetime.combine(date(2024, 6, 4), time(), tzinfo=KOLKATA)
        assert second_start == datetime.combine(date(2024, 6, 9), time(), tzinfo=KOLKATA)
        assert fetcher.bar_calls[0][2] == clock.now.astimezone(KOLKATA)

    @pytest.mark.asyncio
    async def test_reingesting_overlapping_window_is_idempotent(self, history, clock) -> None:
        recorder, _ = _recorder(make_universe("TCS"), _fetcher(), history, clock)

        await recorder.run()
        await recorder.run()

        assert history.count_bars("TCS.NS") == 3

    @pytest.mark.asyncio
    async def test_pause_and_resume_are_paired(self, history, clock) -> None:
        recorder, bus = _recorder(make_universe("TCS", "INFY"), _fetcher(), history, clock)
        states: list[tuple[bool, str | None]] = []
        bus.subscribe(EventKind.PAUSE_STATE, lambda event: states.append((event.payload.paused, event.payload.reason)))

        await recorder.run()

        assert states == [(True, PAUSE_REASON), (False, None)]
        assert not bus.pause_state.paused

    @pytest.mark.asyncio
    async def test_universe_failure_still_resumes_and_reports(self, history, clock, tmp_path: Path) -> None:
        recorder, bus = _recorder(InstrumentUniverse(tmp_path / "missing.json"), _fetcher(), history, clock)
        states: list[bool] = []
        bus.subscribe(EventKind.PAUSE_STATE, lambda event: states.append(event.payload.paused))

        report = await recorder.run("manual")

        assert report.error is not None
        assert "not found" in report.error
        assert states == [True, False]
        meta = history.get_meta()
        assert meta.last_attempt_reason == "manual"
        assert meta.last_success_date is None

    @pytest.mark.asyncio
    async def test_batches_are_separated_by_delay(self, history, clock) -> None:
        sleep = SleepRecorder()
        recorder, _ = _recorder(make_universe("TCS", "INFY", "SBIN"), _fetcher(), history, clock, sleep=sleep)

        await recorder.run()

        assert sleep.delays == [5]

    @pytest.mark.asyncio
    async def test_success_metadata_is_persisted(self, history, clock) -> None:
        recorder, _ = _recorder(make_universe("TCS", "INFY", "SBIN"), _fetcher(), history, clock)

        await recorder.run("manual")

        meta = history.get_meta()
        assert meta.last_attempt_at == clock.now
        assert meta.last_attempt_reason == "manual"
        assert meta.last_success_date == date(2024, 6, 14)
        assert meta.last_success_count == 2
        assert meta.last_failure_count == 1

    @pytest.mark.asyncio
    async def test_symbol_limit_does_not_shrink_the_shared_universe(self, history, clock, tmp_path: Path) -> None:
        raw = [{"symbol": symbol, "yahooSymbol": f"{symbol}.NS"} for symbol in ("TCS", "INFY", "SBIN", "WIPRO", "ITC")]
        path = tmp_path / "universe.json"
        path.write_text(json.dumps(raw), encoding="utf-8")
        universe = InstrumentUniverse(path)
        universe.ensure_loaded()
        snapshot = LiveSnapshotStore(universe, clock=clock)
        fetcher = _fetcher()
        settings = SETTINGS.model_copy(update={"symbol_limit": 2})
        recorder, _ = _recorder(universe, fetcher, history, clock, settings=settings)

        report = await recorder.run()

        assert report.total == 2
        assert sorted(call[0] for call in fetcher.bar_calls) == ["INFY.NS", "TCS.NS"]
        assert len(universe) == 5
        assert len(snapshot.get_snapshot()) == 5

    @pytest.mark.asyncio
    async def test_metrics_track_statuses_and_pause(self, history, clock) -> None:
        metrics = MetricsCollector(registry=CollectorRegistry())
        recorder, _ = _recorder(make_universe("TCS", "INFY", "SBIN"), _fetcher(), history, clock, metrics=metrics)

        await recorder.run()

        sample = metrics.registry.get_sample_value
        assert sample("quoteflow_ingest_instruments_total", {"status": "ok"}) == 1
        assert sample("quoteflow_ingest_instruments_total", {"status": "no_data"}) == 1
        assert sample("quoteflow_ingest_instruments_total", {"status": "error"}) == 1
        assert sample("quoteflow_live_updates_paused") == 0
        assert sample("quoteflow_cycles_total", {"scheduler": "daily_ingest", "outcome": "ok"}) == 1

    @pytest.mark.asyncio
    async def test_concurrent_runs_share_one_ingest(self, history, clock) -> None:
        fetcher = _fetcher()
        recorder, _ = _recorder(make_universe("TCS"), fetcher, history, clock)

        first, second = await asyncio.gather(recorder.run(), recorder.run())

        assert first is second
        assert len(fetcher.bar_calls) == 1


class TestWatermarks:
    def test_advance_is_monotonic(self, history, clock) -> None:
        assert history.advance_watermark("TCS.NS", date(2024, 6, 12), clock.now) == date(2024, 6, 12)
        assert history.advance_watermark("TCS.NS", date(2024, 6, 1), clock.now) == date(2024, 6, 12)
        assert history.get_watermark("TCS.NS") == date(2024, 6, 12)

    @pytest.mark.asyncio
    async def test_backfill_may_move_watermark_backwards(self, history, clock) -> None:
        fetcher = _fetcher()
        recorder, _ = _recorder(make_universe("TCS"), fetcher, history, clock)
        await recorder.run()

        fetcher.bars["TCS.NS"] = daily_bars(date(2024, 5, 1), [90.0, 91.0])
        result = await recorder.backfill("tcs", date(2024, 5, 1))

        assert result.status == "ok"
        assert result.watermark == date(2024, 5, 2)
        assert history.get_watermark("TCS.NS") == date(2024, 5, 2)
        assert history.count_bars("TCS.NS") == 5


class TestScheduling:
    @pytest.mark.asyncio
    async def test_start_runs_catch_up_when_todays_run_was_missed(self, history, clock) -> None:
        recorder, _ = _recorder(make_universe("TCS"), _fetcher(), history, clock)

        catch_up = recorder.start()
        assert catch_up is not None
        report = await catch_up

        assert report.reason == REASON_CATCHUP
        assert history.get_meta().last_success_date == date(2024, 6, 14)
        assert recorder.next_run is not None
        assert recorder.next_run.due_at == datetime(2024, 6, 15, 16, 30, tzinfo=UTC)
        await recorder.stop()

    @pytest.mark.asyncio
    async def test_catch_up_after_missed_days_resumes_from_watermark(self, history, clock) -> None:
        history.advance_watermark("TCS.NS", date(2024, 6, 10), clock.now)
        history.record_success(date(2024, 6, 12), clock.now, success_count=1, failure_count=0)
        fetcher = _fetcher()
        recorder, _ = _recorder(make_universe("TCS"), fetcher, history, clock)

        catch_up = recorder.start()
        assert catch_up is not None
        report = await catch_up

        assert report.reason == REASON_CATCHUP
        assert fetcher.bar_calls[0][1] == datetime.combine(date(2024, 6, 7), time(), tzinfo=KOLKATA)
        assert history.get_watermark("TCS.NS") == date(2024, 6, 12)
        assert history.get_meta().last_success_date == date(2024, 6, 14)
        await recorder.stop()

    @pytest.mark.asyncio
    async def test_no_catch_up_after_success_today(self, history, clock) -> None:
        history.record_success(date(2024, 6, 14), clock.now, success_count=1, failure_count=0)
        recorder, _ = _recorder(make_universe("TCS"), _fetcher(), history, clock)

        assert recorder.start() is None
        assert recorder.next_run.pending
        await recorder.stop()
        assert recorder.schedule_next() is None

    @pytest.mark.asyncio
    async def test_schedule_next_replaces_pending_timer(self, history) -> None:
        clock = FixedClock(datetime(2024, 6, 14, 10, 0, tzinfo=UTC))
        recorder, _ = _recorder(make_universe("TCS"), _fetcher(), history, clock)

        first = recorder.schedule_next()
        second = recorder.schedule_next()
        await asyncio.sleep(0)

        assert first is not second
        assert first.cancelled
        assert second.pending
        assert second.due_at == datetime(2024, 6, 14, 16, 30, tzinfo=UTC)
        await recorder.stop()

    @pytest.mark.asyncio
    async def test_scheduled_run_rearms_the_timer(self, history) -> None:
        clock = FixedClock(datetime(2024, 6, 14, 10, 0, tzinfo=UTC))
        timer_sleep = OnceSleep()
        recorder, _ = _recorder(make_universe("TCS"), _fetcher(), history, clock, timer_sleep=timer_sleep)

        first = recorder.schedule_next()
        await first.wait()
        await asyncio.sleep(0)

        assert history.get_meta().last_attempt_reason == REASON_SCHEDULED
        assert recorder.next_run is not first
        assert recorder.next_run.pending
        assert timer_sleep.delays[0] == 6.5 * 3600
        await recorder.stop()
