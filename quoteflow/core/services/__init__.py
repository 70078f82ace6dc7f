"""Scheduling, snapshot and query services."""

from quoteflow.core.services.batch import Outcome, partition, run_with_concurrency
from quoteflow.core.services.events import Event, EventBus, EventKind
from quoteflow.core.services.movers import compute_top_movers
from quoteflow.core.services.queries import QueryService, RecentUpdates
from quoteflow.core.services.recorder import DailyHistoricalRecorder, IngestReport
from quoteflow.core.services.refresh import LiveRefreshScheduler, RefreshReport, RefreshState, SchedulerStatus
from quoteflow.core.services.scheduling import next_run_instant
from quoteflow.core.services.snapshot import LiveSnapshotStore
from quoteflow.core.services.timers import PeriodicTask, ScheduledTask

__all__ = [
    "Outcome",
    "partition",
    "run_with_concurrency",
    "Event",
    "EventBus",
    "EventKind",
    "compute_top_movers",
    "QueryService",
    "RecentUpdates",
    "DailyHistoricalRecorder",
    "IngestReport",
    "LiveRefreshScheduler",
    "RefreshReport",
    "RefreshState",
    "SchedulerStatus",
    "next_run_instant",
    "LiveSnapshotStore",
    "PeriodicTask",
    "ScheduledTask",
]
