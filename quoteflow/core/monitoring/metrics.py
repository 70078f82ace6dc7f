"""Prometheus metrics for the quote pipeline."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import DefaultDict

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


@dataclass
class _ProviderStats:
    """Running success and failure counts per provider call kind."""

    total: int = 0
    failures: int = 0


class MetricsCollector:
    """Collects and exposes Prometheus metrics for fetches, cycles and broadcasts."""

    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.fetch_latency_seconds = Histogram(
            "quoteflow_fetch_latency_seconds",
            "Latency distribution of quote provider calls.",
            ("kind",),
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, float("inf")),
            registry=self.registry,
        )
        self.fetch_requests_total = Counter(
            "quoteflow_fetch_requests_total",
            "Total quote provider calls.",
            ("kind",),
            registry=self.registry,
        )
        self.fetch_failures_total = Counter(
            "quoteflow_fetch_failures_total",
            "Failed quote provider calls.",
            ("kind",),
            registry=self.registry,
        )
        self.fetch_error_rate = Gauge(
            "quoteflow_fetch_error_rate",
            "Error rate of quote provider calls since start (0-1 range).",
            ("kind",),
            registry=self.registry,
        )
        self.cycle_duration_seconds = Histogram(
            "quoteflow_cycle_duration_seconds",
            "Wall-clock duration of scheduler cycles.",
            ("scheduler",),
            buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, float("inf")),
            registry=self.registry,
        )
        self.cycles_total = Counter(
            "quoteflow_cycles_total",
            "Scheduler cycles grouped by outcome.",
            ("scheduler", "outcome"),
            registry=self.registry,
        )
        self.refresh_progress_ratio = Gauge(
            "quoteflow_refresh_progress_ratio",
            "Processed share of the running live-refresh cycle.",
            registry=self.registry,
        )
        self.live_updates_paused = Gauge(
            "quoteflow_live_updates_paused",
            "1 while live updates are paused by the daily ingest.",
            registry=self.registry,
        )
        self.ingest_instruments_total = Counter(
            "quoteflow_ingest_instruments_total",
            "Daily ingest outcomes per instrument.",
            ("status",),
            registry=self.registry,
        )
        self.push_connections = Gauge(
            "quoteflow_push_connections",
            "Open push channel connections.",
            registry=self.registry,
        )
        self._stats: DefaultDict[str, _ProviderStats] = defaultdict(_ProviderStats)

    def observe_fetch(self, kind: str, latency_seconds: float, *, success: bool = True) -> None:
        """Record one provider call."""

        self.fetch_latency_seconds.labels(kind=kind).observe(latency_seconds)
        stats = self._stats[kind]
        stats.total += 1
        self.fetch_requests_total.labels(kind=kind).inc()
        if not success:
            stats.failures += 1
            self.fetch_failures_total.labels(kind=kind).inc()
        self.fetch_error_rate.labels(kind=kind).set(stats.failures / stats.total)

    def observe_cycle(self, scheduler: str, duration_seconds: float, *, outcome: str) -> None:
        self.cycle_duration_seconds.labels(scheduler=scheduler).observe(duration_seconds)
        self.cycles_total.labels(scheduler=scheduler, outcome=outcome).inc()

    def set_refresh_progress(self, processed: int, total: int) -> None:
        self.refresh_progress_ratio.set(processed / total if total else 0.0)

    def set_paused(self, paused: bool) -> None:
        self.live_updates_paused.set(1 if paused else 0)

    def record_ingest_status(self, status: str) -> None:
        """Count an instrument outcome; ``error:<message>`` collapses to ``error``."""

        label = "error" if status.startswith("error") else status
        self.ingest_instruments_total.labels(status=label).inc()

    def render(self) -> bytes:
        """Render metrics in Prometheus exposition format."""

        return generate_latest(self.registry)


_DEFAULT_COLLECTOR: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Return the global metrics collector instance."""

    global _DEFAULT_COLLECTOR
    if _DEFAULT_COLLECTOR is None:
        _DEFAULT_COLLECTOR = MetricsCollector()
    return _DEFAULT_COLLECTOR


def configure_metrics_collector(collector: MetricsCollector | None) -> None:
    """Override the global metrics collector for application wiring or tests."""

    global _DEFAULT_COLLECTOR
    _DEFAULT_COLLECTOR = collector
