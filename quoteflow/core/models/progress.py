"""Scheduler progress, pause state and ingest bookkeeping models."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import computed_field

from quoteflow.core.models.base import QuoteflowModel


class UpdateProgress(QuoteflowModel):
    """Snapshot of the live-refresh cycle progress."""

    is_updating: bool = False
    total_symbols: int = 0
    processed_symbols: int = 0
    last_update: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def progress_percent(self) -> int:
        if self.total_symbols <= 0:
            return 0
        return round(self.processed_symbols / self.total_symbols * 100)


class PauseState(QuoteflowModel):
    """Whether live updates are paused, and by whom."""

    paused: bool = False
    reason: str | None = None
    paused_at: datetime | None = None


class IngestMeta(QuoteflowModel):
    """Durable bookkeeping of the daily recorder."""

    last_attempt_at: datetime | None = None
    last_attempt_reason: str | None = None
    last_success_date: date | None = None
    last_success_at: datetime | None = None
    last_success_count: int | None = None
    last_failure_count: int | None = None


class IngestSymbolStatus(QuoteflowModel):
    """Per-instrument watermark and last fetch status."""

    symbol: str
    display_symbol: str | None = None
    watermark: date | None = None
    fetch_status: str | None = None
    updated_at: datetime | None = None
