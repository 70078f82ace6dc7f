"""Operational commands: serve, refresh, ingest, backfill, status and next-run."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

import typer

from quoteflow.cli.utils import PROVIDER_EXIT_CODE, SYSTEM_EXIT_CODE, VALIDATION_EXIT_CODE, emit_error, get_formatter
from quoteflow.core.config import get_settings
from quoteflow.core.exceptions import FetchError, QuoteflowError
from quoteflow.core.runtime import QuoteflowRuntime
from quoteflow.core.services.scheduling import next_run_instant


def build_runtime() -> QuoteflowRuntime:
    """Factory hook for obtaining a :class:`QuoteflowRuntime`; replaced in tests."""

    return QuoteflowRuntime.build(get_settings())


@contextmanager
def _runtime() -> Iterator[QuoteflowRuntime]:
    try:
        runtime = build_runtime()
    except QuoteflowError as exc:
        emit_error(exc.message, exc.error_code, details=exc.details)
        raise typer.Exit(code=SYSTEM_EXIT_CODE) from exc
    try:
        yield runtime
    finally:
        runtime.close()


def serve_command(
    host: str | None = typer.Option(None, "--host", help="Bind address (defaults to settings)."),
    port: int | None = typer.Option(None, "--port", help="Port (defaults to settings)."),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes."),
) -> None:
    """Run the HTTP/WebSocket service with both schedulers."""

    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "quoteflow.web.app:create_service_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_config=None,
    )


def refresh_command(ctx: typer.Context) -> None:
    """Run a single live-refresh cycle and print per-instrument failures."""

    formatter = get_formatter(ctx)
    with _runtime() as runtime:
        report = asyncio.run(runtime.refresh.trigger())
        if report is None:
            emit_error("Live refresh cycle failed", "BATCH_CYCLE_ERROR")
            raise typer.Exit(code=SYSTEM_EXIT_CODE)
        rows = [
            {"symbol": failure.symbol, "error_code": failure.error_code, "message": failure.message}
            for failure in report.failures
        ]
        typer.echo(f"Refreshed {report.succeeded}/{report.total} instruments in {report.duration_ms:.0f}ms")
        if rows:
            formatter.render(rows, stream=sys.stdout, columns=["symbol", "error_code", "message"])


def ingest_command(
    ctx: typer.Context,
    reason: str = typer.Option("manual", "--reason", help="Reason recorded in the ingest metadata."),
) -> None:
    """Run the daily historical ingest now."""

    formatter = get_formatter(ctx)
    with _runtime() as runtime:
        report = asyncio.run(runtime.recorder.run(reason))
        rows = [
            {
                "symbol": result.symbol,
                "status": result.status,
                "window_start": result.window_start.isoformat(),
                "bars": result.bars_written,
                "watermark": result.watermark.isoformat() if result.watermark else None,
            }
            for result in report.results
        ]
        formatter.render(rows, stream=sys.stdout, columns=["symbol", "status", "window_start", "bars", "watermark"])
        typer.echo(f"Ingest {reason}: {report.succeeded} ok, {report.failed} failed, {report.no_data} without data")
        if report.error:
            emit_error(report.error, "BATCH_CYCLE_ERROR")
            raise typer.Exit(code=SYSTEM_EXIT_CODE)


def backfill_command(
    symbol: str = typer.Argument(..., help="Provider or display symbol."),
    since: str = typer.Option(..., "--since", help="First date to re-fetch (YYYY-MM-DD)."),
) -> None:
    """Re-fetch one instrument from a date and reset its watermark."""

    try:
        start = date.fromisoformat(since)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid date: {since}", param_hint="--since") from exc

    with _runtime() as runtime:
        runtime.universe.ensure_loaded()
        try:
            result = asyncio.run(runtime.recorder.backfill(symbol, start))
        except FetchError as exc:
            emit_error(exc.message, exc.error_code, details=exc.details)
            raise typer.Exit(code=PROVIDER_EXIT_CODE) from exc
        typer.echo(
            f"{result.symbol}: {result.status}, {result.bars_written} bars, watermark "
            f"{result.watermark.isoformat() if result.watermark else '-'}"
        )


def status_command(ctx: typer.Context) -> None:
    """Show the daily ingest bookkeeping."""

    formatter = get_formatter(ctx)
    with _runtime() as runtime:
        meta = runtime.history.get_meta().model_dump(mode="json")
        counts = runtime.history.status_counts()
        rows = [{"key": key, "value": value} for key, value in meta.items()]
        rows.extend({"key": f"status:{status}", "value": total} for status, total in sorted(counts.items()))
        formatter.render(rows, stream=sys.stdout, columns=["key", "value"])


def next_run_command(
    now: str | None = typer.Option(None, "--now", help="Reference instant (ISO 8601 with offset); defaults to now."),
    timezone: str | None = typer.Option(None, "--timezone", help="IANA zone; defaults to the configured one."),
    hour: int | None = typer.Option(None, "--hour", min=0, max=23),
    minute: int | None = typer.Option(None, "--minute", min=0, max=59),
) -> None:
    """Print when the next daily ingest will run."""

    recorder = get_settings().recorder
    zone_name = timezone or recorder.timezone
    try:
        zone = ZoneInfo(zone_name)
    except Exception as exc:
        emit_error(f"Unknown timezone: {zone_name}", "CONFIGURATION_ERROR")
        raise typer.Exit(code=VALIDATION_EXIT_CODE) from exc
    try:
        reference = datetime.fromisoformat(now) if now else datetime.now(UTC)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid instant: {now}", param_hint="--now") from exc
    if reference.tzinfo is None:
        raise typer.BadParameter("--now must include a UTC offset", param_hint="--now")

    target = next_run_instant(
        reference,
        recorder.hour if hour is None else hour,
        recorder.minute if minute is None else minute,
        zone,
    )
    typer.echo(f"local={target.astimezone(zone).isoformat()} utc={target.isoformat()}")


def register(app: typer.Typer) -> None:
    app.command("serve")(serve_command)
    app.command("refresh")(refresh_command)
    app.command("ingest")(ingest_command)
    app.command("backfill")(backfill_command)
    app.command("status")(status_command)
    app.command("next-run")(next_run_command)
