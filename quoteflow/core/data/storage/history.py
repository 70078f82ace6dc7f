"""Embedded store for daily bars, per-instrument watermarks and ingest metadata."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime

import duckdb

from quoteflow.core.data.storage.duckdb_factory import DuckDBFactory
from quoteflow.core.data.storage.schema import HISTORY_TABLES, from_db_timestamp, to_db_timestamp
from quoteflow.core.exceptions import PersistenceError
from quoteflow.core.models import Bar, IngestMeta, IngestSymbolStatus

META_LAST_ATTEMPT_AT = "last_attempt_at"
META_LAST_ATTEMPT_REASON = "last_attempt_reason"
META_LAST_SUCCESS_DATE = "last_success_date"
META_LAST_SUCCESS_AT = "last_success_at"
META_LAST_SUCCESS_COUNT = "last_success_count"
META_LAST_FAILURE_COUNT = "last_failure_count"

_UPSERT_STATUS_SQL = """
    INSERT INTO ingest_symbols (symbol, display_symbol, fetch_status, updated_at)
    VALUES (?, ?, ?, ?)
    ON CONFLICT (symbol) DO UPDATE SET
        display_symbol = COALESCE(EXCLUDED.display_symbol, display_symbol),
        fetch_status = EXCLUDED.fetch_status,
        updated_at = EXCLUDED.updated_at
"""

_ADVANCE_WATERMARK_SQL = """
    INSERT INTO ingest_symbols (symbol, display_symbol, watermark, updated_at)
    VALUES (?, ?, ?, ?)
    ON CONFLICT (symbol) DO UPDATE SET
        display_symbol = COALESCE(EXCLUDED.display_symbol, display_symbol),
        watermark = CASE
            WHEN watermark IS NULL OR EXCLUDED.watermark > watermark THEN EXCLUDED.watermark
            ELSE watermark
        END,
        updated_at = EXCLUDED.updated_at
"""


def bar_id(symbol: str, bar_date: date) -> str:
    return f"{symbol}|{bar_date.isoformat()}"


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _parse_int(value: str | None) -> int | None:
    return int(value) if value not in (None, "") else None


class HistoryStore:
    """DuckDB-backed store used by the daily recorder.

    Bars are keyed by ``"{symbol}|{date}"`` so re-ingesting an overlapping
    window replaces rows instead of duplicating them. Watermarks only move
    forward through :meth:`advance_watermark`; :meth:`reset_watermark` is the
    explicit backfill escape hatch.
    """

    def __init__(self, factory: DuckDBFactory) -> None:
        self._conn = factory.create_connection()
        self.migrate()

    def migrate(self) -> None:
        try:
            for table in HISTORY_TABLES:
                table.ensure(self._conn)
        except duckdb.Error as exc:
            raise PersistenceError(f"Failed to migrate history tables: {exc}", "history") from exc

    def _execute(self, sql: str, params: Sequence[object] | None = None, *, symbol: str | None = None):
        try:
            return self._conn.execute(sql, params or [])
        except duckdb.Error as exc:
            details = {"symbol": symbol} if symbol else None
            raise PersistenceError(f"History store query failed: {exc}", "history", details) from exc

    # -- bars -----------------------------------------------------------

    def upsert_bars(self, symbol: str, bars: Sequence[Bar], updated_at: datetime) -> int:
        if not bars:
            return 0
        stamp = to_db_timestamp(updated_at)
        rows = [
            (bar_id(symbol, bar.date), symbol, bar.date, bar.open, bar.high, bar.low, bar.close, bar.volume, stamp)
            for bar in bars
        ]
        try:
            self._conn.executemany(
                """
                INSERT OR REPLACE INTO ohlcv_bars
                    (id, symbol, bar_date, open, high, low, close, volume, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        except duckdb.Error as exc:
            raise PersistenceError(f"Failed to write bars for {symbol}: {exc}", "history", {"symbol": symbol}) from exc
        return len(rows)

    def get_bars(self, symbol: str, start: date | None = None, end: date | None = None) -> list[Bar]:
        clauses = ["symbol = ?"]
        params: list[object] = [symbol]
        if start is not None:
            clauses.append("bar_date >= ?")
            params.append(start)
        if end is not None:
            clauses.append("bar_date <= ?")
            params.append(end)
        rows = self._execute(
            f"SELECT bar_date, open, high, low, close, volume FROM ohlcv_bars "
            f"WHERE {' AND '.join(clauses)} ORDER BY bar_date",
            params,
            symbol=symbol,
        ).fetchall()
        return [Bar(date=row[0], open=row[1], high=row[2], low=row[3], close=row[4], volume=row[5]) for row in rows]

    def count_bars(self, symbol: str) -> int:
        row = self._execute("SELECT COUNT(*) FROM ohlcv_bars WHERE symbol = ?", [symbol], symbol=symbol).fetchone()
        return int(row[0]) if row else 0

    def max_bar_date(self, symbol: str) -> date | None:
        row = self._execute("SELECT MAX(bar_date) FROM ohlcv_bars WHERE symbol = ?", [symbol], symbol=symbol).fetchone()
        return row[0] if row else None

    # -- watermarks -----------------------------------------------------

    def get_watermark(self, symbol: str) -> date | None:
        """Last recorded date, falling back to the newest stored bar."""

        row = self._execute("SELECT watermark FROM ingest_symbols WHERE symbol = ?", [symbol], symbol=symbol).fetchone()
        if row and row[0] is not None:
            return row[0]
        return self.max_bar_date(symbol)

    def advance_watermark(
        self,
        symbol: str,
        candidate: date,
        updated_at: datetime,
        *,
        display_symbol: str | None = None,
    ) -> date:
        """Move the watermark to ``candidate`` unless it is already later. Returns the stored value."""

        self._execute(
            _ADVANCE_WATERMARK_SQL,
            [symbol, display_symbol, candidate, to_db_timestamp(updated_at)],
            symbol=symbol,
        )
        stored = self.get_watermark(symbol)
        return stored if stored is not None else candidate

    def reset_watermark(self, symbol: str, watermark: date | None, updated_at: datetime) -> None:
        """Set the watermark unconditionally. Used for explicit backfills only."""

        self._execute(
            """
            INSERT INTO ingest_symbols (symbol, watermark, updated_at) VALUES (?, ?, ?)
            ON CONFLICT (symbol) DO UPDATE SET watermark = EXCLUDED.watermark, updated_at = EXCLUDED.updated_at
            """,
            [symbol, watermark, to_db_timestamp(updated_at)],
            symbol=symbol,
        )

    def set_status(
        self,
        symbol: str,
        status: str,
        updated_at: datetime,
        *,
        display_symbol: str | None = None,
    ) -> None:
        self._execute(
            _UPSERT_STATUS_SQL,
            [symbol, display_symbol, status, to_db_timestamp(updated_at)],
            symbol=symbol,
        )

    def get_status(self, symbol: str) -> IngestSymbolStatus | None:
        row = self._execute(
            "SELECT symbol, display_symbol, watermark, fetch_status, updated_at FROM ingest_symbols WHERE symbol = ?",
            [symbol],
            symbol=symbol,
        ).fetchone()
        if row is None:
            return None
        return IngestSymbolStatus(
            symbol=row[0],
            display_symbol=row[1],
            watermark=row[2],
            fetch_status=row[3],
            updated_at=from_db_timestamp(row[4]),
        )

    def status_counts(self) -> dict[str, int]:
        """Instrument counts grouped by fetch status, with every ``error:*`` folded into ``error``."""

        rows = self._execute(
            """
            SELECT CASE WHEN fetch_status LIKE 'error:%' THEN 'error' ELSE fetch_status END AS status, COUNT(*)
            FROM ingest_symbols
            WHERE fetch_status IS NOT NULL
            GROUP BY 1
            """
        ).fetchall()
        return {row[0]: int(row[1]) for row in rows}

    # -- metadata -------------------------------------------------------

    def _set_meta(self, values: dict[str, str | None], updated_at: datetime) -> None:
        stamp = to_db_timestamp(updated_at)
        try:
            self._conn.executemany(
                "INSERT OR REPLACE INTO ingest_meta (meta_key, meta_value, updated_at) VALUES (?, ?, ?)",
                [(key, value, stamp) for key, value in values.items()],
            )
        except duckdb.Error as exc:
            raise PersistenceError(f"Failed to write ingest metadata: {exc}", "history") from exc

    def record_attempt(self, at: datetime, reason: str) -> None:
        self._set_meta({META_LAST_ATTEMPT_AT: at.isoformat(), META_LAST_ATTEMPT_REASON: reason}, at)

    def record_success(self, day: date, at: datetime, *, success_count: int, failure_count: int) -> None:
        self._set_meta(
            {
                META_LAST_SUCCESS_DATE: day.isoformat(),
                META_LAST_SUCCESS_AT: at.isoformat(),
                META_LAST_SUCCESS_COUNT: str(success_count),
                META_LAST_FAILURE_COUNT: str(failure_count),
            },
            at,
        )

    def get_meta(self) -> IngestMeta:
        rows = self._execute("SELECT meta_key, meta_value FROM ingest_meta").fetchall()
        values = {row[0]: row[1] for row in rows}
        return IngestMeta(
            last_attempt_at=_parse_datetime(values.get(META_LAST_ATTEMPT_AT)),
            last_attempt_reason=values.get(META_LAST_ATTEMPT_REASON),
            last_success_date=_parse_date(values.get(META_LAST_SUCCESS_DATE)),
            last_success_at=_parse_datetime(values.get(META_LAST_SUCCESS_AT)),
            last_success_count=_parse_int(values.get(META_LAST_SUCCESS_COUNT)),
            last_failure_count=_parse_int(values.get(META_LAST_FAILURE_COUNT)),
        )

    def close(self) -> None:
        self._conn.close()
