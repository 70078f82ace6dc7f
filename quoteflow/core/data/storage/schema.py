"""Table definitions for the relational and historical stores."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

import duckdb


def to_db_timestamp(value: datetime | None) -> datetime | None:
    """Timestamps are stored as naive UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def from_db_timestamp(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=UTC)


@dataclass(frozen=True)
class ColumnDef:
    """A DuckDB column definition."""

    name: str
    data_type: str
    constraints: Sequence[str] = ()

    def render(self) -> str:
        return " ".join([self.name, self.data_type, *self.constraints])


@dataclass(frozen=True)
class TableSchema:
    """A DuckDB table that can be created and migrated additively."""

    name: str
    columns: Sequence[ColumnDef]
    primary_key: Sequence[str] = ()

    def create_ddl(self) -> str:
        column_defs = [column.render() for column in self.columns]
        if self.primary_key:
            column_defs.append(f"PRIMARY KEY ({', '.join(self.primary_key)})")
        columns_sql = ",\n                ".join(column_defs)
        return f"""
            CREATE TABLE IF NOT EXISTS {self.name} (
                {columns_sql}
            )
            """.strip()

    def existing_columns(self, conn: duckdb.DuckDBPyConnection) -> set[str]:
        rows = conn.execute(
            "SELECT column_name FROM information_schema.columns WHERE table_name = ?",
            [self.name],
        ).fetchall()
        return {row[0].lower() for row in rows}

    def ensure(self, conn: duckdb.DuckDBPyConnection) -> list[str]:
        """Create the table, then add any column missing from an older copy.

        Safe to call repeatedly. Returns the names of the columns that were added.
        """

        conn.execute(self.create_ddl())
        present = self.existing_columns(conn)
        added: list[str] = []
        for column in self.columns:
            if column.name.lower() in present:
                continue
            # Constraints such as NOT NULL cannot be added to populated tables.
            conn.execute(f"ALTER TABLE {self.name} ADD COLUMN {column.name} {column.data_type}")
            added.append(column.name)
        return added


INSTRUMENTS_TABLE = TableSchema(
    name="instruments",
    columns=(
        ColumnDef("provider_symbol", "VARCHAR", ("NOT NULL",)),
        ColumnDef("symbol", "VARCHAR"),
        ColumnDef("series", "VARCHAR"),
        ColumnDef("name", "VARCHAR"),
        ColumnDef("current_price", "DOUBLE"),
        ColumnDef("previous_close", "DOUBLE"),
        ColumnDef("day_high", "DOUBLE"),
        ColumnDef("day_low", "DOUBLE"),
        ColumnDef("volume", "BIGINT"),
        ColumnDef("market_cap", "DOUBLE"),
        ColumnDef("currency", "VARCHAR"),
        ColumnDef("fifty_two_week_low", "DOUBLE"),
        ColumnDef("fifty_two_week_high", "DOUBLE"),
        ColumnDef("last_updated", "TIMESTAMP"),
    ),
    primary_key=("provider_symbol",),
)

OHLCV_BARS_TABLE = TableSchema(
    name="ohlcv_bars",
    columns=(
        ColumnDef("id", "VARCHAR", ("NOT NULL",)),
        ColumnDef("symbol", "VARCHAR", ("NOT NULL",)),
        ColumnDef("bar_date", "DATE", ("NOT NULL",)),
        ColumnDef("open", "DOUBLE"),
        ColumnDef("high", "DOUBLE"),
        ColumnDef("low", "DOUBLE"),
        ColumnDef("close", "DOUBLE"),
        ColumnDef("volume", "BIGINT"),
        ColumnDef("updated_at", "TIMESTAMP"),
    ),
    primary_key=("id",),
)

INGEST_SYMBOLS_TABLE = TableSchema(
    name="ingest_symbols",
    columns=(
        ColumnDef("symbol", "VARCHAR", ("NOT NULL",)),
        ColumnDef("display_symbol", "VARCHAR"),
        ColumnDef("watermark", "DATE"),
        ColumnDef("fetch_status", "VARCHAR"),
        ColumnDef("updated_at", "TIMESTAMP"),
    ),
    primary_key=("symbol",),
)

INGEST_META_TABLE = TableSchema(
    name="ingest_meta",
    columns=(
        ColumnDef("meta_key", "VARCHAR", ("NOT NULL",)),
        ColumnDef("meta_value", "VARCHAR"),
        ColumnDef("updated_at", "TIMESTAMP"),
    ),
    primary_key=("meta_key",),
)

HISTORY_TABLES: tuple[TableSchema, ...] = (OHLCV_BARS_TABLE, INGEST_SYMBOLS_TABLE, INGEST_META_TABLE)


__all__ = [
    "ColumnDef",
    "TableSchema",
    "INSTRUMENTS_TABLE",
    "OHLCV_BARS_TABLE",
    "INGEST_SYMBOLS_TABLE",
    "INGEST_META_TABLE",
    "HISTORY_TABLES",
    "to_db_timestamp",
    "from_db_timestamp",
]
