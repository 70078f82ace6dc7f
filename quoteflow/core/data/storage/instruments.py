"""Relational store holding the latest cached quote fields per instrument."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import duckdb

from quoteflow.core.data.storage.duckdb_factory import DuckDBFactory
from quoteflow.core.data.storage.schema import INSTRUMENTS_TABLE, from_db_timestamp, to_db_timestamp
from quoteflow.core.exceptions import PersistenceError
from quoteflow.core.logging import get_logger
from quoteflow.core.models import InstrumentRef, Quote

logger = get_logger(__name__)

_UPSERT_SQL = """
    INSERT INTO instruments (
        provider_symbol, symbol, series, name, current_price, previous_close,
        day_high, day_low, volume, market_cap, currency,
        fifty_two_week_low, fifty_two_week_high, last_updated
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (provider_symbol) DO UPDATE SET
        symbol = EXCLUDED.symbol,
        series = COALESCE(EXCLUDED.series, series),
        name = COALESCE(EXCLUDED.name, name),
        current_price = COALESCE(EXCLUDED.current_price, current_price),
        previous_close = COALESCE(EXCLUDED.previous_close, previous_close),
        day_high = COALESCE(EXCLUDED.day_high, day_high),
        day_low = COALESCE(EXCLUDED.day_low, day_low),
        volume = COALESCE(EXCLUDED.volume, volume),
        market_cap = COALESCE(EXCLUDED.market_cap, market_cap),
        currency = COALESCE(EXCLUDED.currency, currency),
        fifty_two_week_low = COALESCE(EXCLUDED.fifty_two_week_low, fifty_two_week_low),
        fifty_two_week_high = COALESCE(EXCLUDED.fifty_two_week_high, fifty_two_week_high),
        last_updated = EXCLUDED.last_updated
"""

_SELECT_SQL = """
    SELECT provider_symbol, name, current_price, previous_close, day_high, day_low,
           volume, market_cap, currency, fifty_two_week_low, fifty_two_week_high, last_updated
    FROM instruments
"""


@dataclass(slots=True, frozen=True)
class CachedQuote:
    """Quote fields read back from the relational store."""

    provider_symbol: str
    quote: Quote
    last_updated: datetime | None


class InstrumentStore:
    """Keeps the latest known fields of each instrument in DuckDB.

    Optional fields are merged with ``COALESCE`` so a partial quote never wipes
    values stored by an earlier, more complete one.
    """

    def __init__(self, factory: DuckDBFactory) -> None:
        self._conn = factory.create_connection()
        self.migrate()

    def migrate(self) -> list[str]:
        """Create the table and add missing columns. Idempotent."""

        try:
            added = INSTRUMENTS_TABLE.ensure(self._conn)
        except duckdb.Error as exc:
            raise PersistenceError(f"Failed to migrate instruments table: {exc}", "instruments") from exc
        if added:
            logger.info(f"Added columns to instruments table: {', '.join(added)}")
        return added

    def save_quote(self, instrument: InstrumentRef, quote: Quote, updated_at: datetime) -> None:
        try:
            self._conn.execute(
                _UPSERT_SQL,
                [
                    instrument.provider_symbol,
                    instrument.symbol,
                    instrument.series,
                    quote.name,
                    quote.current_price,
                    quote.previous_close,
                    quote.day_high,
                    quote.day_low,
                    quote.volume,
                    quote.market_cap,
                    quote.currency,
                    quote.fifty_two_week_low,
                    quote.fifty_two_week_high,
                    to_db_timestamp(updated_at),
                ],
            )
        except duckdb.Error as exc:
            raise PersistenceError(
                f"Failed to save quote for {instrument.provider_symbol}: {exc}",
                "instruments",
                {"symbol": instrument.provider_symbol},
            ) from exc

    def load_cached(self) -> list[CachedQuote]:
        """Return every stored row, used to warm-start the live snapshot."""

        try:
            rows = self._conn.execute(_SELECT_SQL).fetchall()
        except duckdb.Error as exc:
            raise PersistenceError(f"Failed to read instruments table: {exc}", "instruments") from exc
        cached: list[CachedQuote] = []
        for row in rows:
            quote = Quote(
                symbol=row[0],
                name=row[1],
                current_price=row[2],
                previous_close=row[3],
                day_high=row[4],
                day_low=row[5],
                volume=row[6],
                market_cap=row[7],
                currency=row[8],
                fifty_two_week_low=row[9],
                fifty_two_week_high=row[10],
            )
            cached.append(CachedQuote(row[0], quote, from_db_timestamp(row[11])))
        return cached

    def close(self) -> None:
        self._conn.close()
