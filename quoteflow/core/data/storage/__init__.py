"""DuckDB-backed storage."""

from quoteflow.core.data.storage.duckdb_factory import DuckDBFactory, DuckDBFactoryConfig
from quoteflow.core.data.storage.history import HistoryStore, bar_id
from quoteflow.core.data.storage.instruments import CachedQuote, InstrumentStore

__all__ = [
    "DuckDBFactory",
    "DuckDBFactoryConfig",
    "HistoryStore",
    "InstrumentStore",
    "CachedQuote",
    "bar_id",
]
