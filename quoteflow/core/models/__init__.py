"""Data models."""

from quoteflow.core.models.base import QuoteflowModel
from quoteflow.core.models.instrument import InstrumentRef
from quoteflow.core.models.market import (
    Bar,
    ChartPoint,
    DataUpdate,
    FetchFailure,
    Quote,
    SnapshotEntry,
    TopMover,
    TopMovers,
)
from quoteflow.core.models.progress import IngestMeta, IngestSymbolStatus, PauseState, UpdateProgress

__all__ = [
    "QuoteflowModel",
    "InstrumentRef",
    "Quote",
    "Bar",
    "ChartPoint",
    "FetchFailure",
    "SnapshotEntry",
    "DataUpdate",
    "TopMover",
    "TopMovers",
    "UpdateProgress",
    "PauseState",
    "IngestMeta",
    "IngestSymbolStatus",
]
