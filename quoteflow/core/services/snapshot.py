"""Authoritative in-memory view of the latest quote per instrument."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from quoteflow.core.data.universe import InstrumentUniverse
from quoteflow.core.exceptions import UniverseError
from quoteflow.core.logging import get_logger
from quoteflow.core.models import InstrumentRef, Quote, SnapshotEntry
from quoteflow.core.services.timers import ClockFn, utc_now

logger = get_logger(__name__)


@dataclass(slots=True)
class _LiveQuote:
    quote: Quote
    last_updated: datetime | None


class LiveSnapshotStore:
    """Merges the static universe with the latest fetched quote of each instrument.

    Live entries are keyed by provider symbol, overwritten wholesale on every
    successful fetch and never evicted.
    """

    def __init__(
        self,
        universe: InstrumentUniverse,
        *,
        default_currency: str = "INR",
        clock: ClockFn = utc_now,
    ) -> None:
        self._universe = universe
        self._default_currency = default_currency
        self._clock = clock
        self._live: dict[str, _LiveQuote] = {}

    def upsert(self, provider_symbol: str, quote: Quote) -> datetime:
        """Replace the live entry for ``provider_symbol``; returns the ``last_updated`` stamp."""

        stamp = self._clock()
        self._live[provider_symbol] = _LiveQuote(quote=quote, last_updated=stamp)
        return stamp

    def seed(self, provider_symbol: str, quote: Quote, last_updated: datetime | None) -> bool:
        """Warm-start an entry from persisted data unless a live quote is already present."""

        if provider_symbol in self._live:
            return False
        self._live[provider_symbol] = _LiveQuote(quote=quote, last_updated=last_updated)
        return True

    def live_quote(self, provider_symbol: str) -> Quote | None:
        live = self._live.get(provider_symbol)
        return live.quote if live is not None else None

    def entry_for(self, instrument: InstrumentRef) -> SnapshotEntry:
        live = self._live.get(instrument.provider_symbol)
        quote = live.quote if live is not None else None

        current_price = quote.current_price if quote is not None else None
        if current_price is None:
            current_price = instrument.seed_price
        previous_close = quote.previous_close if quote is not None else None
        change = change_percent = None
        if quote is not None:
            change, change_percent = quote.change, quote.change_percent
        if change is None and current_price is not None and previous_close:
            change = current_price - previous_close
            change_percent = change / previous_close * 100

        last_updated = live.last_updated if live is not None else None
        return SnapshotEntry(
            symbol=instrument.symbol,
            provider_symbol=instrument.provider_symbol,
            series=instrument.series,
            name=(quote.name if quote is not None else None) or instrument.symbol,
            current_price=current_price,
            previous_close=previous_close,
            change=change,
            change_percent=change_percent,
            day_high=quote.day_high if quote is not None else None,
            day_low=quote.day_low if quote is not None else None,
            volume=quote.volume if quote is not None else None,
            currency=(quote.currency if quote is not None else None) or self._default_currency,
            last_updated=last_updated or instrument.seed_updated_at,
        )

    def get_snapshot(self) -> list[SnapshotEntry]:
        """One entry per universe instrument, in universe order."""

        try:
            instruments = self._universe.ensure_loaded()
        except UniverseError as exc:
            logger.bind(error_code=exc.error_code).error(f"Snapshot requested but universe unavailable: {exc}")
            return []
        return [self.entry_for(instrument) for instrument in instruments]

    def find(self, symbol: str) -> SnapshotEntry | None:
        """Look up by provider or display symbol, case-insensitively."""

        instrument = self._universe.find(symbol)
        if instrument is None:
            return None
        return self.entry_for(instrument)

    @property
    def live_count(self) -> int:
        return len(self._live)
