"""Static instrument universe loaded from a JSON file."""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from pathlib import Path

from pydantic import ValidationError

from quoteflow.core.exceptions import UniverseError
from quoteflow.core.logging import get_logger
from quoteflow.core.models import InstrumentRef

logger = get_logger(__name__)

PROVIDER_SYMBOL_PATTERN = re.compile(r"^[A-Za-z0-9.\-]+$")


def parse_universe(raw_entries: object, *, limit: int | None = None) -> list[InstrumentRef]:
    """Validate raw JSON entries, dropping malformed ones and provider symbols outside the allow-list."""

    if not isinstance(raw_entries, list):
        raise UniverseError("Universe file must contain a JSON list")

    instruments: list[InstrumentRef] = []
    for position, raw in enumerate(raw_entries):
        try:
            instrument = InstrumentRef.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"Skipping malformed universe entry #{position}: {exc.error_count()} error(s)")
            continue
        if not PROVIDER_SYMBOL_PATTERN.match(instrument.provider_symbol):
            logger.warning(f"Skipping universe entry with invalid provider symbol {instrument.provider_symbol!r}")
            continue
        instruments.append(instrument)
        if limit is not None and len(instruments) >= limit:
            break
    return instruments


class InstrumentUniverse:
    """Ordered, read-mostly list of instruments.

    The list is loaded lazily: :meth:`ensure_loaded` reads the file only while
    the in-memory copy is empty, :meth:`reload` always re-reads it and
    :meth:`read` returns a private copy of the file without replacing it.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        instruments: list[InstrumentRef] | None = None,
        limit: int | None = None,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._limit = limit
        self._instruments: list[InstrumentRef] = list(instruments or [])

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self, *, limit: int | None = None) -> list[InstrumentRef]:
        """Read and validate the universe file, replacing the in-memory copy."""

        if self._path is None:
            return list(self._instruments)
        self._instruments = self._parse_file(self._path, limit)
        logger.info(f"Loaded {len(self._instruments)} instruments from {self._path}")
        return list(self._instruments)

    def read(self, *, limit: int | None = None) -> list[InstrumentRef]:
        """Read and validate the universe file without touching the in-memory copy.

        Without a backing file the current list is returned, truncated to ``limit``.
        """

        limit = limit if limit is not None else self._limit
        if self._path is None:
            instruments = list(self._instruments)
            return instruments[:limit] if limit is not None else instruments
        return self._parse_file(self._path, limit)

    def _parse_file(self, path: Path, limit: int | None) -> list[InstrumentRef]:
        try:
            raw_entries = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise UniverseError(f"Universe file not found: {path}", str(path)) from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise UniverseError(f"Universe file unreadable: {exc}", str(path)) from exc
        return parse_universe(raw_entries, limit=limit if limit is not None else self._limit)

    def ensure_loaded(self) -> list[InstrumentRef]:
        if not self._instruments:
            return self.load()
        return list(self._instruments)

    def reload(self, *, limit: int | None = None) -> list[InstrumentRef]:
        return self.load(limit=limit)

    def instruments(self) -> list[InstrumentRef]:
        return list(self._instruments)

    def find(self, symbol: str) -> InstrumentRef | None:
        for instrument in self._instruments:
            if instrument.matches(symbol):
                return instrument
        return None

    def __len__(self) -> int:
        return len(self._instruments)

    def __iter__(self) -> Iterator[InstrumentRef]:
        return iter(list(self._instruments))
