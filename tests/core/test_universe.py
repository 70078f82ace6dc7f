"""Tests for loading the instrument universe."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import make_instrument

from quoteflow.core.data.universe import InstrumentUniverse, parse_universe
from quoteflow.core.exceptions import UniverseError


def _write(path: Path, entries: object) -> Path:
    path.write_text(json.dumps(entries), encoding="utf-8")
    return path


class TestParseUniverse:
    def test_accepts_known_aliases(self) -> None:
        instruments = parse_universe(
            [
                {"symbol": "TCS", "yahooSymbol": "TCS.NS", "series": "EQ", "currentPrice": 3850.5},
                {"symbol": "INFY", "providerSymbol": "INFY.NS", "lastUpdated": "2024-06-14T10:00:00+00:00"},
            ]
        )

        assert [item.provider_symbol for item in instruments] == ["TCS.NS", "INFY.NS"]
        assert instruments[0].series == "EQ"
        assert instruments[0].seed_price == 3850.5
        assert instruments[1].seed_updated_at is not None

    def test_skips_malformed_entries_and_disallowed_symbols(self) -> None:
        instruments = parse_universe(
            [
                {"symbol": "OK", "yahooSymbol": "OK.NS"},
                {"symbol": "NO_PROVIDER"},
                "not-an-object",
                {"symbol": "BAD", "yahooSymbol": "BAD;DROP"},
                {"symbol": "M&M", "yahooSymbol": "M&M.NS"},
                {"symbol": "DASH", "yahooSymbol": "BAJAJ-AUTO.NS"},
            ]
        )

        assert [item.symbol for item in instruments] == ["OK", "DASH"]

    def test_limit_keeps_first_entries(self) -> None:
        raw = [{"symbol": f"S{i}", "yahooSymbol": f"S{i}.NS"} for i in range(5)]

        assert [item.symbol for item in parse_universe(raw, limit=2)] == ["S0", "S1"]

    def test_non_list_raises(self) -> None:
        with pytest.raises(UniverseError):
            parse_universe({"symbol": "TCS"})


class TestInstrumentUniverse:
    def test_missing_file_raises_universe_error(self, tmp_path: Path) -> None:
        universe = InstrumentUniverse(tmp_path / "missing.json")

        with pytest.raises(UniverseError) as exc_info:
            universe.load()

        assert exc_info.value.error_code == "UNIVERSE_ERROR"
        assert exc_info.value.details["path"].endswith("missing.json")

    def test_invalid_json_raises_universe_error(self, tmp_path: Path) -> None:
        path = tmp_path / "universe.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(UniverseError):
            InstrumentUniverse(path).load()

    def test_ensure_loaded_reads_only_while_empty(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "universe.json", [{"symbol": "TCS", "yahooSymbol": "TCS.NS"}])
        universe = InstrumentUniverse(path)

        assert len(universe) == 0
        assert [item.symbol for item in universe.ensure_loaded()] == ["TCS"]

        _write(path, [{"symbol": "INFY", "yahooSymbol": "INFY.NS"}])
        assert [item.symbol for item in universe.ensure_loaded()] == ["TCS"]
        assert [item.symbol for item in universe.reload()] == ["INFY"]

    def test_configured_limit_applies_unless_overridden(self, tmp_path: Path) -> None:
        raw = [{"symbol": f"S{i}", "yahooSymbol": f"S{i}.NS"} for i in range(4)]
        universe = InstrumentUniverse(_write(tmp_path / "universe.json", raw), limit=3)

        assert len(universe.load()) == 3
        assert len(universe.reload(limit=1)) == 1

    def test_find_is_case_insensitive_on_both_symbols(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "universe.json", [{"symbol": "TCS", "yahooSymbol": "TCS.NS"}])
        universe = InstrumentUniverse(path)
        universe.load()

        assert universe.find("tcs.ns") is not None
        assert universe.find("Tcs") is not None
        assert universe.find("INFY") is None

    def test_in_memory_universe_without_path(self) -> None:
        universe = InstrumentUniverse(instruments=[make_instrument("TCS")])

        assert [item.provider_symbol for item in universe.reload()] == ["TCS.NS"]
        assert universe.path is None

    def test_read_leaves_loaded_list_untouched(self, tmp_path: Path) -> None:
        raw = [{"symbol": f"S{i}", "yahooSymbol": f"S{i}.NS"} for i in range(5)]
        universe = InstrumentUniverse(_write(tmp_path / "universe.json", raw))
        universe.load()

        assert [item.symbol for item in universe.read(limit=2)] == ["S0", "S1"]
        assert len(universe) == 5
        assert universe.find("S4") is not None

    def test_read_without_path_truncates_a_copy(self) -> None:
        universe = InstrumentUniverse(instruments=[make_instrument("TCS"), make_instrument("INFY")])

        assert [item.symbol for item in universe.read(limit=1)] == ["TCS"]
        assert len(universe) == 2
