"""Tests for the DataStore module."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from eco_capacity.store import DataStore


class TestDataStoreInit:
    """Test DataStore initialization."""

    def test_creates_tier_paths(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.base == tmp_path
        assert store.config == tmp_path / "config"
        assert store.live == tmp_path / "live"
        assert store.history == tmp_path / "history"


class TestDataStoreWrite:
    """Test writing data with metadata envelopes."""

    def test_write_creates_file(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        path = store.write(Path("live/weather/manali.json"), {"temp": 20}, source="test")
        assert path.exists()

    def test_write_envelope_format(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        valid = datetime(2026, 3, 1, tzinfo=UTC)
        store.write(Path("live/weather.json"), {"temp": 20}, source="open-meteo", valid_until=valid)

        data = json.loads((tmp_path / "live" / "weather.json").read_text())
        assert data["meta"]["source"] == "open-meteo"
        assert "fetched_at" in data["meta"]
        assert data["meta"]["valid_until"] == valid.isoformat()
        assert data["data"] == {"temp": 20}

    def test_write_extra_params(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("config/policy.json"), {}, source="admin", version=3)
        data = json.loads((tmp_path / "config" / "policy.json").read_text())
        assert data["meta"]["version"] == 3

    def test_write_leaves_no_temp_file(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("config/policy.json"), {"a": 1}, source="admin")
        assert not (tmp_path / "config" / "policy.json.tmp").exists()

    def test_write_no_valid_until(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("config/output.json"), {}, source="test")
        data = json.loads((tmp_path / "config" / "output.json").read_text())
        assert "valid_until" not in data["meta"]

    def test_write_rejects_path_outside_base(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path / "store")
        with pytest.raises(ValueError, match="escapes"):
            store.write(Path("../outside.json"), {}, source="test")


class TestDataStoreRead:
    """Test reading data from the store."""

    def test_read_returns_data_payload(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("live/test.json"), {"key": "value"}, source="test")
        assert store.read(Path("live/test.json")) == {"key": "value"}

    def test_read_missing_file(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.read(Path("nonexistent.json")) is None

    def test_read_raw_returns_full_envelope(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("live/test.json"), {"key": "value"}, source="test")
        result = store.read_raw(Path("live/test.json"))
        assert result is not None
        assert result["meta"]["source"] == "test"
        assert result["data"] == {"key": "value"}

    def test_read_corrupt_file_raises(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "policy.json").write_text("{not json")
        with pytest.raises(json.JSONDecodeError):
            store.read(Path("config/policy.json"))


class TestDataStoreAppend:
    """Test the append-only JSON Lines logs."""

    def test_append_then_read_lines_in_order(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        log = Path("history/alerts.jsonl")
        store.append(log, {"n": 1})
        store.append(log, {"n": 2})
        assert store.read_lines(log) == [{"n": 1}, {"n": 2}]

    def test_read_lines_missing_log(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.read_lines(Path("history/none.jsonl")) == []

    def test_read_lines_skips_blank_lines(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        (tmp_path / "history").mkdir()
        (tmp_path / "history" / "log.jsonl").write_text('{"a": 1}\n\n{"a": 2}\n')
        assert store.read_lines(Path("history/log.jsonl")) == [{"a": 1}, {"a": 2}]

    def test_concurrent_appends_keep_every_line(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        log = Path("history/adjustments.jsonl")

        def worker(start: int) -> None:
            for i in range(start, start + 50):
                store.append(log, {"n": i})

        threads = [threading.Thread(target=worker, args=(k * 50,)) for k in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        numbers = sorted(r["n"] for r in store.read_lines(log))
        assert numbers == list(range(200))


class TestDataStoreDelete:
    """Test removing stored files."""

    def test_delete_existing(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("live/x.json"), {}, source="test")
        assert store.delete(Path("live/x.json")) is True
        assert store.read(Path("live/x.json")) is None

    def test_delete_missing(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.delete(Path("live/x.json")) is False


class TestDataStoreIsFresh:
    """Test freshness checking."""

    def test_missing_file_not_fresh(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.is_fresh(Path("nonexistent.json")) is False

    def test_expired_file_not_fresh(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        past = datetime.now(UTC) - timedelta(hours=1)
        store.write(Path("live/test.json"), {}, source="test", valid_until=past)
        assert store.is_fresh(Path("live/test.json")) is False

    def test_future_valid_until_is_fresh(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        future = datetime.now(UTC) + timedelta(hours=6)
        store.write(Path("live/test.json"), {}, source="test", valid_until=future)
        assert store.is_fresh(Path("live/test.json")) is True

    def test_explicit_now(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        valid = datetime(2026, 6, 1, 12, tzinfo=UTC)
        store.write(Path("live/test.json"), {}, source="test", valid_until=valid)
        assert store.is_fresh(Path("live/test.json"), now=valid - timedelta(minutes=1))
        assert not store.is_fresh(Path("live/test.json"), now=valid)

    def test_no_valid_until_not_fresh(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("config/test.json"), {}, source="test")
        assert store.is_fresh(Path("config/test.json")) is False
