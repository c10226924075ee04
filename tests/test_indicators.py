"""Tests for ecological indicator snapshots."""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest
from pydantic import ValidationError

from eco_capacity.indicators import IndicatorStore
from eco_capacity.schemas import EcologicalIndicators

if TYPE_CHECKING:
    from pathlib import Path

    from eco_capacity.store import DataStore


def _snapshot(
    site_id: str = "manali", level: float = 50.0, **kwargs: object
) -> EcologicalIndicators:
    return EcologicalIndicators(
        site_id=site_id,
        soil_compaction=level,
        vegetation_disturbance=level,
        wildlife_disturbance=level,
        water_source_impact=level,
        **kwargs,
    )


class TestStrain:
    """Test the normalized strain score."""

    def test_zero(self) -> None:
        assert EcologicalIndicators(site_id="manali").strain == 0.0

    def test_full(self) -> None:
        assert _snapshot(level=100.0).strain == 1.0

    def test_mixed(self) -> None:
        indicators = EcologicalIndicators(
            site_id="manali", soil_compaction=80, vegetation_disturbance=40
        )
        assert indicators.strain == pytest.approx(0.3)

    def test_scores_bounded(self) -> None:
        with pytest.raises(ValidationError):
            EcologicalIndicators(site_id="manali", soil_compaction=120)


class TestIndicatorStore:
    """Test recording and reading snapshots."""

    def test_never_measured(self, store: DataStore) -> None:
        assert IndicatorStore(store).latest("manali") is None

    def test_record_then_latest(self, store: DataStore) -> None:
        indicators = IndicatorStore(store)
        indicators.record(_snapshot(level=60.0))
        assert indicators.latest("manali").soil_compaction == 60.0

    def test_latest_survives_restart(self, store: DataStore) -> None:
        IndicatorStore(store).record(_snapshot(level=70.0))
        assert IndicatorStore(store).latest("manali").strain == pytest.approx(0.7)

    def test_older_snapshot_kept_in_history_only(self, store: DataStore) -> None:
        indicators = IndicatorStore(store)
        now = datetime.now(UTC)
        indicators.record(_snapshot(level=60.0, recorded_at=now))
        indicators.record(_snapshot(level=10.0, recorded_at=now - timedelta(days=1)))

        assert indicators.latest("manali").soil_compaction == 60.0
        assert len(indicators.history("manali")) == 2

    def test_cache_expires(self, store: DataStore) -> None:
        clock = [0.0]
        indicators = IndicatorStore(store, ttl_seconds=60, clock=lambda: clock[0])
        indicators.record(_snapshot(level=20.0))

        # A second writer updates the file behind the cache.
        IndicatorStore(store).record(_snapshot(level=90.0))
        assert indicators.latest("manali").soil_compaction == 20.0

        clock[0] += 61
        assert indicators.latest("manali").soil_compaction == 90.0

    def test_invalidate(self, store: DataStore) -> None:
        indicators = IndicatorStore(store)
        indicators.record(_snapshot(level=20.0))
        IndicatorStore(store).record(_snapshot(level=90.0))

        indicators.invalidate("manali")
        assert indicators.latest("manali").soil_compaction == 90.0

    def test_corrupt_snapshot_returns_none(self, store: DataStore) -> None:
        path = store.live / "indicators" / "manali.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{broken")
        assert IndicatorStore(store).latest("manali") is None

    def test_latest_batch(self, store: DataStore) -> None:
        indicators = IndicatorStore(store)
        indicators.record(_snapshot("manali", level=30.0))

        batch = indicators.latest_batch(["manali", "shimla", "manali"])

        assert list(batch) == ["manali", "shimla"]
        assert batch["manali"] is not None
        assert batch["shimla"] is None

    def test_concurrent_records_keep_newest(
        self, store: DataStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        indicators = IndicatorStore(store)
        now = datetime.now(UTC)
        older = _snapshot(level=10.0, recorded_at=now - timedelta(hours=1))
        newer = _snapshot(level=60.0, recorded_at=now)
        older_appending = threading.Event()
        original_append = store.append

        def slow_append(path: Path, record: dict[str, Any]) -> Path:
            # Stall the older snapshot between its freshness check and its write.
            if record["soil_compaction"] == 10.0:
                older_appending.set()
                time.sleep(0.3)
            return original_append(path, record)

        monkeypatch.setattr(store, "append", slow_append)

        first = threading.Thread(target=indicators.record, args=(older,))
        first.start()
        assert older_appending.wait(timeout=5)
        second = threading.Thread(target=indicators.record, args=(newer,))
        second.start()
        first.join(timeout=5)
        second.join(timeout=5)

        indicators.invalidate()
        assert indicators.latest("manali").soil_compaction == 60.0
        assert len(indicators.history("manali")) == 2
