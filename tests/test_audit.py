"""Tests for the capacity adjustment log and alert sink."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from eco_capacity.policy import AdjustmentLog, AlertSink
from eco_capacity.policy.audit import ADJUSTMENTS_PATH, ALERTS_PATH
from eco_capacity.policy.engine import CHANGE_TOLERANCE
from eco_capacity.schemas import AdjustmentLogEntry, AlertLevel, CapacityAlert, CapacityFactors

if TYPE_CHECKING:
    from eco_capacity.store import DataStore


def _entry(site_id: str = "manali", **factors: float) -> AdjustmentLogEntry:
    values = CapacityFactors(**factors)
    return AdjustmentLogEntry(
        site_id=site_id,
        original_capacity=100,
        adjusted_capacity=int(100 * values.combined),
        factors=values,
        reason="test",
    )


class TestAdjustmentLog:
    """Test change detection and persistence."""

    def test_first_entry_recorded(self) -> None:
        log = AdjustmentLog()
        assert log.record_if_changed(_entry(weather=0.8), CHANGE_TOLERANCE) is True
        assert len(log.entries()) == 1

    def test_identical_factors_not_repeated(self) -> None:
        log = AdjustmentLog()
        log.record_if_changed(_entry(weather=0.8), CHANGE_TOLERANCE)
        assert log.record_if_changed(_entry(weather=0.8), CHANGE_TOLERANCE) is False
        assert len(log.entries()) == 1

    def test_change_within_tolerance_ignored(self) -> None:
        log = AdjustmentLog()
        log.record_if_changed(_entry(weather=0.8), CHANGE_TOLERANCE)
        assert log.record_if_changed(_entry(weather=0.8005), CHANGE_TOLERANCE) is False

    def test_change_beyond_tolerance_recorded(self) -> None:
        log = AdjustmentLog()
        log.record_if_changed(_entry(weather=0.8), CHANGE_TOLERANCE)
        assert log.record_if_changed(_entry(weather=0.85), CHANGE_TOLERANCE) is True

    def test_component_swap_with_same_product_recorded(self) -> None:
        log = AdjustmentLog()
        log.record_if_changed(_entry(weather=0.8, season=1.0), CHANGE_TOLERANCE)
        assert log.record_if_changed(_entry(weather=1.0, season=0.8), CHANGE_TOLERANCE) is True

    def test_sites_tracked_separately(self) -> None:
        log = AdjustmentLog()
        log.record_if_changed(_entry("manali", weather=0.8), CHANGE_TOLERANCE)
        assert log.record_if_changed(_entry("shimla", weather=0.8), CHANGE_TOLERANCE) is True
        assert [e.site_id for e in log.entries("shimla")] == ["shimla"]
        assert log.last_factors("manali").weather == 0.8

    def test_persisted_and_replayed(self, store: DataStore) -> None:
        log = AdjustmentLog(store)
        log.record_if_changed(_entry(weather=0.8), CHANGE_TOLERANCE)
        assert len(store.read_lines(ADJUSTMENTS_PATH)) == 1

        replayed = AdjustmentLog(store)
        assert len(replayed.entries()) == 1
        # Replay restores change detection too.
        assert replayed.record_if_changed(_entry(weather=0.8), CHANGE_TOLERANCE) is False

    def test_write_failure_releases_slot(
        self, store: DataStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        log = AdjustmentLog(store)

        def fail(*args: object, **kwargs: object) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(store, "append", fail)
        assert log.record_if_changed(_entry(weather=0.8), CHANGE_TOLERANCE) is False
        assert log.last_factors("manali") is None
        assert log.entries() == []

    def test_memory_keeps_only_recent_entries(self) -> None:
        log = AdjustmentLog(max_recent=3)
        for i in range(6):
            log.record_if_changed(_entry(weather=0.5 + i * 0.05), CHANGE_TOLERANCE)

        assert [e.factors.weather for e in log.entries()] == pytest.approx([0.65, 0.7, 0.75])
        assert log.last_factors("manali").weather == pytest.approx(0.75)

    def test_replay_keeps_full_file_but_recent_memory(self, store: DataStore) -> None:
        log = AdjustmentLog(store)
        for i in range(5):
            log.record_if_changed(_entry(weather=0.5 + i * 0.1), CHANGE_TOLERANCE)

        replayed = AdjustmentLog(store, max_recent=2)

        assert len(store.read_lines(ADJUSTMENTS_PATH)) == 5
        assert len(replayed.entries()) == 2
        assert replayed.last_factors("manali").weather == pytest.approx(0.9)


class TestAlertSink:
    """Test alert recording."""

    def _alert(self, site_id: str = "manali") -> CapacityAlert:
        return CapacityAlert(
            site_id=site_id, severity=AlertLevel.HIGH, title="Capacity reduced", message="m"
        )

    def test_in_memory(self) -> None:
        sink = AlertSink()
        assert sink.record(self._alert()) is True
        assert len(sink.alerts()) == 1

    def test_persisted(self, store: DataStore) -> None:
        sink = AlertSink(store)
        sink.record(self._alert("manali"))
        sink.record(self._alert("shimla"))

        assert len(store.read_lines(ALERTS_PATH)) == 2
        assert [a.site_id for a in sink.alerts("shimla")] == ["shimla"]

    def test_write_failure_keeps_alert_in_memory(
        self, store: DataStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        sink = AlertSink(store)

        def fail(*args: object, **kwargs: object) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(store, "append", fail)
        assert sink.record(self._alert()) is False
        assert len(sink.alerts()) == 1

    def test_memory_keeps_only_recent_alerts(self, store: DataStore) -> None:
        sink = AlertSink(store, max_recent=2)
        for site_id in ["manali", "shimla", "rohtang"]:
            sink.record(self._alert(site_id))

        assert [a.site_id for a in sink.alerts()] == ["shimla", "rohtang"]
        assert len(store.read_lines(ALERTS_PATH)) == 3
