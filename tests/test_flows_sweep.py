"""
Tests for the weather-sweep flow module.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import Mock

from eco_capacity.flows import sweep
from eco_capacity.monitor import SweepReport
from eco_capacity.services import container
from eco_capacity.store import DataStore
from factories import FakeProvider, make_reading, make_site

if TYPE_CHECKING:
    import pytest

    from eco_capacity.config import Settings


def _seed_catalog(data_dir: Path) -> None:
    DataStore(data_dir).write(
        container.SITES_PATH,
        [
            make_site("manali").model_dump(mode="json"),
            make_site("shimla", max_capacity=60).model_dump(mode="json"),
        ],
        source="admin",
    )


class TestRunSweep:
    """Test the sweep task."""

    def test_returns_monitor_report(self) -> None:
        monitor = Mock()
        monitor.check_weather_now.return_value = SweepReport(checked=4)

        report = sweep.run_sweep(monitor)

        assert report.checked == 4
        monitor.check_weather_now.assert_called_once()

    def test_skipped_sweep(self) -> None:
        monitor = Mock()
        monitor.check_weather_now.return_value = None
        assert sweep.run_sweep(monitor) is None


class TestSaveReport:
    """Test persisting the sweep report."""

    def test_writes_envelope(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        report = SweepReport(
            started_at=datetime(2026, 7, 1, 6, 0, tzinfo=UTC),
            finished_at=datetime(2026, 7, 1, 6, 1, tzinfo=UTC),
            checked=2,
            updated=2,
        )

        path = sweep.save_report(store, report, 6.0)

        assert path == tmp_path / sweep.REPORT_PATH
        raw = store.read_raw(sweep.REPORT_PATH)
        assert raw["meta"]["source"] == "weather-monitor"
        assert "valid_until" in raw["meta"]
        assert raw["data"]["checked"] == 2
        assert raw["data"]["finished_at"] == "2026-07-01T06:01:00+00:00"
        assert store.is_fresh(sweep.REPORT_PATH)


class TestWeatherSweepFlow:
    """Test the full flow against a scripted provider."""

    def test_weather_sweep(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _seed_catalog(tmp_path)
        provider = FakeProvider(
            {
                "manali": make_reading("manali", temperature=20.0),
                "shimla": make_reading("shimla", temperature=44.0),
            }
        )

        def build(settings: Settings) -> container.Services:
            return container.build_services(settings, provider=provider)

        monkeypatch.setattr(sweep, "build_services", build)

        result = sweep.weather_sweep(data_dir=str(tmp_path))

        assert result["checked"] == 2
        assert result["updated"] == 2
        assert result["alerts"] == 1
        assert result["failures"] == 0

        store = DataStore(tmp_path)
        assert store.read(sweep.REPORT_PATH)["checked"] == 2
        assert store.read(Path("live/weather/shimla.json"))["alert_level"] == "high"

    def test_skipped_when_busy(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        services = Mock()
        services.monitor.check_weather_now.return_value = None
        monkeypatch.setattr(sweep, "build_services", lambda settings: services)

        assert sweep.weather_sweep(data_dir=str(tmp_path)) == {"skipped": True}
        assert not (tmp_path / sweep.REPORT_PATH).exists()
