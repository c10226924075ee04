"""
Prefect flow wrapping the weather sweep.

Run once locally:
    python -m eco_capacity.flows.sweep

Serve on the configured interval (a Prefect deployment):
    python -m eco_capacity.flows.sweep --serve
"""

from __future__ import annotations

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from prefect import flow, task
from prefect.cache_policies import NO_CACHE

from eco_capacity.config import get_settings
from eco_capacity.monitor import SweepReport, WeatherMonitor
from eco_capacity.services.container import build_services
from eco_capacity.store import DataStore

REPORT_PATH = Path("live/sweep_report.json")


@task(name="run-weather-sweep", cache_policy=NO_CACHE)
def run_sweep(monitor: WeatherMonitor) -> SweepReport | None:
    """Refresh weather for every site and recompute capacities."""
    return monitor.check_weather_now()


@task(name="save-sweep-report", cache_policy=NO_CACHE)
def save_report(store: DataStore, report: SweepReport, interval_hours: float) -> Path:
    """Save the sweep summary via store, valid until the next scheduled sweep."""
    return store.write(
        REPORT_PATH,
        report.as_dict(),
        source="weather-monitor",
        valid_until=datetime.now(UTC) + timedelta(hours=interval_hours),
    )


@flow(name="weather-sweep", log_prints=True)
def weather_sweep(data_dir: str | None = None) -> dict[str, Any]:
    """Run one weather sweep over all sites and store its report."""
    settings = get_settings()
    if data_dir is not None:
        settings = settings.model_copy(update={"data_dir": Path(data_dir)})
    services = build_services(settings)

    report = run_sweep(services.monitor)
    if report is None:
        print("Another weather sweep is in progress, skipping.")
        return {"skipped": True}

    path = save_report(services.store, report, settings.monitor_interval_hours)
    print(
        f"Checked {report.checked} sites: {report.updated} updated, "
        f"{report.alerts} alerts, {report.failures} failures. Report saved to {path}"
    )
    return report.as_dict()


def serve() -> None:
    """Serve the flow as a deployment on the configured interval."""
    settings = get_settings()
    weather_sweep.serve(
        name="weather-sweep",
        interval=timedelta(hours=settings.monitor_interval_hours),
    )


if __name__ == "__main__":
    if "--serve" in sys.argv[1:]:
        serve()
    else:
        result = weather_sweep()
        print(f"Flow complete: {result}")
