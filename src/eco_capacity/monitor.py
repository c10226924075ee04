"""
Periodic weather sweep.

Every interval (6 hours by default) the monitor refreshes weather for all
sites that can be located, then for each site:

    persist reading -> invalidate cache -> recompute capacity -> broadcast

A failing site is logged and counted; it never stops the sweep. Only one
sweep runs at a time: a call that arrives while another is in progress is
skipped and returns None.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from eco_capacity.schemas import AlertLevel, BroadcastMessage, MessageType, utcnow
from eco_capacity.weather.alerts import derive_alert

if TYPE_CHECKING:
    from eco_capacity.broadcast import Broadcaster
    from eco_capacity.ledger.base import SiteDirectory
    from eco_capacity.policy.engine import CapacityPolicyEngine
    from eco_capacity.schemas import Site, WeatherReading
    from eco_capacity.weather.aggregator import WeatherAggregator

logger = logging.getLogger(__name__)

JOB_ID = "weather-sweep"


@dataclass
class SweepReport:
    """Counts from one weather sweep."""

    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    checked: int = 0
    updated: int = 0
    alerts: int = 0
    failures: int = 0
    skipped_no_coordinates: int = 0

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


class WeatherMonitor:
    """Runs weather sweeps on demand and on an APScheduler interval."""

    def __init__(
        self,
        sites: SiteDirectory,
        aggregator: WeatherAggregator,
        engine: CapacityPolicyEngine,
        broadcaster: Broadcaster | None = None,
        interval_hours: float = 6.0,
    ) -> None:
        self.sites = sites
        self.aggregator = aggregator
        self.engine = engine
        self.broadcaster = broadcaster
        self.interval_hours = interval_hours
        self._scheduler: BackgroundScheduler | None = None
        self._busy = False
        self._busy_lock = threading.Lock()
        self.last_report: SweepReport | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def is_busy(self) -> bool:
        with self._busy_lock:
            return self._busy

    def start(self, run_now: bool = True) -> None:
        """Schedule recurring sweeps and (by default) run one immediately."""
        if self.is_running:
            logger.warning("Weather monitor already running")
            return

        scheduler = BackgroundScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 300},
        )
        scheduler.add_job(
            func=self.check_weather_now,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id=JOB_ID,
            name="Weather sweep",
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Weather monitor started (every %s hours)", self.interval_hours)

        if run_now:
            self.check_weather_now()

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Weather monitor stopped")

    def check_weather_now(self) -> SweepReport | None:
        """Run one sweep. Returns None if a sweep is already in progress."""
        with self._busy_lock:
            if self._busy:
                logger.info("Weather sweep already in progress, skipping")
                return None
            self._busy = True
        try:
            report = self._sweep()
        finally:
            with self._busy_lock:
                self._busy = False
        self.last_report = report
        return report

    def _sweep(self) -> SweepReport:
        report = SweepReport()
        sites = self.sites.list_sites()
        logger.info("Starting weather sweep for %d sites", len(sites))

        targets = []
        for site in sites:
            if self.aggregator.resolve_coordinates(site.id) is None:
                report.skipped_no_coordinates += 1
                logger.debug("Skipping %s: no coordinates", site.id)
            else:
                targets.append(site)

        readings = self.aggregator.refresh_batch(site.id for site in targets)

        for site in targets:
            report.checked += 1
            reading = readings.get(site.id)
            if reading is None:
                report.failures += 1
                continue
            try:
                if self._apply(site, reading):
                    report.alerts += 1
                report.updated += 1
            except Exception:
                report.failures += 1
                logger.exception("Weather update failed for %s", site.id)

        report.finished_at = utcnow()
        logger.info(
            "Weather sweep done: %d checked, %d updated, %d alerts, %d failures, %d skipped",
            report.checked,
            report.updated,
            report.alerts,
            report.failures,
            report.skipped_no_coordinates,
        )
        return report

    def _apply(self, site: Site, reading: WeatherReading) -> bool:
        """Process one fresh reading. Returns True if it carries an alert."""
        reading = derive_alert(reading)
        self.aggregator.persist(reading)
        self.aggregator.invalidate_site(site.id)
        capacity = self.engine.get_dynamic_capacity(site, weather=reading)

        if self.broadcaster is not None:
            self.broadcaster.publish(
                BroadcastMessage(
                    type=MessageType.WEATHER_UPDATE,
                    destination_id=site.id,
                    weather=reading,
                    capacity=capacity,
                )
            )

        if reading.alert_level is AlertLevel.NONE:
            return False
        logger.warning(
            "Weather alert for %s: %s (%s)", site.id, reading.alert_level, reading.alert_reason
        )
        if self.broadcaster is not None:
            self.broadcaster.publish(
                BroadcastMessage(type=MessageType.ALERT, destination_id=site.id, weather=reading)
            )
        return True
