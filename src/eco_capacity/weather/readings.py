"""Persisted weather readings: the last-resort fallback behind the cache."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from eco_capacity.schemas import WeatherReading

if TYPE_CHECKING:
    from eco_capacity.store import DataStore


FRESHNESS_WINDOW = timedelta(hours=6)


class WeatherReadingStore:
    """Latest reading per site (``live/weather/``) plus an append-only history."""

    def __init__(self, store: DataStore, freshness: timedelta = FRESHNESS_WINDOW) -> None:
        self.store = store
        self.freshness = freshness

    @staticmethod
    def _latest_path(site_id: str) -> Path:
        return Path("live") / "weather" / f"{site_id}.json"

    @staticmethod
    def _history_path(site_id: str) -> Path:
        return Path("history") / "weather" / f"{site_id}.jsonl"

    def save(self, reading: WeatherReading) -> Path:
        """Persist ``reading`` as the site's latest and append it to history."""
        payload = reading.model_dump(mode="json")
        self.store.append(self._history_path(reading.site_id), payload)
        return self.store.write(
            self._latest_path(reading.site_id),
            payload,
            source="weather-monitor",
            valid_until=reading.recorded_at + self.freshness,
            site_id=reading.site_id,
        )

    def latest(self, site_id: str) -> WeatherReading | None:
        """Last persisted reading for the site, fresh or stale."""
        data = self.store.read(self._latest_path(site_id))
        if data is None:
            return None
        return WeatherReading.model_validate(data)

    def history(self, site_id: str) -> list[WeatherReading]:
        return [
            WeatherReading.model_validate(r)
            for r in self.store.read_lines(self._history_path(site_id))
        ]

    def is_stale(self, reading: WeatherReading, now: datetime | None = None) -> bool:
        """Older than the freshness window (6 hours by default)."""
        now = now or datetime.now(UTC)
        return now - reading.recorded_at > self.freshness
