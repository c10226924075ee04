"""
Weather aggregation: cache → provider → persisted fallback.

The aggregator returns the freshest usable reading for a site with as few
provider calls as possible. "No weather" is a normal answer (None), never an
exception: the capacity engine reads it as "no weather-driven reduction".

Lookup order for ``get_weather``:
  1. Cache hit → return immediately.
  2. Cache miss → resolve coordinates → provider → cache with TTL → return.
  3. Provider failure or no coordinates → last persisted reading (maybe stale).
  4. Nothing anywhere → None.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from eco_capacity.errors import ProviderError, UnknownSiteError
from eco_capacity.reference import coordinates as known

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from eco_capacity.datasources.weather.current import WeatherProvider
    from eco_capacity.ledger.base import SiteDirectory
    from eco_capacity.schemas import Coordinates, WeatherReading
    from eco_capacity.weather.cache import WeatherCache
    from eco_capacity.weather.readings import WeatherReadingStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY = 0.1  # seconds between batches


@dataclass
class CacheStats:
    """Running counters for cache effectiveness."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    total_requests: int = 0

    @property
    def hit_rate(self) -> float:
        """Hits as a percentage of all requests (0-100)."""
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests * 100

    def as_dict(self) -> dict[str, Any]:
        return {**asdict(self), "hit_rate": round(self.hit_rate, 2)}


class WeatherAggregator:
    """Orchestrates cache, provider and persisted readings for weather lookups."""

    def __init__(
        self,
        cache: WeatherCache,
        provider: WeatherProvider,
        readings: WeatherReadingStore,
        sites: SiteDirectory,
        *,
        cache_ttl_seconds: int = 600,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cache = cache
        self.provider = provider
        self.readings = readings
        self.sites = sites
        self.cache_ttl_seconds = cache_ttl_seconds
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._stats = CacheStats()
        self._stats_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def _count(self, field: str) -> None:
        with self._stats_lock:
            setattr(self._stats, field, getattr(self._stats, field) + 1)

    def stats(self) -> CacheStats:
        """Snapshot of the running counters."""
        with self._stats_lock:
            snapshot = CacheStats(**asdict(self._stats))
        logger.debug(
            "Cache stats: %.2f%% hit rate (%d/%d)",
            snapshot.hit_rate,
            snapshot.hits,
            snapshot.total_requests,
        )
        return snapshot

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = CacheStats()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_weather(self, site_id: str) -> WeatherReading | None:
        """Freshest usable reading for a site, or None if no source has data."""
        self._count("total_requests")

        cached = self._cache_get(site_id)
        if cached is not None:
            self._count("hits")
            logger.debug("Cache hit for %s", site_id)
            return cached

        self._count("misses")
        logger.debug("Cache miss for %s - checking provider", site_id)

        reading = self._fetch(site_id)
        if reading is not None:
            self._cache_set(site_id, reading)
            return reading

        return self.fallback(site_id)

    def get_weather_batch(self, site_ids: Iterable[str]) -> dict[str, WeatherReading | None]:
        """Look up many sites in bounded concurrent batches."""
        results = self._run_batched(self.get_weather, site_ids)
        found = sum(1 for r in results.values() if r is not None)
        logger.debug("Batch weather request completed: %d/%d with data", found, len(results))
        return results

    def refresh(self, site_id: str) -> WeatherReading | None:
        """Force a provider fetch, overwriting the cache. No fallback on failure."""
        self._cache_delete(site_id)
        reading = self._fetch(site_id)
        if reading is None:
            logger.warning("Failed to get fresh weather for %s", site_id)
            return None
        self._cache_set(site_id, reading)
        return reading

    def refresh_batch(self, site_ids: Iterable[str]) -> dict[str, WeatherReading | None]:
        """``refresh`` for many sites, batched like ``get_weather_batch``."""
        return self._run_batched(self.refresh, site_ids)

    def fallback(self, site_id: str) -> WeatherReading | None:
        """Last persisted reading, even if stale."""
        try:
            reading = self.readings.latest(site_id)
        except (OSError, ValueError):
            logger.exception("Persisted weather fallback failed for %s", site_id)
            return None
        if reading is None:
            logger.debug("No persisted fallback available for %s", site_id)
            return None
        if self.readings.is_stale(reading):
            logger.info("Using stale persisted weather for %s (%s)", site_id, reading.recorded_at)
        return reading

    def persist(self, reading: WeatherReading) -> bool:
        """Save a reading as the site's latest. Failures are logged, not raised."""
        try:
            self.readings.save(reading)
        except (OSError, TypeError, ValueError):
            logger.exception("Failed to persist weather for %s", reading.site_id)
            return False
        return True

    def is_stale(self, reading: WeatherReading) -> bool:
        return self.readings.is_stale(reading)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate_site(self, site_id: str) -> bool:
        logger.debug("Invalidating weather cache for %s", site_id)
        return self._cache_delete(site_id)

    def invalidate_region(self, region: str) -> int:
        """Drop cached readings for sites whose name or location contains ``region``."""
        needle = region.lower()
        count = 0
        for site in self.sites.list_sites():
            if needle in site.name.lower() or needle in site.location.lower():
                if self._cache_delete(site.id):
                    count += 1
        logger.debug("Invalidated weather cache for %d sites in %s", count, region)
        return count

    def invalidate_all(self) -> int:
        logger.debug("Invalidating all weather cache entries")
        return self.cache.clear()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _run_batched(
        self,
        fn: Callable[[str], WeatherReading | None],
        site_ids: Iterable[str],
    ) -> dict[str, WeatherReading | None]:
        ids = list(dict.fromkeys(site_ids))
        results: dict[str, WeatherReading | None] = {}
        if not ids:
            return results

        with ThreadPoolExecutor(max_workers=self.batch_size) as executor:
            for start in range(0, len(ids), self.batch_size):
                batch = ids[start : start + self.batch_size]
                for site_id, reading in zip(batch, executor.map(fn, batch), strict=True):
                    results[site_id] = reading
                if start + self.batch_size < len(ids) and self.batch_delay > 0:
                    self._sleep(self.batch_delay)
        return results

    def resolve_coordinates(self, site_id: str) -> tuple[Coordinates, str] | None:
        """Site's own coordinates, else the reference registry (by id, then name)."""
        try:
            site = self.sites.get_site(site_id)
        except UnknownSiteError:
            return known.lookup(site_id)
        if site.coordinates is not None:
            return site.coordinates, site.name
        return known.lookup(site_id, site.name)

    def _fetch(self, site_id: str) -> WeatherReading | None:
        resolved = self.resolve_coordinates(site_id)
        if resolved is None:
            logger.warning("No coordinates found for %s", site_id)
            return None

        coords, name = resolved
        try:
            return self.provider.fetch_current(site_id, coords.lat, coords.lon, name)
        except ProviderError as exc:
            self._count("errors")
            logger.warning("Weather provider failed for %s: %s", site_id, exc)
        except Exception:
            self._count("errors")
            logger.exception("Unexpected weather provider error for %s", site_id)
        return None

    def _cache_get(self, site_id: str) -> WeatherReading | None:
        try:
            return self.cache.get(site_id)
        except Exception:
            self._count("errors")
            logger.exception("Weather cache read failed for %s", site_id)
            return None

    def _cache_set(self, site_id: str, reading: WeatherReading) -> None:
        try:
            self.cache.set(site_id, reading, self.cache_ttl_seconds)
        except Exception:
            self._count("errors")
            logger.exception("Weather cache write failed for %s", site_id)

    def _cache_delete(self, site_id: str) -> bool:
        try:
            return self.cache.delete(site_id)
        except Exception:
            self._count("errors")
            logger.exception("Weather cache delete failed for %s", site_id)
            return False
