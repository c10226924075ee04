"""Ecological indicator snapshots: measured strain per site, latest wins."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from eco_capacity.schemas import EcologicalIndicators

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from eco_capacity.store import DataStore

logger = logging.getLogger(__name__)


class IndicatorStore:
    """Read-mostly store of indicator snapshots with a short in-process cache."""

    def __init__(
        self,
        store: DataStore,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, EcologicalIndicators]] = {}
        self._lock = threading.Lock()
        # Held across the compare and the write in record().
        self._write_lock = threading.Lock()

    @staticmethod
    def _latest_path(site_id: str) -> Path:
        return Path("live") / "indicators" / f"{site_id}.json"

    @staticmethod
    def _history_path(site_id: str) -> Path:
        return Path("history") / "indicators" / f"{site_id}.jsonl"

    def record(self, indicators: EcologicalIndicators) -> None:
        """Persist a snapshot. It replaces the previous one if it is not older."""
        payload = indicators.model_dump(mode="json")
        with self._write_lock:
            current = self.latest(indicators.site_id)
            self.store.append(self._history_path(indicators.site_id), payload)
            if current is not None and current.recorded_at > indicators.recorded_at:
                logger.debug(
                    "Ignoring out-of-order indicator snapshot for %s", indicators.site_id
                )
                return
            self.store.write(
                self._latest_path(indicators.site_id),
                payload,
                source="field-survey",
                site_id=indicators.site_id,
            )
            with self._lock:
                self._cache[indicators.site_id] = (self._clock() + self.ttl_seconds, indicators)

    def latest(self, site_id: str) -> EcologicalIndicators | None:
        """Most recent snapshot for a site, or None if never measured."""
        with self._lock:
            entry = self._cache.get(site_id)
            if entry is not None and self._clock() < entry[0]:
                return entry[1]

        try:
            data = self.store.read(self._latest_path(site_id))
        except (OSError, ValueError):
            logger.exception("Unreadable indicator snapshot for %s", site_id)
            return None
        if data is None:
            return None

        indicators = EcologicalIndicators.model_validate(data)
        with self._lock:
            self._cache[site_id] = (self._clock() + self.ttl_seconds, indicators)
        return indicators

    def latest_batch(self, site_ids: Iterable[str]) -> dict[str, EcologicalIndicators | None]:
        """Latest snapshot for each site in one pass."""
        return {site_id: self.latest(site_id) for site_id in dict.fromkeys(site_ids)}

    def history(self, site_id: str) -> list[EcologicalIndicators]:
        return [
            EcologicalIndicators.model_validate(r)
            for r in self.store.read_lines(self._history_path(site_id))
        ]

    def invalidate(self, site_id: str | None = None) -> None:
        with self._lock:
            if site_id is None:
                self._cache.clear()
            else:
                self._cache.pop(site_id, None)
