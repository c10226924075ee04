"""Append-only capacity adjustment log and alert sink.

Both write JSON Lines under ``history/`` in the DataStore and keep only the most
recent records in memory; the files are the full history. Write failures are
logged and swallowed: a capacity computation stays valid even if its audit
trail could not be stored.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from pathlib import Path
from typing import TYPE_CHECKING

from eco_capacity.schemas import AdjustmentLogEntry, CapacityAlert, CapacityFactors

if TYPE_CHECKING:
    from eco_capacity.store import DataStore

logger = logging.getLogger(__name__)

ADJUSTMENTS_PATH = Path("history/capacity_adjustments.jsonl")
ALERTS_PATH = Path("history/alerts.jsonl")

#: In-memory records kept per log.
DEFAULT_MAX_RECENT = 1000


class AdjustmentLog:
    """Change-detecting, append-only log of capacity adjustments."""

    def __init__(
        self, store: DataStore | None = None, max_recent: int = DEFAULT_MAX_RECENT
    ) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._entries: deque[AdjustmentLogEntry] = deque(maxlen=max_recent)
        self._last: dict[str, CapacityFactors] = {}
        if store is not None:
            self._replay(store)

    def _replay(self, store: DataStore) -> None:
        try:
            for record in store.iter_lines(ADJUSTMENTS_PATH):
                entry = AdjustmentLogEntry.model_validate(record)
                self._entries.append(entry)
                self._last[entry.site_id] = entry.factors
        except (OSError, ValueError):
            logger.exception("Could not replay capacity adjustment log")

    def last_factors(self, site_id: str) -> CapacityFactors | None:
        with self._lock:
            return self._last.get(site_id)

    def record_if_changed(self, entry: AdjustmentLogEntry, tolerance: float) -> bool:
        """
        Append ``entry`` if its factors moved beyond ``tolerance`` since the last
        entry for the same site.

        Returns:
            True if a new entry was stored.
        """
        with self._lock:
            previous = self._last.get(entry.site_id)
            if previous is not None and not entry.factors.differs_from(previous, tolerance):
                return False
            # Reserve the slot so a concurrent identical computation is a no-op.
            self._last[entry.site_id] = entry.factors

        if self.store is not None:
            try:
                self.store.append(ADJUSTMENTS_PATH, entry.model_dump(mode="json"))
            except (OSError, TypeError, ValueError):
                logger.exception("Failed to persist capacity adjustment for %s", entry.site_id)
                with self._lock:
                    if previous is None:
                        self._last.pop(entry.site_id, None)
                    else:
                        self._last[entry.site_id] = previous
                return False

        with self._lock:
            self._entries.append(entry)
        logger.info(
            "Capacity for %s adjusted to %d/%d (%s)",
            entry.site_id,
            entry.adjusted_capacity,
            entry.original_capacity,
            entry.reason,
        )
        return True

    def entries(self, site_id: str | None = None) -> list[AdjustmentLogEntry]:
        """Recent entries, oldest first, optionally for one site."""
        with self._lock:
            if site_id is None:
                return list(self._entries)
            return [e for e in self._entries if e.site_id == site_id]


class AlertSink:
    """Keeps recent alerts in memory and appends every alert to the alert log."""

    def __init__(
        self, store: DataStore | None = None, max_recent: int = DEFAULT_MAX_RECENT
    ) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._alerts: deque[CapacityAlert] = deque(maxlen=max_recent)

    def record(self, alert: CapacityAlert) -> bool:
        with self._lock:
            self._alerts.append(alert)
        if self.store is None:
            return True
        try:
            self.store.append(ALERTS_PATH, alert.model_dump(mode="json"))
        except (OSError, TypeError, ValueError):
            logger.exception("Failed to persist alert for %s", alert.site_id)
            return False
        return True

    def alerts(self, site_id: str | None = None) -> list[CapacityAlert]:
        with self._lock:
            if site_id is None:
                return list(self._alerts)
            return [a for a in self._alerts if a.site_id == site_id]
