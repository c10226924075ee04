"""
Time-bounded per-site weather cache.

Two backends share the ``WeatherCache`` protocol:

- ``MemoryWeatherCache`` - bounded, LRU eviction, TTL, lock-guarded. Used when
  no Redis URL is configured and in tests.
- ``RedisWeatherCache`` - ``SETEX`` keys under a prefix, JSON values, so several
  processes share one cache.

Reads are eventually consistent: a stale or missing entry only ever makes the
aggregator go to the provider or the persisted fallback.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import TYPE_CHECKING, Protocol

from eco_capacity.schemas import WeatherReading

if TYPE_CHECKING:
    from collections.abc import Callable

    import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600  # 10 minutes


class WeatherCache(Protocol):
    """Key → WeatherReading store with TTL."""

    def get(self, key: str) -> WeatherReading | None: ...

    def set(self, key: str, reading: WeatherReading, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> bool: ...

    def clear(self) -> int: ...

    def keys(self) -> list[str]: ...


class MemoryWeatherCache:
    """In-process bounded cache with LRU eviction and per-entry expiry."""

    def __init__(
        self,
        maxsize: int = 500,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, WeatherReading]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> WeatherReading | None:
        """Return the cached reading, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, reading = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return reading

    def set(self, key: str, reading: WeatherReading, ttl_seconds: int | None = None) -> None:
        """Store a reading, evicting the least recently used entry when full."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = (self._clock() + ttl, reading)
            while len(self._entries) > self.maxsize:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("LRU eviction: removed %s", evicted)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)


class RedisWeatherCache:
    """Redis-backed cache: one ``SETEX`` key per site."""

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        prefix: str = "weather:",
    ) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs: object) -> RedisWeatherCache:
        """Connect with ``decode_responses`` so values come back as str."""
        import redis as redis_lib

        client = redis_lib.from_url(url, decode_responses=True)
        return cls(client, **kwargs)  # type: ignore[arg-type]

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> WeatherReading | None:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        try:
            return WeatherReading.model_validate_json(raw)
        except ValueError:
            logger.warning("Discarding unreadable cache entry %s", key)
            self.client.delete(self._key(key))
            return None

    def set(self, key: str, reading: WeatherReading, ttl_seconds: int | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self.client.setex(self._key(key), ttl, reading.model_dump_json())

    def delete(self, key: str) -> bool:
        return bool(self.client.delete(self._key(key)))

    def clear(self) -> int:
        keys = list(self.client.scan_iter(match=f"{self.prefix}*"))
        if not keys:
            return 0
        return int(self.client.delete(*keys))

    def keys(self) -> list[str]:
        return [k[len(self.prefix) :] for k in self.client.scan_iter(match=f"{self.prefix}*")]
