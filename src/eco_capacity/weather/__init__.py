"""Weather cache, persisted readings, alert rules and the aggregator.

Public API:
  - cache: WeatherCache protocol, MemoryWeatherCache, RedisWeatherCache
  - readings: WeatherReadingStore (persisted fallback, 6h freshness window)
  - alerts: check_alert, derive_alert
  - aggregator: WeatherAggregator, CacheStats
"""

from eco_capacity.weather.aggregator import CacheStats, WeatherAggregator
from eco_capacity.weather.alerts import check_alert, derive_alert
from eco_capacity.weather.cache import MemoryWeatherCache, RedisWeatherCache, WeatherCache
from eco_capacity.weather.readings import WeatherReadingStore

__all__ = [
    "CacheStats",
    "MemoryWeatherCache",
    "RedisWeatherCache",
    "WeatherAggregator",
    "WeatherCache",
    "WeatherReadingStore",
    "check_alert",
    "derive_alert",
]
