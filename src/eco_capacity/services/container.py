"""
Wiring for long-lived services.

``build_services`` constructs every component once from ``Settings`` and
returns them together. Redis and a SQL database are used when their URLs are
configured; otherwise in-process equivalents are used.

Sites come from the ledger. A ``config/sites.json`` catalog in the data
directory (a store envelope whose ``data`` is a list of site objects) is
loaded into it at start-up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import redis
from pydantic import ValidationError

from eco_capacity.broadcast import Broadcaster, LocalBroadcaster, RedisBroadcaster
from eco_capacity.config import Settings, get_settings
from eco_capacity.datasources.weather import OpenMeteoProvider, WeatherProvider
from eco_capacity.indicators import IndicatorStore
from eco_capacity.ledger import AdmissionController, MemoryLedger, OccupancyLedger, SqlLedger
from eco_capacity.monitor import WeatherMonitor
from eco_capacity.policy import AdjustmentLog, AlertSink, CapacityPolicyEngine, PolicyConfigService
from eco_capacity.schemas import Site
from eco_capacity.store import DataStore
from eco_capacity.weather import (
    MemoryWeatherCache,
    RedisWeatherCache,
    WeatherAggregator,
    WeatherCache,
    WeatherReadingStore,
)

logger = logging.getLogger(__name__)

SITES_PATH = Path("config/sites.json")


@dataclass
class Services:
    settings: Settings
    store: DataStore
    config: PolicyConfigService
    ledger: OccupancyLedger
    cache: WeatherCache
    provider: WeatherProvider
    readings: WeatherReadingStore
    aggregator: WeatherAggregator
    indicators: IndicatorStore
    audit: AdjustmentLog
    alerts: AlertSink
    broadcaster: Broadcaster
    engine: CapacityPolicyEngine
    admission: AdmissionController
    monitor: WeatherMonitor


def load_site_catalog(store: DataStore) -> list[Site]:
    """Sites listed in ``config/sites.json``. Invalid entries are skipped."""
    data = store.read(SITES_PATH)
    if not data:
        return []
    sites = []
    for raw in data:
        try:
            sites.append(Site.model_validate(raw))
        except ValidationError as exc:
            logger.error("Skipping invalid site in catalog: %s", exc)
    return sites


def build_services(
    settings: Settings | None = None,
    *,
    provider: WeatherProvider | None = None,
    ledger: OccupancyLedger | None = None,
    cache: WeatherCache | None = None,
    broadcaster: Broadcaster | None = None,
) -> Services:
    """Build and wire all services. Explicit arguments replace the defaults."""
    settings = settings or get_settings()
    store = DataStore(settings.data_dir)

    config = PolicyConfigService(store)
    config.load()

    if ledger is None:
        if settings.database_url:
            ledger = SqlLedger.from_url(settings.database_url, echo=settings.debug)
        else:
            ledger = MemoryLedger()
    for site in load_site_catalog(store):
        ledger.add_site(site)

    redis_client = None
    if settings.redis_url:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
    if cache is None:
        if redis_client is not None:
            cache = RedisWeatherCache(redis_client, ttl_seconds=settings.weather_cache_ttl_seconds)
        else:
            cache = MemoryWeatherCache(ttl_seconds=settings.weather_cache_ttl_seconds)
    if broadcaster is None:
        if redis_client is not None:
            broadcaster = RedisBroadcaster(redis_client, settings.broadcast_channel)
        else:
            broadcaster = LocalBroadcaster()

    provider = provider or OpenMeteoProvider(
        settings.weather_api_url, timeout=settings.provider_timeout
    )
    readings = WeatherReadingStore(
        store, freshness=timedelta(hours=settings.weather_freshness_hours)
    )
    aggregator = WeatherAggregator(
        cache,
        provider,
        readings,
        ledger,
        cache_ttl_seconds=settings.weather_cache_ttl_seconds,
        batch_size=settings.batch_size,
        batch_delay=settings.batch_delay_seconds,
    )
    indicators = IndicatorStore(store, ttl_seconds=settings.weather_cache_ttl_seconds)
    audit = AdjustmentLog(store)
    alerts = AlertSink(store)
    engine = CapacityPolicyEngine(
        config,
        weather=aggregator,
        indicators=indicators,
        audit=audit,
        alerts=alerts,
        broadcaster=broadcaster,
    )
    admission = AdmissionController(ledger, engine, broadcaster)
    monitor = WeatherMonitor(
        ledger,
        aggregator,
        engine,
        broadcaster,
        interval_hours=settings.monitor_interval_hours,
    )

    logger.debug(
        "Services built (ledger=%s, cache=%s, broadcaster=%s)",
        type(ledger).__name__,
        type(cache).__name__,
        type(broadcaster).__name__,
    )
    return Services(
        settings=settings,
        store=store,
        config=config,
        ledger=ledger,
        cache=cache,
        provider=provider,
        readings=readings,
        aggregator=aggregator,
        indicators=indicators,
        audit=audit,
        alerts=alerts,
        broadcaster=broadcaster,
        engine=engine,
        admission=admission,
        monitor=monitor,
    )
