"""Tests for the weather aggregator (cache → provider → persisted fallback)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from unittest.mock import Mock

import pytest

from eco_capacity.ledger import MemoryLedger
from eco_capacity.schemas import Coordinates
from eco_capacity.weather import MemoryWeatherCache, WeatherAggregator, WeatherReadingStore
from factories import FakeProvider, make_reading, make_site

if TYPE_CHECKING:
    from eco_capacity.store import DataStore


@pytest.fixture
def ledger() -> MemoryLedger:
    return MemoryLedger(
        [
            make_site("manali", location="Kullu, Himachal Pradesh"),
            make_site("shimla", location="Himachal Pradesh"),
            make_site("gulmarg", location="Baramulla, Kashmir"),
            make_site(
                "trail-7",
                name="Hidden Trail",
                coordinates=Coordinates(lat=30.0, lon=78.0),
            ),
            make_site("nowhere-camp", name="Nowhere Camp"),
        ]
    )


@pytest.fixture
def aggregator(store: DataStore, provider: FakeProvider, ledger: MemoryLedger) -> WeatherAggregator:
    return WeatherAggregator(
        MemoryWeatherCache(),
        provider,
        WeatherReadingStore(store),
        ledger,
        sleep=lambda _: None,
    )


class TestGetWeather:
    """Test the lookup order."""

    def test_provider_then_cache(
        self, aggregator: WeatherAggregator, provider: FakeProvider
    ) -> None:
        provider.readings["manali"] = make_reading("manali", temperature=9.0)

        first = aggregator.get_weather("manali")
        second = aggregator.get_weather("manali")

        assert first is not None and first.temperature == 9.0
        assert second == first
        assert provider.calls == ["manali"]

        stats = aggregator.stats()
        assert stats.total_requests == 2
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.hit_rate == 50.0

    def test_provider_failure_falls_back_to_persisted(
        self, aggregator: WeatherAggregator, provider: FakeProvider
    ) -> None:
        stale = make_reading("manali", recorded_at=datetime.now(UTC) - timedelta(hours=12))
        aggregator.persist(stale)
        provider.failing.add("manali")

        reading = aggregator.get_weather("manali")

        assert reading == stale
        assert aggregator.is_stale(reading)
        assert aggregator.stats().errors == 1

    def test_nothing_anywhere_returns_none(
        self, aggregator: WeatherAggregator, provider: FakeProvider
    ) -> None:
        provider.failing.add("manali")
        assert aggregator.get_weather("manali") is None

    def test_no_coordinates_skips_provider(
        self, aggregator: WeatherAggregator, provider: FakeProvider
    ) -> None:
        assert aggregator.get_weather("nowhere-camp") is None
        assert provider.calls == []

    def test_cache_failure_is_not_fatal(self, store: DataStore, provider: FakeProvider) -> None:
        cache = Mock()
        cache.get.side_effect = ConnectionError("redis down")
        cache.set.side_effect = ConnectionError("redis down")
        provider.readings["manali"] = make_reading("manali")
        aggregator = WeatherAggregator(
            cache, provider, WeatherReadingStore(store), MemoryLedger([make_site("manali")])
        )

        assert aggregator.get_weather("manali") is not None
        assert aggregator.stats().errors == 2

    def test_reset_stats(self, aggregator: WeatherAggregator) -> None:
        aggregator.get_weather("nowhere-camp")
        aggregator.reset_stats()
        assert aggregator.stats().total_requests == 0


class TestResolveCoordinates:
    """Test coordinate resolution."""

    def test_site_coordinates_win(self, aggregator: WeatherAggregator) -> None:
        coords, name = aggregator.resolve_coordinates("trail-7")
        assert coords == Coordinates(lat=30.0, lon=78.0)
        assert name == "Hidden Trail"

    def test_registry_by_id(self, aggregator: WeatherAggregator) -> None:
        coords, name = aggregator.resolve_coordinates("gulmarg")
        assert name == "Gulmarg"
        assert coords.lat == pytest.approx(34.0484)

    def test_unregistered_site_uses_registry(self, aggregator: WeatherAggregator) -> None:
        resolved = aggregator.resolve_coordinates("leh")
        assert resolved is not None
        assert resolved[1] == "Leh"

    def test_unknown_everywhere(self, aggregator: WeatherAggregator) -> None:
        assert aggregator.resolve_coordinates("nowhere-camp") is None


class TestBatch:
    """Test batched lookups and refreshes."""

    def test_batch_covers_every_site(
        self, aggregator: WeatherAggregator, provider: FakeProvider
    ) -> None:
        provider.readings["manali"] = make_reading("manali")
        provider.readings["shimla"] = make_reading("shimla")

        results = aggregator.get_weather_batch(["manali", "shimla", "gulmarg", "manali"])

        assert set(results) == {"manali", "shimla", "gulmarg"}
        assert results["gulmarg"] is None
        assert results["manali"] is not None

    def test_batches_sleep_between_groups(self, store: DataStore, provider: FakeProvider) -> None:
        sleeps: list[float] = []
        ids = ["manali", "shimla", "gulmarg", "leh", "srinagar"]
        for site_id in ids:
            provider.readings[site_id] = make_reading(site_id)
        aggregator = WeatherAggregator(
            MemoryWeatherCache(),
            provider,
            WeatherReadingStore(store),
            MemoryLedger(),
            batch_size=2,
            batch_delay=0.5,
            sleep=sleeps.append,
        )

        results = aggregator.get_weather_batch(ids)

        assert len(results) == 5
        assert sleeps == [0.5, 0.5]

    def test_empty_batch(self, aggregator: WeatherAggregator) -> None:
        assert aggregator.get_weather_batch([]) == {}

    def test_refresh_bypasses_cache(
        self, aggregator: WeatherAggregator, provider: FakeProvider
    ) -> None:
        provider.readings["manali"] = make_reading("manali", temperature=5.0)
        aggregator.get_weather("manali")
        provider.readings["manali"] = make_reading("manali", temperature=25.0)

        refreshed = aggregator.refresh("manali")

        assert refreshed is not None and refreshed.temperature == 25.0
        assert aggregator.get_weather("manali").temperature == 25.0

    def test_refresh_failure_has_no_fallback(
        self, aggregator: WeatherAggregator, provider: FakeProvider
    ) -> None:
        aggregator.persist(make_reading("manali"))
        provider.failing.add("manali")
        assert aggregator.refresh("manali") is None


class TestInvalidation:
    """Test cache invalidation helpers."""

    def _prime(self, aggregator: WeatherAggregator, provider: FakeProvider) -> None:
        for site_id in ("manali", "shimla", "gulmarg"):
            provider.readings[site_id] = make_reading(site_id)
            aggregator.get_weather(site_id)

    def test_invalidate_site(self, aggregator: WeatherAggregator, provider: FakeProvider) -> None:
        self._prime(aggregator, provider)
        assert aggregator.invalidate_site("manali") is True
        assert aggregator.invalidate_site("manali") is False

    def test_invalidate_region(
        self, aggregator: WeatherAggregator, provider: FakeProvider
    ) -> None:
        self._prime(aggregator, provider)
        assert aggregator.invalidate_region("himachal") == 2
        assert aggregator.cache.keys() == ["gulmarg"]

    def test_invalidate_all(self, aggregator: WeatherAggregator, provider: FakeProvider) -> None:
        self._prime(aggregator, provider)
        assert aggregator.invalidate_all() == 3


class TestPersist:
    """Test saving readings for the fallback path."""

    def test_persist_writes_latest_and_history(
        self, aggregator: WeatherAggregator, store: DataStore
    ) -> None:
        assert aggregator.persist(make_reading("manali")) is True
        assert aggregator.persist(make_reading("manali", temperature=2.0)) is True

        assert aggregator.readings.latest("manali").temperature == 2.0
        assert len(aggregator.readings.history("manali")) == 2

    def test_persist_failure_returns_false(self, aggregator: WeatherAggregator) -> None:
        aggregator.readings = Mock()
        aggregator.readings.save.side_effect = OSError("disk full")
        assert aggregator.persist(make_reading("manali")) is False
