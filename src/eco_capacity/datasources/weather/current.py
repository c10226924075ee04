"""Current conditions from the Open-Meteo Forecast API."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import requests

from eco_capacity.datasources.weather.client import CURRENT_VARS, OPEN_METEO_API, describe_code
from eco_capacity.errors import ProviderError
from eco_capacity.schemas import WeatherReading
from eco_capacity.services.http import DEFAULT_TIMEOUT, create_session
from eco_capacity.weather.alerts import derive_alert

if TYPE_CHECKING:
    from collections.abc import Mapping


class WeatherProvider(Protocol):
    """Anything that can fetch a site's current conditions."""

    def fetch_current(self, site_id: str, lat: float, lon: float, name: str) -> WeatherReading:
        """Return current conditions or raise ``ProviderError``."""
        ...


def _number(current: Mapping[str, Any], key: str, default: float | None = None) -> float | None:
    value = current.get(key)
    if value is None:
        return default
    return float(value)


def parse_current(site_id: str, data: Mapping[str, Any]) -> WeatherReading:
    """
    Parse an Open-Meteo ``current=`` response into a WeatherReading.

    Raises:
        ProviderError: If the ``current`` block or its temperature is missing.
    """
    current = data.get("current")
    if not isinstance(current, dict) or current.get("temperature_2m") is None:
        raise ProviderError(site_id, "response has no current conditions")

    condition, description = describe_code(current.get("weather_code"))

    recorded_at = datetime.now(UTC)
    time_str = current.get("time")
    if time_str:
        parsed = datetime.fromisoformat(time_str)
        recorded_at = parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    reading = WeatherReading(
        site_id=site_id,
        temperature=float(current["temperature_2m"]),
        humidity=_number(current, "relative_humidity_2m", 0.0) or 0.0,
        pressure=_number(current, "surface_pressure", 0.0) or 0.0,
        wind_speed=_number(current, "wind_speed_10m", 0.0) or 0.0,
        visibility=_number(current, "visibility", 10_000.0) or 0.0,
        condition=condition,
        description=description,
        precipitation_probability=_number(current, "precipitation_probability"),
        uv_index=_number(current, "uv_index"),
        recorded_at=recorded_at,
    )
    return derive_alert(reading)


class OpenMeteoProvider:
    """Weather provider gateway backed by Open-Meteo (free, no API key)."""

    def __init__(
        self,
        api_url: str = OPEN_METEO_API,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or create_session(timeout=timeout)

    def fetch_current(self, site_id: str, lat: float, lon: float, name: str) -> WeatherReading:
        """
        Fetch current conditions for a coordinate pair.

        Args:
            site_id: Site the reading is attributed to.
            lat: Latitude.
            lon: Longitude.
            name: Display name, only used in error messages.

        Raises:
            ProviderError: On timeout, HTTP error, or malformed response.
        """
        params: dict[str, str | float] = {
            "latitude": lat,
            "longitude": lon,
            "current": ",".join(CURRENT_VARS),
            "wind_speed_unit": "ms",
            "timezone": "UTC",
        }
        try:
            resp = self.session.get(self.api_url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data: dict[str, Any] = resp.json()
        except requests.RequestException as exc:
            raise ProviderError(site_id, f"request for {name} failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(site_id, f"invalid JSON for {name}") from exc

        return parse_current(site_id, data)
