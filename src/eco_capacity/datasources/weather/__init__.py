"""Open-Meteo weather data source.

Fetches current conditions for a coordinate pair (free, no API key).

Public API:
  - current: OpenMeteoProvider, WeatherProvider protocol, parse_current
  - client: API URL, requested variables, WMO code table
"""

from eco_capacity.datasources.weather.client import OPEN_METEO_API, describe_code
from eco_capacity.datasources.weather.current import (
    OpenMeteoProvider,
    WeatherProvider,
    parse_current,
)

__all__ = [
    "OPEN_METEO_API",
    "OpenMeteoProvider",
    "WeatherProvider",
    "describe_code",
    "parse_current",
]
