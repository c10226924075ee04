"""Open-Meteo API constants and the WMO weather code table.

API docs: https://open-meteo.com/en/docs (``current=`` block)
"""

OPEN_METEO_API = "https://api.open-meteo.com/v1/forecast"

SOURCE = "open-meteo.com"

# Current-condition variables we request from Open-Meteo
CURRENT_VARS = [
    "temperature_2m",
    "relative_humidity_2m",
    "surface_pressure",
    "wind_speed_10m",
    "weather_code",
    "visibility",
    "precipitation_probability",
    "uv_index",
]

# WMO code → (condition, description)
WEATHER_CODES: dict[int, tuple[str, str]] = {
    0: ("Clear", "clear sky"),
    1: ("Clouds", "mainly clear"),
    2: ("Clouds", "partly cloudy"),
    3: ("Clouds", "overcast"),
    45: ("Fog", "fog"),
    48: ("Fog", "depositing rime fog"),
    51: ("Drizzle", "light drizzle"),
    53: ("Drizzle", "moderate drizzle"),
    55: ("Drizzle", "dense drizzle"),
    56: ("Drizzle", "light freezing drizzle"),
    57: ("Drizzle", "dense freezing drizzle"),
    61: ("Rain", "slight rain"),
    63: ("Rain", "moderate rain"),
    65: ("Rain", "heavy rain"),
    66: ("Rain", "light freezing rain"),
    67: ("Rain", "heavy freezing rain"),
    71: ("Snow", "slight snow fall"),
    73: ("Snow", "moderate snow fall"),
    75: ("Snow", "heavy snow fall"),
    77: ("Snow", "snow grains"),
    80: ("Rain", "slight rain showers"),
    81: ("Rain", "moderate rain showers"),
    82: ("Rain", "violent rain showers"),
    85: ("Snow", "slight snow showers"),
    86: ("Snow", "heavy snow showers"),
    95: ("Thunderstorm", "thunderstorm"),
    96: ("Thunderstorm", "thunderstorm with slight hail"),
    99: ("Thunderstorm", "thunderstorm with heavy hail"),
}


def describe_code(code: int | None) -> tuple[str, str]:
    """Map a WMO weather code to (condition, description). Missing code means Clear."""
    if code is None:
        return WEATHER_CODES[0]
    return WEATHER_CODES.get(int(code), ("Unknown", f"weather code {code}"))
