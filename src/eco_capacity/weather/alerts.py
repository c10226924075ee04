"""Weather alert derivation.

Turns raw conditions into an ``AlertLevel`` plus a human-readable reason. The
capacity engine only looks at the level; the reason goes into broadcasts and
the persisted reading.
"""

from __future__ import annotations

from typing import NamedTuple

from eco_capacity.schemas import AlertLevel, WeatherReading

# Thresholds (°C, m/s, m, %)
HEAT_C = 40.0
EXTREME_HEAT_C = 45.0
FREEZING_C = 0.0
EXTREME_COLD_C = -10.0
WET_SNOW_MIN_C = -5.0
HIGH_WIND_MS = 15.0
STORM_WIND_MS = 20.0
BREEZY_WIND_MS = 10.0
LOW_VISIBILITY_M = 1000.0
VERY_LOW_VISIBILITY_M = 500.0
HEAVY_PRECIP_PCT = 80.0
HIGH_UV = 8.0


class AlertCheck(NamedTuple):
    should_alert: bool
    severity: AlertLevel
    reason: str


def _reasons(reading: WeatherReading) -> list[str]:
    reasons = []
    if reading.temperature > HEAT_C:
        reasons.append("Extreme heat warning")
    elif reading.temperature < FREEZING_C:
        reasons.append("Freezing temperature alert")

    if reading.wind_speed > HIGH_WIND_MS:
        reasons.append("High wind warning")

    precip = reading.precipitation_probability
    if precip is not None and precip > HEAVY_PRECIP_PCT:
        reasons.append("Heavy precipitation expected")

    if reading.visibility < LOW_VISIBILITY_M:
        reasons.append("Low visibility conditions")

    if reading.uv_index is not None and reading.uv_index > HIGH_UV:
        reasons.append("High UV index - extreme sun exposure risk")

    if reading.condition == "Thunderstorm":
        reasons.append("Thunderstorm warning")
    elif reading.condition == "Snow" and reading.temperature > WET_SNOW_MIN_C:
        reasons.append("Wet snow conditions - slippery trails")
    return reasons


def _severity(reading: WeatherReading) -> AlertLevel:
    temp = reading.temperature
    wind = reading.wind_speed
    precip = reading.precipitation_probability or 0.0
    uv = reading.uv_index or 0.0

    if temp > EXTREME_HEAT_C or temp < EXTREME_COLD_C:
        return AlertLevel.CRITICAL
    if wind > STORM_WIND_MS or reading.visibility < VERY_LOW_VISIBILITY_M:
        return AlertLevel.CRITICAL
    if temp > HEAT_C or temp < FREEZING_C:
        return AlertLevel.HIGH
    if wind > HIGH_WIND_MS or precip > HEAVY_PRECIP_PCT or reading.condition == "Thunderstorm":
        return AlertLevel.HIGH
    if wind > BREEZY_WIND_MS or uv > HIGH_UV:
        return AlertLevel.MEDIUM
    return AlertLevel.LOW


def check_alert(reading: WeatherReading) -> AlertCheck:
    """Evaluate alert rules against a reading (its stored alert fields are ignored)."""
    reasons = _reasons(reading)
    if not reasons:
        return AlertCheck(False, AlertLevel.NONE, "")
    return AlertCheck(True, _severity(reading), ", ".join(reasons))


def derive_alert(reading: WeatherReading) -> WeatherReading:
    """Return a copy of ``reading`` with ``alert_level``/``alert_reason`` filled in."""
    check = check_alert(reading)
    return reading.model_copy(
        update={"alert_level": check.severity, "alert_reason": check.reason or None}
    )
