"""
Dynamic capacity computation.

Adjusted capacity is the physical maximum scaled by six multiplicative
factors::

    adjusted = floor(max_capacity * ecological * weather * season
                     * utilization * indicator * override)

Each factor is in (0, 1], so adjusted capacity never exceeds the physical
maximum. Weather and indicator inputs may be passed in pre-fetched; otherwise
the engine pulls them from the injected aggregator and indicator store, and a
failed lookup simply leaves that factor at 1.0.

Every time a site's factors move, an ``AdjustmentLogEntry`` is appended. Large
reductions also raise a ``CapacityAlert`` that is stored and broadcast.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from eco_capacity.schemas import (
    AdjustmentLogEntry,
    AlertLevel,
    BookingDecision,
    BroadcastMessage,
    CapacityAlert,
    CapacityFactors,
    DynamicCapacityResult,
    MessageType,
    SensitivityLevel,
    Site,
    utcnow,
)
from eco_capacity.weather.alerts import AlertCheck, check_alert

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from datetime import datetime

    from eco_capacity.broadcast import Broadcaster
    from eco_capacity.indicators import IndicatorStore
    from eco_capacity.policy.audit import AdjustmentLog, AlertSink
    from eco_capacity.policy.config import PolicyConfigService
    from eco_capacity.schemas import (
        CapacityOverride,
        EcologicalIndicators,
        SensitivityPolicy,
        WeatherReading,
    )
    from eco_capacity.weather.aggregator import WeatherAggregator

logger = logging.getLogger(__name__)

WEATHER_FACTORS: dict[AlertLevel, float] = {
    AlertLevel.NONE: 1.0,
    AlertLevel.LOW: 0.90,
    AlertLevel.MEDIUM: 0.85,
    AlertLevel.HIGH: 0.80,
    AlertLevel.CRITICAL: 0.75,
}

HIGH_SEASON_MONTHS = range(5, 11)  # May through October
SEASON_FACTOR = 0.80

UTILIZATION_THRESHOLD = 0.85
UTILIZATION_FACTOR = 0.90

SEVERE_STRAIN = 0.7
SEVERE_STRAIN_FACTOR = 0.80
MODERATE_STRAIN = 0.4
MODERATE_STRAIN_FACTOR = 0.90

CHANGE_TOLERANCE = 0.001
ALERT_REDUCTION = 0.15
HIGH_ALERT_REDUCTION = 0.30

# Products like 100 * 0.8 * 0.85 land a hair under the integer.
_PRODUCT_PRECISION = 10


def _clamp(value: float) -> float:
    if value <= 0 or math.isnan(value):
        return 1.0
    return min(value, 1.0)


def adjusted_capacity(max_capacity: int, combined: float) -> int:
    """``floor(max_capacity * combined)`` without float noise pushing it down."""
    return math.floor(round(max_capacity * combined, _PRODUCT_PRECISION))


class CapacityPolicyEngine:
    """Computes adjusted capacity and booking eligibility for sites."""

    def __init__(
        self,
        config: PolicyConfigService,
        *,
        weather: WeatherAggregator | None = None,
        indicators: IndicatorStore | None = None,
        audit: AdjustmentLog | None = None,
        alerts: AlertSink | None = None,
        broadcaster: Broadcaster | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.weather = weather
        self.indicators = indicators
        self.audit = audit
        self.alerts = alerts
        self.broadcaster = broadcaster
        self._clock = clock

    # -------------------------------------------------------------------------
    # Factors
    # -------------------------------------------------------------------------

    def ecological_factor(self, site: Site) -> float:
        return _clamp(self.config.get_policy(site.sensitivity).capacity_multiplier)

    @staticmethod
    def weather_factor(reading: WeatherReading | None) -> float:
        if reading is None:
            return 1.0
        return WEATHER_FACTORS.get(reading.alert_level, 1.0)

    @staticmethod
    def season_factor(now: datetime) -> float:
        return SEASON_FACTOR if now.month in HIGH_SEASON_MONTHS else 1.0

    @staticmethod
    def utilization_factor(site: Site) -> float:
        # Measured against physical max, not adjusted capacity.
        return UTILIZATION_FACTOR if site.utilization > UTILIZATION_THRESHOLD else 1.0

    @staticmethod
    def indicator_factor(indicators: EcologicalIndicators | None) -> float:
        if indicators is None:
            return 1.0
        strain = indicators.strain
        if strain > SEVERE_STRAIN:
            return SEVERE_STRAIN_FACTOR
        if strain > MODERATE_STRAIN:
            return MODERATE_STRAIN_FACTOR
        return 1.0

    def override_factor(self, site_id: str, now: datetime) -> float:
        override = self.config.active_override(site_id, now)
        return _clamp(override.multiplier) if override is not None else 1.0

    def compute_factors(
        self,
        site: Site,
        weather: WeatherReading | None = None,
        indicators: EcologicalIndicators | None = None,
        now: datetime | None = None,
    ) -> CapacityFactors:
        """Pure factor computation from already-known inputs."""
        now = now or self._clock()
        return CapacityFactors(
            ecological=self.ecological_factor(site),
            weather=self.weather_factor(weather),
            season=self.season_factor(now),
            utilization=self.utilization_factor(site),
            indicator=self.indicator_factor(indicators),
            override=self.override_factor(site.id, now),
        )

    # -------------------------------------------------------------------------
    # Capacity
    # -------------------------------------------------------------------------

    def get_dynamic_capacity(
        self,
        site: Site,
        weather: WeatherReading | None = None,
        indicators: EcologicalIndicators | None = None,
        *,
        fetch: bool = True,
        record: bool = True,
    ) -> DynamicCapacityResult:
        """
        Adjusted capacity for one site.

        Args:
            site: Site with its current occupancy.
            weather: Pre-fetched reading. Looked up when None and ``fetch`` is set.
            indicators: Pre-fetched snapshot. Looked up when None and ``fetch`` is set.
            fetch: Pull missing inputs from the aggregator and indicator store.
            record: Append to the adjustment log (and raise alerts) on change.

        Returns:
            DynamicCapacityResult. Audit failures never prevent a result.
        """
        if fetch:
            if weather is None:
                weather = self._lookup_weather(site.id)
            if indicators is None:
                indicators = self._lookup_indicators(site.id)

        factors = self.compute_factors(site, weather, indicators)
        result = self._result(site, factors)
        if record:
            self._record(site, result)
        return result

    def get_available_spots(
        self,
        site: Site,
        weather: WeatherReading | None = None,
        indicators: EcologicalIndicators | None = None,
        *,
        fetch: bool = True,
        record: bool = True,
    ) -> int:
        return self.get_dynamic_capacity(
            site, weather, indicators, fetch=fetch, record=record
        ).available_spots

    def get_batch_adjusted_capacities(
        self,
        sites: Iterable[Site],
        weather_map: Mapping[str, WeatherReading | None] | None = None,
        indicators_map: Mapping[str, EcologicalIndicators | None] | None = None,
    ) -> dict[str, int]:
        """
        Adjusted capacity for many sites at once.

        Missing maps are filled by one batched lookup each. Sites absent from
        a supplied map get factor 1.0 for that input. Nothing is logged.
        """
        sites = list(sites)
        site_ids = [site.id for site in sites]
        if weather_map is None:
            weather_map = self._lookup_weather_batch(site_ids)
        if indicators_map is None:
            indicators_map = self._lookup_indicators_batch(site_ids)

        now = self._clock()
        capacities: dict[str, int] = {}
        for site in sites:
            factors = self.compute_factors(
                site, weather_map.get(site.id), indicators_map.get(site.id), now
            )
            capacities[site.id] = adjusted_capacity(site.max_capacity, factors.combined)
        return capacities

    def is_booking_allowed(
        self,
        site: Site,
        group_size: int,
        weather: WeatherReading | None = None,
        indicators: EcologicalIndicators | None = None,
        *,
        fetch: bool = True,
        record: bool = True,
    ) -> BookingDecision:
        """Decide whether a group of ``group_size`` may be admitted now."""
        if group_size <= 0:
            return BookingDecision(
                allowed=False, reason=f"Group size must be positive, got {group_size}"
            )

        result = self.get_dynamic_capacity(site, weather, indicators, fetch=fetch, record=record)
        available = result.available_spots

        if site.sensitivity is SensitivityLevel.CRITICAL:
            policy = self.config.get_policy(site.sensitivity)
            return BookingDecision(
                allowed=False,
                reason=policy.restriction_message
                or f"{site.name} is closed to public bookings",
                available_spots=available,
            )

        if group_size > available:
            return BookingDecision(
                allowed=False,
                reason=(
                    f"Booking exceeds the available spots ({available}) adjusted for "
                    f"{site.sensitivity} ecological sensitivity: requested {group_size}, "
                    f"short by {group_size - available}"
                ),
                available_spots=available,
            )

        return BookingDecision(allowed=True, available_spots=available)

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    @staticmethod
    def check_weather_alerts(reading: WeatherReading) -> AlertCheck:
        """Whether a reading warrants an alert, with severity and reason."""
        return check_alert(reading)

    def generate_ecological_alert(self, site: Site) -> CapacityAlert | None:
        """Standing alert for the site's sensitivity policy, if it has one."""
        policy = self.config.get_policy(site.sensitivity)
        if policy.alert_severity is AlertLevel.NONE:
            return None
        return CapacityAlert(
            site_id=site.id,
            severity=policy.alert_severity,
            title=f"Ecological Sensitivity Alert: {site.name}",
            message=policy.restriction_message
            or f"This area has {site.sensitivity} ecological sensitivity.",
            active_factors=["ecological"],
        )

    # -------------------------------------------------------------------------
    # Policy delegates
    # -------------------------------------------------------------------------

    def get_policy(self, level: SensitivityLevel | str) -> SensitivityPolicy:
        return self.config.get_policy(level)

    def all_policies(self) -> dict[SensitivityLevel, SensitivityPolicy]:
        return self.config.all_policies()

    def update_policy(self, level: SensitivityLevel, **updates: Any) -> SensitivityPolicy:
        return self.config.update_policy(level, **updates)

    def set_capacity_override(
        self,
        site_id: str,
        multiplier: float,
        active: bool = True,
        expires_at: datetime | None = None,
        reason: str | None = None,
        author: str | None = None,
    ) -> CapacityOverride:
        return self.config.set_override(
            site_id, multiplier, active=active, expires_at=expires_at, reason=reason, author=author
        )

    def clear_capacity_override(self, site_id: str) -> bool:
        return self.config.clear_override(site_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _result(self, site: Site, factors: CapacityFactors) -> DynamicCapacityResult:
        adjusted = adjusted_capacity(site.max_capacity, factors.combined)
        active = factors.active()
        if active:
            message = (
                f"Capacity at {site.name} reduced to {adjusted} of {site.max_capacity} "
                f"({', '.join(active)})"
            )
        else:
            message = f"Full capacity of {site.max_capacity} available at {site.name}"
        return DynamicCapacityResult(
            site_id=site.id,
            original_capacity=site.max_capacity,
            adjusted_capacity=adjusted,
            available_spots=max(0, adjusted - site.current_occupancy),
            factors=factors,
            active_factors=active,
            message=message,
        )

    def fetch_inputs(
        self, site_id: str
    ) -> tuple[WeatherReading | None, EcologicalIndicators | None]:
        """Weather and indicators for a site, for callers that compute under a lock."""
        return self._lookup_weather(site_id), self._lookup_indicators(site_id)

    def _lookup_weather(self, site_id: str) -> WeatherReading | None:
        if self.weather is None:
            return None
        try:
            return self.weather.get_weather(site_id)
        except Exception:
            logger.warning("Weather lookup failed for %s; ignoring weather", site_id, exc_info=True)
            return None

    def _lookup_indicators(self, site_id: str) -> EcologicalIndicators | None:
        if self.indicators is None:
            return None
        try:
            return self.indicators.latest(site_id)
        except Exception:
            logger.warning(
                "Indicator lookup failed for %s; ignoring indicators", site_id, exc_info=True
            )
            return None

    def _lookup_weather_batch(self, site_ids: list[str]) -> Mapping[str, WeatherReading | None]:
        if self.weather is None:
            return {}
        try:
            return self.weather.get_weather_batch(site_ids)
        except Exception:
            logger.warning("Batch weather lookup failed; ignoring weather", exc_info=True)
            return {}

    def _lookup_indicators_batch(
        self, site_ids: list[str]
    ) -> Mapping[str, EcologicalIndicators | None]:
        if self.indicators is None:
            return {}
        try:
            return self.indicators.latest_batch(site_ids)
        except Exception:
            logger.warning("Batch indicator lookup failed; ignoring indicators", exc_info=True)
            return {}

    def _record(self, site: Site, result: DynamicCapacityResult) -> None:
        if self.audit is None:
            return
        factors = result.factors
        reason = (
            "Active factors: "
            + ", ".join(f"{name}={getattr(factors, name):.2f}" for name in result.active_factors)
            if result.active_factors
            else "No active factors"
        )
        entry = AdjustmentLogEntry(
            site_id=site.id,
            timestamp=self._clock(),
            original_capacity=result.original_capacity,
            adjusted_capacity=result.adjusted_capacity,
            factors=factors,
            reason=reason,
        )
        try:
            if not self.audit.record_if_changed(entry, CHANGE_TOLERANCE):
                return
            reduction = (result.original_capacity - result.adjusted_capacity) / (
                result.original_capacity
            )
            if reduction > ALERT_REDUCTION:
                self._raise_alert(site, result, reduction)
        except Exception:
            logger.exception("Failed to record capacity adjustment for %s", site.id)

    def _raise_alert(self, site: Site, result: DynamicCapacityResult, reduction: float) -> None:
        severity = AlertLevel.HIGH if reduction > HIGH_ALERT_REDUCTION else AlertLevel.MEDIUM
        alert = CapacityAlert(
            site_id=site.id,
            severity=severity,
            title=f"Capacity reduced at {site.name}",
            message=(
                f"Capacity reduced by {reduction:.0%} to {result.adjusted_capacity} of "
                f"{result.original_capacity} due to {', '.join(result.active_factors)}"
            ),
            active_factors=list(result.active_factors),
            created_at=self._clock(),
        )
        logger.warning("%s: %s", alert.title, alert.message)
        if self.alerts is not None:
            self.alerts.record(alert)
        if self.broadcaster is not None:
            self.broadcaster.publish(
                BroadcastMessage(type=MessageType.ALERT, destination_id=site.id, alert=alert)
            )
