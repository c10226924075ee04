"""
Domain models for eco capacity.

Pydantic models shared by the engine, the ledgers and the weather layer.
Enumerations are closed ``StrEnum`` sets so callers match them exhaustively
instead of comparing free-form strings.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


# =============================================================================
# Enumerations
# =============================================================================


class SensitivityLevel(StrEnum):
    """Ecological fragility rating of a site."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertLevel(StrEnum):
    """Severity used for weather alerts, policy alerts and capacity alerts."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BookingStatus(StrEnum):
    """Booking lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    CANCELLED = "cancelled"

    @property
    def is_occupying(self) -> bool:
        """Whether a booking in this state counts towards site occupancy."""
        return self in (BookingStatus.APPROVED, BookingStatus.CHECKED_IN)


class MessageType(StrEnum):
    """Broadcast message tags."""

    WEATHER_UPDATE = "weather_update"
    CAPACITY_UPDATE = "capacity_update"
    ALERT = "alert"


# =============================================================================
# Sites and policy
# =============================================================================


class Coordinates(BaseModel):
    """Geographic point."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class Site(BaseModel):
    """A capacity-limited eco-tourism site."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str
    location: str = ""
    max_capacity: int = Field(..., gt=0)
    current_occupancy: int = Field(default=0, ge=0)
    sensitivity: SensitivityLevel = SensitivityLevel.LOW
    coordinates: Coordinates | None = None

    @property
    def utilization(self) -> float:
        """Raw occupancy over physical max capacity."""
        return self.current_occupancy / self.max_capacity


class SensitivityPolicy(BaseModel):
    """Capacity policy attached to one sensitivity level."""

    sensitivity: SensitivityLevel
    capacity_multiplier: float = Field(..., gt=0, le=1)
    requires_permit: bool = False
    requires_eco_briefing: bool = False
    alert_severity: AlertLevel = AlertLevel.NONE
    restriction_message: str | None = None


class CapacityOverride(BaseModel):
    """Administrative multiplier applied on top of the computed factors."""

    site_id: str
    multiplier: float = Field(..., gt=0, le=1)
    active: bool = True
    expires_at: datetime | None = None
    reason: str | None = None
    author: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def is_effective(self, now: datetime) -> bool:
        """Active and not yet expired at ``now``."""
        if not self.active:
            return False
        return self.expires_at is None or self.expires_at > now


# =============================================================================
# Measurements
# =============================================================================


class WeatherReading(BaseModel):
    """Current conditions for a site plus the derived alert."""

    site_id: str
    temperature: float
    humidity: float = 0.0
    pressure: float = 0.0
    wind_speed: float = 0.0
    visibility: float = 10_000.0
    condition: str = "Clear"
    description: str = ""
    precipitation_probability: float | None = None
    uv_index: float | None = None
    alert_level: AlertLevel = AlertLevel.NONE
    alert_reason: str | None = None
    recorded_at: datetime = Field(default_factory=utcnow)


class EcologicalIndicators(BaseModel):
    """Measured strain scores (0-100) for a site."""

    site_id: str
    soil_compaction: float = Field(default=0.0, ge=0, le=100)
    vegetation_disturbance: float = Field(default=0.0, ge=0, le=100)
    wildlife_disturbance: float = Field(default=0.0, ge=0, le=100)
    water_source_impact: float = Field(default=0.0, ge=0, le=100)
    recorded_at: datetime = Field(default_factory=utcnow)

    @property
    def strain(self) -> float:
        """Combined strain normalized to [0, 1]."""
        total = (
            self.soil_compaction
            + self.vegetation_disturbance
            + self.wildlife_disturbance
            + self.water_source_impact
        )
        return total / 400


# =============================================================================
# Capacity results
# =============================================================================

FACTOR_NAMES = ("ecological", "weather", "season", "utilization", "indicator", "override")


class CapacityFactors(BaseModel):
    """The six multiplicative capacity factors for one site at one moment."""

    model_config = ConfigDict(frozen=True)

    ecological: float = 1.0
    weather: float = 1.0
    season: float = 1.0
    utilization: float = 1.0
    indicator: float = 1.0
    override: float = 1.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def combined(self) -> float:
        """Exact product of all six factors."""
        return math.prod(getattr(self, name) for name in FACTOR_NAMES)

    def active(self) -> list[str]:
        """Names of factors currently suppressing capacity."""
        return [name for name in FACTOR_NAMES if getattr(self, name) != 1.0]

    def differs_from(self, other: CapacityFactors, tolerance: float) -> bool:
        """True if the combined value or any component moved by more than ``tolerance``."""
        if abs(self.combined - other.combined) > tolerance:
            return True
        return any(
            abs(getattr(self, name) - getattr(other, name)) > tolerance for name in FACTOR_NAMES
        )


class DynamicCapacityResult(BaseModel):
    """Derived, never stored: adjusted capacity for one site."""

    site_id: str
    original_capacity: int
    adjusted_capacity: int
    available_spots: int
    factors: CapacityFactors
    active_factors: list[str] = Field(default_factory=list)
    message: str = ""


class AdjustmentLogEntry(BaseModel):
    """Append-only record of a capacity change."""

    site_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    original_capacity: int
    adjusted_capacity: int
    factors: CapacityFactors
    reason: str


class CapacityAlert(BaseModel):
    """Alert raised by the policy engine."""

    site_id: str
    severity: AlertLevel
    title: str
    message: str
    active_factors: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class BookingDecision(BaseModel):
    """Outcome of a booking eligibility check."""

    allowed: bool
    reason: str | None = None
    available_spots: int = 0


# =============================================================================
# Bookings, registrations, broadcast
# =============================================================================


class Booking(BaseModel):
    """A group booking into a site."""

    id: str
    site_id: str
    group_size: int = Field(..., gt=0)
    status: BookingStatus = BookingStatus.PENDING
    user_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AdmissionResult(BaseModel):
    """Outcome of a booking creation or status transition."""

    success: bool
    booking: Booking | None = None
    reason: str | None = None


class CleanupEvent(BaseModel):
    """A volunteer cleanup event with limited places."""

    id: str
    title: str
    site_id: str | None = None
    max_participants: int = Field(..., gt=0)
    current_participants: int = Field(default=0, ge=0)
    eco_points_reward: int = Field(default=0, ge=0)


class BroadcastMessage(BaseModel):
    """Small tagged record pushed to real-time subscribers."""

    model_config = ConfigDict(populate_by_name=True)

    type: MessageType
    destination_id: str | None = Field(default=None, serialization_alias="destinationId")
    weather: WeatherReading | None = None
    alert: CapacityAlert | None = None
    capacity: DynamicCapacityResult | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict using the wire field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
