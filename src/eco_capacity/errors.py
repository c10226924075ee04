"""Exception hierarchy.

Capacity-driven denials are not errors: they come back as
``BookingDecision`` / ``AdmissionResult`` values with a reason string.
"""

from __future__ import annotations


class EcoCapacityError(Exception):
    """Base class for all package errors."""


class ProviderError(EcoCapacityError):
    """The external weather provider failed, timed out, or returned garbage."""

    def __init__(self, site_id: str, message: str) -> None:
        super().__init__(f"{site_id}: {message}")
        self.site_id = site_id


class UnknownSiteError(EcoCapacityError, LookupError):
    """No site with the given id is registered."""


class UnknownBookingError(EcoCapacityError, LookupError):
    """No booking with the given id exists."""


class InvalidTransitionError(EcoCapacityError, ValueError):
    """A booking status change that the lifecycle does not allow."""

    def __init__(self, booking_id: str, current: str, requested: str) -> None:
        super().__init__(f"Booking {booking_id}: cannot move from {current} to {requested}")
        self.booking_id = booking_id
        self.current = current
        self.requested = requested


class ConfigError(EcoCapacityError):
    """Stored policy configuration could not be parsed."""
