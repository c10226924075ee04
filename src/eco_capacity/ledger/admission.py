"""
Admission control: bookings may only take spots the capacity engine allows.

The controller fetches weather and indicators *before* entering the ledger's
critical section and hands the ledger a gate that evaluates the engine on
those inputs only. No network or disk I/O happens while a site is locked.
Logging the adjustment and broadcasting the new capacity happen after the
ledger has committed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from eco_capacity.ledger.base import needs_admission
from eco_capacity.schemas import (
    AdmissionResult,
    Booking,
    BookingDecision,
    BookingStatus,
    BroadcastMessage,
    DynamicCapacityResult,
    MessageType,
    Site,
)

if TYPE_CHECKING:
    from eco_capacity.broadcast import Broadcaster
    from eco_capacity.ledger.base import Gate, OccupancyLedger
    from eco_capacity.policy.engine import CapacityPolicyEngine

logger = logging.getLogger(__name__)


class AdmissionController:
    """Creates and moves bookings through the ledger under engine control."""

    def __init__(
        self,
        ledger: OccupancyLedger,
        engine: CapacityPolicyEngine,
        broadcaster: Broadcaster | None = None,
    ) -> None:
        self.ledger = ledger
        self.engine = engine
        self.broadcaster = broadcaster

    def _gate(self, site_id: str) -> Gate:
        weather, indicators = self.engine.fetch_inputs(site_id)

        def gate(site: Site, booking: Booking) -> BookingDecision:
            return self.engine.is_booking_allowed(
                site, booking.group_size, weather, indicators, fetch=False, record=False
            )

        return gate

    def create_booking(
        self,
        site_id: str,
        group_size: int,
        user_id: str | None = None,
        status: BookingStatus = BookingStatus.PENDING,
    ) -> AdmissionResult:
        """
        Create a booking. Creating directly as approved or checked-in is
        admitted against dynamic capacity like any other entry.

        Raises:
            UnknownSiteError: If the site is not registered.
        """
        gate = self._gate(site_id) if status.is_occupying else None
        result = self.ledger.create_booking(
            site_id, group_size, user_id=user_id, status=status, gate=gate
        )
        if not result.success:
            logger.info("Booking for %s denied: %s", site_id, result.reason)
        elif status.is_occupying:
            self._occupancy_changed(site_id)
        return result

    def transition(self, booking_id: str, new_status: BookingStatus) -> AdmissionResult:
        """
        Move a booking to ``new_status``.

        Raises:
            UnknownBookingError: If the booking does not exist.
            InvalidTransitionError: If the lifecycle forbids the move.
        """
        booking = self.ledger.get_booking(booking_id)
        gate = (
            self._gate(booking.site_id) if needs_admission(booking.status, new_status) else None
        )
        result = self.ledger.transition(booking_id, new_status, gate=gate)
        if not result.success:
            logger.info("Booking %s not moved to %s: %s", booking_id, new_status, result.reason)
            return result

        previous = booking.status.is_occupying
        if result.booking is not None and previous != result.booking.status.is_occupying:
            self._occupancy_changed(booking.site_id)
        return result

    def approve(self, booking_id: str) -> AdmissionResult:
        return self.transition(booking_id, BookingStatus.APPROVED)

    def check_in(self, booking_id: str) -> AdmissionResult:
        return self.transition(booking_id, BookingStatus.CHECKED_IN)

    def check_out(self, booking_id: str) -> AdmissionResult:
        return self.transition(booking_id, BookingStatus.CHECKED_OUT)

    def cancel(self, booking_id: str) -> AdmissionResult:
        return self.transition(booking_id, BookingStatus.CANCELLED)

    def _occupancy_changed(self, site_id: str) -> DynamicCapacityResult | None:
        try:
            site = self.ledger.get_site(site_id)
            capacity = self.engine.get_dynamic_capacity(site)
        except Exception:
            logger.exception("Could not recompute capacity for %s after booking change", site_id)
            return None
        if self.broadcaster is not None:
            self.broadcaster.publish(
                BroadcastMessage(
                    type=MessageType.CAPACITY_UPDATE, destination_id=site_id, capacity=capacity
                )
            )
        return capacity
