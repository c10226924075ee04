"""In-process ledger. One lock per site guards every check-then-act."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict

from eco_capacity.errors import UnknownBookingError, UnknownSiteError
from eco_capacity.ledger.base import (
    Gate,
    check_initial_status,
    check_transition,
    needs_admission,
    new_booking_id,
    occupancy_of,
    physical_gate,
)
from eco_capacity.schemas import (
    AdmissionResult,
    Booking,
    BookingStatus,
    CleanupEvent,
    Site,
    utcnow,
)

logger = logging.getLogger(__name__)


class MemoryLedger:
    """Thread-safe ledger kept entirely in memory."""

    def __init__(self, sites: list[Site] | None = None) -> None:
        self._lock = threading.Lock()
        self._site_locks: dict[str, threading.Lock] = {}
        self._sites: dict[str, Site] = {}
        self._bookings: dict[str, Booking] = {}
        self._events: dict[str, CleanupEvent] = {}
        # event id -> user id -> attended
        self._registrations: dict[str, dict[str, bool]] = defaultdict(dict)
        self._events_lock = threading.Lock()
        self._points: dict[str, int] = defaultdict(int)
        self._points_lock = threading.Lock()
        for site in sites or []:
            self.add_site(site)

    # -------------------------------------------------------------------------
    # Sites
    # -------------------------------------------------------------------------

    def add_site(self, site: Site) -> Site:
        with self._lock:
            self._sites[site.id] = site.model_copy(update={"current_occupancy": 0})
            self._site_locks.setdefault(site.id, threading.Lock())
        return self.get_site(site.id)

    def get_site(self, site_id: str) -> Site:
        with self._lock:
            site = self._sites.get(site_id)
            if site is None:
                raise UnknownSiteError(site_id)
            bookings = [b for b in self._bookings.values() if b.site_id == site_id]
        return site.model_copy(update={"current_occupancy": occupancy_of(bookings)})

    def list_sites(self) -> list[Site]:
        with self._lock:
            site_ids = list(self._sites)
        return [self.get_site(site_id) for site_id in site_ids]

    def occupancy(self, site_id: str) -> int:
        return self.get_site(site_id).current_occupancy

    def _site_lock(self, site_id: str) -> threading.Lock:
        with self._lock:
            lock = self._site_locks.get(site_id)
        if lock is None:
            raise UnknownSiteError(site_id)
        return lock

    # -------------------------------------------------------------------------
    # Bookings
    # -------------------------------------------------------------------------

    def create_booking(
        self,
        site_id: str,
        group_size: int,
        user_id: str | None = None,
        status: BookingStatus = BookingStatus.PENDING,
        gate: Gate | None = None,
    ) -> AdmissionResult:
        check_initial_status(status)
        if group_size <= 0:
            return AdmissionResult(
                success=False, reason=f"Group size must be positive, got {group_size}"
            )

        booking = Booking(
            id=new_booking_id(),
            site_id=site_id,
            group_size=group_size,
            status=status,
            user_id=user_id,
        )
        with self._site_lock(site_id):
            if needs_admission(None, status):
                decision = (gate or physical_gate)(self.get_site(site_id), booking)
                if not decision.allowed:
                    return AdmissionResult(success=False, reason=decision.reason)
            with self._lock:
                self._bookings[booking.id] = booking
        logger.debug("Booking %s created for %s (%s)", booking.id, site_id, status)
        return AdmissionResult(success=True, booking=booking)

    def get_booking(self, booking_id: str) -> Booking:
        with self._lock:
            booking = self._bookings.get(booking_id)
        if booking is None:
            raise UnknownBookingError(booking_id)
        return booking

    def bookings(self, site_id: str | None = None) -> list[Booking]:
        with self._lock:
            return [b for b in self._bookings.values() if site_id is None or b.site_id == site_id]

    def transition(
        self, booking_id: str, new_status: BookingStatus, gate: Gate | None = None
    ) -> AdmissionResult:
        site_id = self.get_booking(booking_id).site_id
        with self._site_lock(site_id):
            # Re-read under the site lock; another thread may have moved it.
            booking = self.get_booking(booking_id)
            check_transition(booking, new_status)
            if needs_admission(booking.status, new_status):
                decision = (gate or physical_gate)(self.get_site(site_id), booking)
                if not decision.allowed:
                    return AdmissionResult(success=False, booking=booking, reason=decision.reason)
            updated = booking.model_copy(update={"status": new_status, "updated_at": utcnow()})
            with self._lock:
                self._bookings[booking_id] = updated
        logger.debug("Booking %s moved %s -> %s", booking_id, booking.status, new_status)
        return AdmissionResult(success=True, booking=updated)

    # -------------------------------------------------------------------------
    # Cleanup events
    # -------------------------------------------------------------------------

    def create_cleanup_event(self, event: CleanupEvent) -> CleanupEvent:
        with self._events_lock:
            self._events[event.id] = event.model_copy(update={"current_participants": 0})
            self._registrations[event.id] = {}
            return self._events[event.id]

    def get_cleanup_event(self, event_id: str) -> CleanupEvent | None:
        with self._events_lock:
            return self._events.get(event_id)

    def register_participant(self, event_id: str, user_id: str) -> bool:
        """Register once per user while places remain."""
        with self._events_lock:
            event = self._events.get(event_id)
            if event is None:
                return False
            registered = self._registrations[event_id]
            if user_id in registered or event.current_participants >= event.max_participants:
                return False
            registered[user_id] = False
            self._events[event_id] = event.model_copy(
                update={"current_participants": event.current_participants + 1}
            )
            return True

    def cancel_registration(self, event_id: str, user_id: str) -> bool:
        with self._events_lock:
            event = self._events.get(event_id)
            if event is None or self._registrations[event_id].pop(user_id, None) is None:
                return False
            self._events[event_id] = event.model_copy(
                update={"current_participants": max(0, event.current_participants - 1)}
            )
            return True

    def confirm_attendance(self, event_id: str, user_id: str) -> bool:
        """Mark a registered user as attended and award the event's points once."""
        with self._events_lock:
            event = self._events.get(event_id)
            registered = self._registrations.get(event_id, {})
            if event is None or user_id not in registered:
                return False
            if registered[user_id]:
                return True
            registered[user_id] = True
        if event.eco_points_reward > 0:
            self.award_points(user_id, event.eco_points_reward)
        return True

    # -------------------------------------------------------------------------
    # Eco-points
    # -------------------------------------------------------------------------

    def award_points(self, user_id: str, points: int) -> int:
        if points <= 0:
            raise ValueError(f"points must be positive, got {points}")
        with self._points_lock:
            self._points[user_id] += points
            return self._points[user_id]

    def redeem_points(self, user_id: str, points: int) -> bool:
        if points <= 0:
            raise ValueError(f"points must be positive, got {points}")
        with self._points_lock:
            if self._points[user_id] < points:
                return False
            self._points[user_id] -= points
            return True

    def balance(self, user_id: str) -> int:
        with self._points_lock:
            return self._points.get(user_id, 0)
