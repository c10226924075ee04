"""
Ledger contracts shared by the in-memory and SQL backends.

Occupancy is derived, never trusted from a counter: it is the sum of group
sizes of bookings in an occupying state (approved or checked-in). Any move
from a non-occupying into an occupying state is checked against the caller's
gate *inside* the ledger's critical section, so two concurrent requests can
never both take the last spots.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Protocol

from eco_capacity.errors import InvalidTransitionError
from eco_capacity.schemas import (
    AdmissionResult,
    Booking,
    BookingDecision,
    BookingStatus,
    CleanupEvent,
    Site,
)

Gate = Callable[[Site, Booking], BookingDecision]

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.APPROVED, BookingStatus.CHECKED_IN, BookingStatus.CANCELLED}
    ),
    BookingStatus.APPROVED: frozenset(
        {BookingStatus.CHECKED_IN, BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED}
    ),
    BookingStatus.CHECKED_IN: frozenset({BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED}),
    BookingStatus.CHECKED_OUT: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


CREATABLE_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.APPROVED, BookingStatus.CHECKED_IN}
)


def check_initial_status(status: BookingStatus) -> None:
    if status not in CREATABLE_STATUSES:
        raise InvalidTransitionError("<new>", "none", status)


def check_transition(booking: Booking, new_status: BookingStatus) -> None:
    """Raise InvalidTransitionError unless ``booking`` may move to ``new_status``."""
    if new_status not in ALLOWED_TRANSITIONS[booking.status]:
        raise InvalidTransitionError(booking.id, booking.status, new_status)


def needs_admission(current: BookingStatus | None, new_status: BookingStatus) -> bool:
    """True when the move starts occupying spots that were not held before."""
    was_occupying = current is not None and current.is_occupying
    return new_status.is_occupying and not was_occupying


def occupancy_of(bookings: list[Booking]) -> int:
    return sum(b.group_size for b in bookings if b.status.is_occupying)


def physical_gate(site: Site, booking: Booking) -> BookingDecision:
    """Fallback gate: the group must fit under the physical maximum."""
    available = max(0, site.max_capacity - site.current_occupancy)
    if booking.group_size > available:
        return BookingDecision(
            allowed=False,
            reason=f"Capacity exceeded: {available} spots left, requested {booking.group_size}",
            available_spots=available,
        )
    return BookingDecision(allowed=True, available_spots=available)


def new_booking_id() -> str:
    return f"bk_{uuid.uuid4().hex[:12]}"


class SiteDirectory(Protocol):
    """Read access to registered sites."""

    def get_site(self, site_id: str) -> Site:
        """Site with its current occupancy. Raises UnknownSiteError."""
        ...

    def list_sites(self) -> list[Site]: ...


class OccupancyLedger(SiteDirectory, Protocol):
    """Bookings, cleanup events and eco-points with atomic capacity checks."""

    def add_site(self, site: Site) -> Site: ...

    def create_booking(
        self,
        site_id: str,
        group_size: int,
        user_id: str | None = None,
        status: BookingStatus = BookingStatus.PENDING,
        gate: Gate | None = None,
    ) -> AdmissionResult: ...

    def get_booking(self, booking_id: str) -> Booking:
        """Raises UnknownBookingError."""
        ...

    def bookings(self, site_id: str | None = None) -> list[Booking]: ...

    def occupancy(self, site_id: str) -> int: ...

    def transition(
        self, booking_id: str, new_status: BookingStatus, gate: Gate | None = None
    ) -> AdmissionResult:
        """
        Move a booking to ``new_status``.

        Raises:
            UnknownBookingError: If the booking does not exist.
            InvalidTransitionError: If the lifecycle forbids the move.
        """
        ...

    def create_cleanup_event(self, event: CleanupEvent) -> CleanupEvent: ...

    def get_cleanup_event(self, event_id: str) -> CleanupEvent | None: ...

    def register_participant(self, event_id: str, user_id: str) -> bool: ...

    def cancel_registration(self, event_id: str, user_id: str) -> bool: ...

    def confirm_attendance(self, event_id: str, user_id: str) -> bool: ...

    def award_points(self, user_id: str, points: int) -> int: ...

    def redeem_points(self, user_id: str, points: int) -> bool: ...

    def balance(self, user_id: str) -> int: ...
