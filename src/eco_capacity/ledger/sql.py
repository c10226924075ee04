"""
Relational ledger on SQLAlchemy.

Every capacity-changing operation runs in one transaction that first locks
the site row with ``SELECT ... FOR UPDATE``, then recounts occupancy from the
bookings table, asks the gate, and only then writes. The denormalized
``sites.current_occupancy`` column is refreshed in the same transaction for
readers outside this package. Eco-point balances change through single
``UPDATE ... SET balance = balance + :n`` statements.

SQLite ignores ``FOR UPDATE``, so SQLite engines open every transaction with
``BEGIN IMMEDIATE``, which takes the database write lock before the first
read. A ``sqlite://`` engine shares a single connection between threads, so
the ledger also serializes its transactions in-process. Capacity-changing
calls additionally hold a per-site (or per-event, per-user) lock for the
whole transaction.
"""

from __future__ import annotations

import logging
import threading
from contextlib import AbstractContextManager, ExitStack, contextmanager, nullcontext
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.event import listens_for
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from eco_capacity.errors import UnknownBookingError, UnknownSiteError
from eco_capacity.ledger.base import (
    Gate,
    check_initial_status,
    check_transition,
    needs_admission,
    new_booking_id,
    physical_gate,
)
from eco_capacity.ledger.models import (
    Base,
    BookingRow,
    CleanupEventRow,
    CleanupRegistrationRow,
    EcoPointsRow,
    SiteRow,
)
from eco_capacity.schemas import (
    AdmissionResult,
    Booking,
    BookingStatus,
    CleanupEvent,
    Site,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

OCCUPYING_STATUSES = [s.value for s in BookingStatus if s.is_occupying]


def use_immediate_transactions(engine: Engine) -> None:
    """Make a pysqlite engine take the write lock when a transaction begins."""

    @listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        # pysqlite would otherwise defer BEGIN until the first write.
        dbapi_connection.isolation_level = None

    @listens_for(engine, "begin")
    def _begin_immediate(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_ledger_engine(url: str, echo: bool = False) -> Engine:
    """Engine for ``url``. In-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
        use_immediate_transactions(engine)
        return engine
    return create_engine(url, pool_pre_ping=True, echo=echo)


class SqlLedger:
    """Ledger backed by a relational database."""

    def __init__(self, engine: Engine, create_tables: bool = True) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._shared_connection = isinstance(engine.pool, StaticPool)
        self._connection_lock = threading.RLock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        if create_tables:
            with self._connection_guard():
                Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> SqlLedger:
        return cls(create_ledger_engine(url, echo=echo))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _connection_guard(self) -> AbstractContextManager[Any]:
        # One shared connection cannot carry two transactions at once.
        return self._connection_lock if self._shared_connection else nullcontext()

    def _key_lock(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks.setdefault(key, threading.Lock())

    @contextmanager
    def _read(self) -> Iterator[Session]:
        with self._connection_guard(), self._sessions() as db:
            yield db

    @contextmanager
    def _write(self, key: str | None = None) -> Iterator[Session]:
        """
        One committed transaction. ``key`` names the row being counted against
        (``site:<id>``, ``event:<id>``, ``points:<user>``); its lock is taken
        before the connection lock and held until commit.
        """
        with ExitStack() as stack:
            if key is not None:
                stack.enter_context(self._key_lock(key))
            stack.enter_context(self._connection_guard())
            yield stack.enter_context(self._sessions.begin())

    @staticmethod
    def _occupancy(db: Session, site_id: str) -> int:
        total = db.scalar(
            select(func.coalesce(func.sum(BookingRow.group_size), 0)).where(
                BookingRow.site_id == site_id,
                BookingRow.status.in_(OCCUPYING_STATUSES),
            )
        )
        return int(total or 0)

    @staticmethod
    def _locked_site(db: Session, site_id: str) -> SiteRow:
        row = db.scalars(select(SiteRow).where(SiteRow.id == site_id).with_for_update()).first()
        if row is None:
            raise UnknownSiteError(site_id)
        return row

    def _sync_occupancy(self, db: Session, site_row: SiteRow) -> None:
        db.flush()
        site_row.current_occupancy = self._occupancy(db, site_row.id)

    # -------------------------------------------------------------------------
    # Sites
    # -------------------------------------------------------------------------

    def add_site(self, site: Site) -> Site:
        with self._write(f"site:{site.id}") as db:
            row = db.merge(SiteRow.from_model(site))
            row.current_occupancy = self._occupancy(db, site.id)
        return self.get_site(site.id)

    def get_site(self, site_id: str) -> Site:
        with self._read() as db:
            row = db.get(SiteRow, site_id)
            if row is None:
                raise UnknownSiteError(site_id)
            return row.to_model(self._occupancy(db, site_id))

    def list_sites(self) -> list[Site]:
        with self._read() as db:
            occupancy = dict(
                db.execute(
                    select(BookingRow.site_id, func.sum(BookingRow.group_size))
                    .where(BookingRow.status.in_(OCCUPYING_STATUSES))
                    .group_by(BookingRow.site_id)
                ).all()
            )
            rows = db.scalars(select(SiteRow).order_by(SiteRow.id)).all()
            return [row.to_model(int(occupancy.get(row.id) or 0)) for row in rows]

    def occupancy(self, site_id: str) -> int:
        return self.get_site(site_id).current_occupancy

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
        with self._write(f"site:{site_id}") as db:
            site_row = self._locked_site(db, site_id)
            if needs_admission(None, status):
                site = site_row.to_model(self._occupancy(db, site_id))
                decision = (gate or physical_gate)(site, booking)
                if not decision.allowed:
                    return AdmissionResult(success=False, reason=decision.reason)
            db.add(BookingRow.from_model(booking))
            self._sync_occupancy(db, site_row)
        logger.debug("Booking %s created for %s (%s)", booking.id, site_id, status)
        return AdmissionResult(success=True, booking=booking)

    def get_booking(self, booking_id: str) -> Booking:
        with self._read() as db:
            row = db.get(BookingRow, booking_id)
            if row is None:
                raise UnknownBookingError(booking_id)
            return row.to_model()

    def bookings(self, site_id: str | None = None) -> list[Booking]:
        query = select(BookingRow).order_by(BookingRow.created_at)
        if site_id is not None:
            query = query.where(BookingRow.site_id == site_id)
        with self._read() as db:
            return [row.to_model() for row in db.scalars(query)]

    def transition(
        self, booking_id: str, new_status: BookingStatus, gate: Gate | None = None
    ) -> AdmissionResult:
        # A booking never changes site, so its site can be read before locking.
        with self._read() as db:
            site_id = db.scalar(select(BookingRow.site_id).where(BookingRow.id == booking_id))
        if site_id is None:
            raise UnknownBookingError(booking_id)

        with self._write(f"site:{site_id}") as db:
            site_row = self._locked_site(db, site_id)
            # Re-read after taking the lock.
            row = db.get(BookingRow, booking_id, populate_existing=True)
            booking = row.to_model()
            check_transition(booking, new_status)

            if needs_admission(booking.status, new_status):
                site = site_row.to_model(self._occupancy(db, site_id))
                decision = (gate or physical_gate)(site, booking)
                if not decision.allowed:
                    return AdmissionResult(success=False, booking=booking, reason=decision.reason)

            row.status = new_status.value
            row.updated_at = utcnow()
            self._sync_occupancy(db, site_row)
            updated = row.to_model()
        logger.debug("Booking %s moved %s -> %s", booking_id, booking.status, new_status)
        return AdmissionResult(success=True, booking=updated)

    # -------------------------------------------------------------------------
    # Cleanup events
    # -------------------------------------------------------------------------

    def create_cleanup_event(self, event: CleanupEvent) -> CleanupEvent:
        with self._write(f"event:{event.id}") as db:
            row = db.merge(
                CleanupEventRow(
                    id=event.id,
                    title=event.title,
                    site_id=event.site_id,
                    max_participants=event.max_participants,
                    current_participants=0,
                    eco_points_reward=event.eco_points_reward,
                )
            )
            return row.to_model()

    def get_cleanup_event(self, event_id: str) -> CleanupEvent | None:
        with self._read() as db:
            row = db.get(CleanupEventRow, event_id)
            return row.to_model() if row is not None else None

    def _registration(
        self, db: Session, event_id: str, user_id: str
    ) -> CleanupRegistrationRow | None:
        return db.scalars(
            select(CleanupRegistrationRow).where(
                CleanupRegistrationRow.event_id == event_id,
                CleanupRegistrationRow.user_id == user_id,
            )
        ).first()

    def register_participant(self, event_id: str, user_id: str) -> bool:
        with self._write(f"event:{event_id}") as db:
            event = db.scalars(
                select(CleanupEventRow).where(CleanupEventRow.id == event_id).with_for_update()
            ).first()
            if event is None:
                return False
            if self._registration(db, event_id, user_id) is not None:
                return False
            if event.current_participants >= event.max_participants:
                return False
            db.add(CleanupRegistrationRow(event_id=event_id, user_id=user_id))
            event.current_participants += 1
        return True

    def cancel_registration(self, event_id: str, user_id: str) -> bool:
        with self._write(f"event:{event_id}") as db:
            event = db.scalars(
                select(CleanupEventRow).where(CleanupEventRow.id == event_id).with_for_update()
            ).first()
            registration = self._registration(db, event_id, user_id)
            if event is None or registration is None:
                return False
            db.delete(registration)
            event.current_participants = max(0, event.current_participants - 1)
        return True

    def confirm_attendance(self, event_id: str, user_id: str) -> bool:
        with self._write(f"event:{event_id}") as db:
            result = db.execute(
                update(CleanupRegistrationRow)
                .where(
                    CleanupRegistrationRow.event_id == event_id,
                    CleanupRegistrationRow.user_id == user_id,
                    CleanupRegistrationRow.attended.is_(False),
                )
                .values(attended=True)
            )
            if result.rowcount == 0:
                # Already attended counts as success; never registered does not.
                return self._registration(db, event_id, user_id) is not None
            event = db.get(CleanupEventRow, event_id)
            if event is not None and event.eco_points_reward > 0:
                self._add_points(db, user_id, event.eco_points_reward)
        return True

    # -------------------------------------------------------------------------
    # Eco-points
    # -------------------------------------------------------------------------

    @staticmethod
    def _add_points(db: Session, user_id: str, points: int) -> None:
        result = db.execute(
            update(EcoPointsRow)
            .where(EcoPointsRow.user_id == user_id)
            .values(balance=EcoPointsRow.balance + points)
        )
        if result.rowcount == 0:
            db.add(EcoPointsRow(user_id=user_id, balance=points))
            db.flush()

    def award_points(self, user_id: str, points: int) -> int:
        if points <= 0:
            raise ValueError(f"points must be positive, got {points}")
        with self._write(f"points:{user_id}") as db:
            self._add_points(db, user_id, points)
            return int(
                db.scalar(select(EcoPointsRow.balance).where(EcoPointsRow.user_id == user_id))
            )

    def redeem_points(self, user_id: str, points: int) -> bool:
        if points <= 0:
            raise ValueError(f"points must be positive, got {points}")
        with self._write(f"points:{user_id}") as db:
            result = db.execute(
                update(EcoPointsRow)
                .where(EcoPointsRow.user_id == user_id, EcoPointsRow.balance >= points)
                .values(balance=EcoPointsRow.balance - points)
            )
            return result.rowcount == 1

    def balance(self, user_id: str) -> int:
        with self._read() as db:
            value = db.scalar(select(EcoPointsRow.balance).where(EcoPointsRow.user_id == user_id))
            return int(value or 0)
