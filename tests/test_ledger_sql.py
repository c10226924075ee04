"""SQL-specific ledger behaviour: engine setup, persistence, denormalized columns."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import event, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from eco_capacity.ledger import SqlLedger, create_ledger_engine
from eco_capacity.ledger.models import SiteRow
from eco_capacity.schemas import BookingStatus, Coordinates
from factories import make_site

if TYPE_CHECKING:
    from pathlib import Path


class TestCreateLedgerEngine:
    """Test engine construction per URL."""

    def test_memory_sqlite_uses_static_pool(self) -> None:
        engine = create_ledger_engine("sqlite://")
        assert isinstance(engine.pool, StaticPool)

    def test_file_sqlite(self, tmp_path: Path) -> None:
        engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        assert not isinstance(engine.pool, StaticPool)

    def test_sqlite_transactions_take_write_lock_up_front(self, tmp_path: Path) -> None:
        engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        with engine.connect():
            pass  # first connect runs dialect setup
        statements: list[str] = []

        @event.listens_for(engine, "before_cursor_execute")
        def capture(conn: object, cursor: object, statement: str, *args: object) -> None:
            statements.append(statement)

        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

        assert statements == ["BEGIN IMMEDIATE", "SELECT 1"]


class TestSqlLedger:
    """Test behaviour specific to the relational backend."""

    def test_survives_reopen(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path / 'ledger.db'}"
        first = SqlLedger.from_url(url)
        first.add_site(make_site("manali", max_capacity=10))
        booking = first.create_booking("manali", 4, status=BookingStatus.APPROVED).booking
        first.award_points("u1", 7)
        first.engine.dispose()

        second = SqlLedger.from_url(url)
        assert second.occupancy("manali") == 4
        assert second.get_booking(booking.id).status is BookingStatus.APPROVED
        assert second.balance("u1") == 7

    def test_denormalized_occupancy_column_tracks_bookings(self) -> None:
        ledger = SqlLedger.from_url("sqlite://")
        ledger.add_site(make_site("manali", max_capacity=10))
        booking = ledger.create_booking("manali", 3, status=BookingStatus.APPROVED).booking

        def stored() -> int:
            with Session(ledger.engine) as db:
                return db.scalar(select(SiteRow.current_occupancy).where(SiteRow.id == "manali"))

        assert stored() == 3
        ledger.transition(booking.id, BookingStatus.CHECKED_OUT)
        assert stored() == 0

    def test_coordinates_round_trip(self) -> None:
        ledger = SqlLedger.from_url("sqlite://")
        site = make_site("trail-7", coordinates=Coordinates(lat=30.5, lon=78.25))
        assert ledger.add_site(site).coordinates == Coordinates(lat=30.5, lon=78.25)

    def test_re_adding_site_updates_it(self) -> None:
        ledger = SqlLedger.from_url("sqlite://")
        ledger.add_site(make_site("manali", max_capacity=10))
        ledger.create_booking("manali", 4, status=BookingStatus.APPROVED)

        updated = ledger.add_site(make_site("manali", max_capacity=40))

        assert updated.max_capacity == 40
        assert updated.current_occupancy == 4

    def test_timestamps_are_timezone_aware(self) -> None:
        ledger = SqlLedger.from_url("sqlite://")
        ledger.add_site(make_site("manali"))
        booking = ledger.create_booking("manali", 2).booking
        assert ledger.get_booking(booking.id).created_at.tzinfo is not None
