"""SQLAlchemy tables for the relational ledger."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from eco_capacity.schemas import (
    Booking,
    BookingStatus,
    CleanupEvent,
    Coordinates,
    SensitivityLevel,
    Site,
)


class Base(DeclarativeBase):
    pass


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class SiteRow(Base):
    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    location: Mapped[str] = mapped_column(String(200), default="")
    max_capacity: Mapped[int] = mapped_column(Integer)
    current_occupancy: Mapped[int] = mapped_column(Integer, default=0)
    sensitivity: Mapped[str] = mapped_column(String(20), default=SensitivityLevel.LOW.value)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lon: Mapped[float | None] = mapped_column(Float, nullable=True)

    @classmethod
    def from_model(cls, site: Site) -> SiteRow:
        return cls(
            id=site.id,
            name=site.name,
            location=site.location,
            max_capacity=site.max_capacity,
            current_occupancy=0,
            sensitivity=site.sensitivity.value,
            lat=site.coordinates.lat if site.coordinates else None,
            lon=site.coordinates.lon if site.coordinates else None,
        )

    def to_model(self, occupancy: int | None = None) -> Site:
        coordinates = None
        if self.lat is not None and self.lon is not None:
            coordinates = Coordinates(lat=self.lat, lon=self.lon)
        return Site(
            id=self.id,
            name=self.name,
            location=self.location,
            max_capacity=self.max_capacity,
            current_occupancy=self.current_occupancy if occupancy is None else occupancy,
            sensitivity=SensitivityLevel(self.sensitivity),
            coordinates=coordinates,
        )


class BookingRow(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    site_id: Mapped[str] = mapped_column(
        ForeignKey("sites.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    group_size: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default=BookingStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @classmethod
    def from_model(cls, booking: Booking) -> BookingRow:
        return cls(
            id=booking.id,
            site_id=booking.site_id,
            user_id=booking.user_id,
            group_size=booking.group_size,
            status=booking.status.value,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )

    def to_model(self) -> Booking:
        return Booking(
            id=self.id,
            site_id=self.site_id,
            user_id=self.user_id,
            group_size=self.group_size,
            status=BookingStatus(self.status),
            created_at=_aware(self.created_at),
            updated_at=_aware(self.updated_at),
        )


class CleanupEventRow(Base):
    __tablename__ = "cleanup_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    site_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    max_participants: Mapped[int] = mapped_column(Integer)
    current_participants: Mapped[int] = mapped_column(Integer, default=0)
    eco_points_reward: Mapped[int] = mapped_column(Integer, default=0)

    def to_model(self) -> CleanupEvent:
        return CleanupEvent(
            id=self.id,
            title=self.title,
            site_id=self.site_id,
            max_participants=self.max_participants,
            current_participants=self.current_participants,
            eco_points_reward=self.eco_points_reward,
        )


class CleanupRegistrationRow(Base):
    __tablename__ = "cleanup_registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(
        ForeignKey("cleanup_events.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(String(64))
    attended: Mapped[bool] = mapped_column(default=False)

    __table_args__ = (UniqueConstraint("event_id", "user_id", name="unique_cleanup_user"),)


class EcoPointsRow(Base):
    __tablename__ = "eco_points"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, default=0)
