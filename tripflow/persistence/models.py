"""Database tables for trips and pinned locations."""

import datetime
from datetime import UTC

from sqlmodel import Field, SQLModel

from tripflow.core.models import LatLng, Location


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(UTC)


def _aware(value: datetime.datetime) -> datetime.datetime:
    # SQLite drops tzinfo; stored values are always UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class TripRecord(SQLModel, table=True):
    """A named trip that groups locations."""

    __tablename__ = 'tripflow_trip'  # type: ignore[misc]

    id: str = Field(primary_key=True, max_length=64)
    name: str = Field(max_length=200)
    created_at: datetime.datetime = Field(default_factory=_utcnow)


class LocationRecord(SQLModel, table=True):
    """Durable form of a :class:`~tripflow.core.models.Location`."""

    __tablename__ = 'tripflow_location'  # type: ignore[misc]

    id: str = Field(primary_key=True, max_length=64)
    trip_id: str | None = Field(default=None, index=True, max_length=64)
    name: str = Field(max_length=200)
    address: str = Field(default='', max_length=500)
    latitude: float
    longitude: float
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    scheduled_date: datetime.date | None = Field(default=None, index=True)
    stay_seconds: int = 30 * 60
    is_skipped: bool = False
    travel_seconds: int | None = None
    distance_m: float | None = None
    fingerprint: str = Field(index=True, max_length=64)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_location(cls, location: Location) -> 'LocationRecord':
        travel = location.travel_time_from_previous
        return cls(
            id=location.id,
            trip_id=location.trip_id,
            name=location.name,
            address=location.address,
            latitude=location.position.lat,
            longitude=location.position.lng,
            created_at=location.created_at,
            scheduled_date=location.scheduled_date,
            stay_seconds=int(location.stay_duration.total_seconds()),
            is_skipped=location.is_skipped,
            travel_seconds=int(travel.total_seconds()) if travel is not None else None,
            distance_m=location.distance_from_previous_m,
            fingerprint=location.fingerprint,
        )

    def to_location(self) -> Location:
        has_metrics = self.travel_seconds is not None and self.distance_m is not None
        return Location(
            id=self.id,
            trip_id=self.trip_id,
            name=self.name,
            address=self.address,
            position=LatLng(lat=self.latitude, lng=self.longitude),
            created_at=_aware(self.created_at),
            scheduled_date=self.scheduled_date,
            stay_duration=datetime.timedelta(seconds=self.stay_seconds),
            is_skipped=self.is_skipped,
            travel_time_from_previous=(
                datetime.timedelta(seconds=self.travel_seconds)  # type: ignore[arg-type]
                if has_metrics
                else None
            ),
            distance_from_previous_m=self.distance_m if has_metrics else None,
        )

    def update_from(self, location: Location) -> None:
        """Copy every field of *location* onto this row."""
        fresh = LocationRecord.from_location(location)
        for field in (
            'trip_id',
            'name',
            'address',
            'latitude',
            'longitude',
            'scheduled_date',
            'stay_seconds',
            'is_skipped',
            'travel_seconds',
            'distance_m',
            'fingerprint',
        ):
            setattr(self, field, getattr(fresh, field))
        self.updated_at = _utcnow()
