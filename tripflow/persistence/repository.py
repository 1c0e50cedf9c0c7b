"""Location and trip repository with a change stream.

The repository is the durable side of the planner: the in-memory store
writes through to it after each successful mutation.  Conflicts are not
resolved; the last write wins.  Every write publishes a
:class:`ChangeEvent` to all active :meth:`LocationRepository.watch`
iterators.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from collections.abc import AsyncIterator, Iterable

import pydantic
import sqlalchemy
import sqlmodel

from tripflow.core.models import Location

from .models import LocationRecord, TripRecord

logger = logging.getLogger(__name__)


class ChangeType(enum.StrEnum):
    CREATED = 'created'
    UPDATED = 'updated'
    DELETED = 'deleted'


class ChangeEvent(pydantic.BaseModel):
    """One write observed by the repository."""

    model_config = pydantic.ConfigDict(frozen=True)

    change: ChangeType
    location_id: str
    trip_id: str | None = None
    # None for deletions.
    location: Location | None = None


class LocationRepository:
    """CRUD access to locations and trips backed by SQLModel."""

    def __init__(self, engine: sqlalchemy.Engine) -> None:
        self._engine = engine
        self._subscribers: dict[asyncio.Queue[ChangeEvent], asyncio.AbstractEventLoop] = {}

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def get(self, location_id: str) -> Location | None:
        with sqlmodel.Session(self._engine) as session:
            record = session.get(LocationRecord, location_id)
            return record.to_location() if record else None

    def list_by_trip(self, trip_id: str | None) -> list[Location]:
        """Locations of one trip (or the unassigned ones), oldest first."""
        with sqlmodel.Session(self._engine) as session:
            statement = sqlmodel.select(LocationRecord).where(
                LocationRecord.trip_id == trip_id
                if trip_id is not None
                else LocationRecord.trip_id.is_(None)  # type: ignore[union-attr]
            )
            records = session.exec(
                statement.order_by(LocationRecord.created_at)  # type: ignore[arg-type]
            ).all()
            return [record.to_location() for record in records]

    def list_all(self) -> list[Location]:
        with sqlmodel.Session(self._engine) as session:
            records = session.exec(
                sqlmodel.select(LocationRecord).order_by(LocationRecord.created_at)  # type: ignore[arg-type]
            ).all()
            return [record.to_location() for record in records]

    def find_by_fingerprint(self, fingerprint: str) -> list[Location]:
        """Locations with the same name and coordinates."""
        with sqlmodel.Session(self._engine) as session:
            records = session.exec(
                sqlmodel.select(LocationRecord).where(
                    LocationRecord.fingerprint == fingerprint
                )
            ).all()
            return [record.to_location() for record in records]

    def create(self, location: Location) -> Location:
        """Insert *location*.

        Raises:
            ValueError: a location with the same id already exists.
        """
        with sqlmodel.Session(self._engine) as session:
            if session.get(LocationRecord, location.id) is not None:
                raise ValueError(f'location {location.id} already exists')
            session.add(LocationRecord.from_location(location))
            session.commit()
        self._publish(ChangeType.CREATED, location)
        return location

    def update(self, location: Location) -> Location | None:
        """Overwrite the stored row for *location*; None if it is not stored."""
        with sqlmodel.Session(self._engine) as session:
            record = session.get(LocationRecord, location.id)
            if record is None:
                return None
            record.update_from(location)
            session.add(record)
            session.commit()
        self._publish(ChangeType.UPDATED, location)
        return location

    def upsert(self, location: Location) -> Location:
        """Create or overwrite; last write wins."""
        if self.update(location) is None:
            self.create(location)
        return location

    def upsert_many(self, locations: Iterable[Location]) -> int:
        count = 0
        for location in locations:
            self.upsert(location)
            count += 1
        return count

    def delete(self, location_id: str) -> bool:
        with sqlmodel.Session(self._engine) as session:
            record = session.get(LocationRecord, location_id)
            if record is None:
                return False
            trip_id = record.trip_id
            session.delete(record)
            session.commit()
        self._emit(
            ChangeEvent(
                change=ChangeType.DELETED, location_id=location_id, trip_id=trip_id
            )
        )
        return True

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    def save_trip(self, name: str, trip_id: str | None = None) -> TripRecord:
        """Create a trip, or rename it when *trip_id* already exists."""
        with sqlmodel.Session(self._engine) as session:
            trip = session.get(TripRecord, trip_id) if trip_id else None
            if trip is None:
                trip = TripRecord(id=trip_id or str(uuid.uuid4()), name=name)
            else:
                trip.name = name
            session.add(trip)
            session.commit()
            session.refresh(trip)
            return trip

    def list_trips(self) -> list[TripRecord]:
        """All trips, newest first."""
        with sqlmodel.Session(self._engine) as session:
            return list(
                session.exec(
                    sqlmodel.select(TripRecord).order_by(TripRecord.created_at.desc())  # type: ignore[attr-defined]
                ).all()
            )

    # ------------------------------------------------------------------
    # Change stream
    # ------------------------------------------------------------------

    async def watch(self) -> AsyncIterator[ChangeEvent]:
        """Yield every change written after the iterator starts."""
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._subscribers[queue] = asyncio.get_running_loop()
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.pop(queue, None)

    def _publish(self, change: ChangeType, location: Location) -> None:
        self._emit(
            ChangeEvent(
                change=change,
                location_id=location.id,
                trip_id=location.trip_id,
                location=location,
            )
        )

    def _emit(self, event: ChangeEvent) -> None:
        logger.debug('Location %s %s', event.location_id, event.change.value)
        # Writes may run on a worker thread; hand events to each watcher's loop.
        for queue, loop in list(self._subscribers.items()):
            loop.call_soon_threadsafe(queue.put_nowait, event)
