"""Unit tests for the location repository."""

import asyncio
import datetime
import unittest

import sqlalchemy
import sqlalchemy.pool
import sqlmodel

from tripflow.core.models import LatLng, Location
from tripflow.persistence import database, models
from tripflow.persistence.repository import ChangeEvent, ChangeType, LocationRepository


def make_in_memory_engine() -> sqlalchemy.Engine:
    """Create an in-memory SQLite engine for testing."""
    engine = sqlmodel.create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=sqlalchemy.pool.StaticPool,
    )
    database.create_db_and_tables(engine)
    return engine


def _loc(name: str = 'Louvre', trip_id: str | None = 'trip-1', **kwargs: object) -> Location:
    return Location(
        name=name,
        position=LatLng(lat=48.8606, lng=2.3376),
        trip_id=trip_id,
        **kwargs,  # type: ignore[arg-type]
    )


class TestLocationRecord(unittest.TestCase):
    """Tests for the Location <-> row mapping."""

    def test_round_trip_preserves_fields(self) -> None:
        """Converting to a row and back keeps every field."""
        loc = _loc(
            scheduled_date=datetime.date(2025, 6, 1),
            stay_duration=datetime.timedelta(minutes=45),
            is_skipped=True,
        ).with_route_metrics(datetime.timedelta(minutes=7), 820.5)
        restored = models.LocationRecord.from_location(loc).to_location()
        self.assertEqual(restored, loc)

    def test_fingerprint_stored(self) -> None:
        """The row carries the location fingerprint."""
        loc = _loc()
        self.assertEqual(models.LocationRecord.from_location(loc).fingerprint, loc.fingerprint)


class TestLocationRepository(unittest.TestCase):
    """Tests for LocationRepository CRUD."""

    def setUp(self) -> None:
        self.repo = LocationRepository(make_in_memory_engine())

    def test_create_and_get(self) -> None:
        """A created location can be read back."""
        loc = self.repo.create(_loc())
        self.assertEqual(self.repo.get(loc.id), loc)

    def test_create_duplicate_rejected(self) -> None:
        """Creating the same id twice raises."""
        loc = self.repo.create(_loc())
        with self.assertRaises(ValueError):
            self.repo.create(loc)

    def test_get_missing(self) -> None:
        """Unknown ids return None."""
        self.assertIsNone(self.repo.get('missing'))

    def test_update(self) -> None:
        """update overwrites the stored row."""
        loc = self.repo.create(_loc())
        renamed = loc.model_copy(update={'name': 'Musee du Louvre'})
        self.assertEqual(self.repo.update(renamed), renamed)
        self.assertEqual(self.repo.get(loc.id).name, 'Musee du Louvre')  # type: ignore[union-attr]

    def test_update_missing(self) -> None:
        """Updating a location that is not stored returns None."""
        self.assertIsNone(self.repo.update(_loc()))

    def test_upsert_last_write_wins(self) -> None:
        """upsert creates then overwrites."""
        loc = _loc()
        self.repo.upsert(loc)
        self.repo.upsert(loc.model_copy(update={'is_skipped': True}))
        self.assertTrue(self.repo.get(loc.id).is_skipped)  # type: ignore[union-attr]
        self.assertEqual(len(self.repo.list_all()), 1)

    def test_delete(self) -> None:
        """delete removes the row and reports whether it existed."""
        loc = self.repo.create(_loc())
        self.assertTrue(self.repo.delete(loc.id))
        self.assertFalse(self.repo.delete(loc.id))
        self.assertIsNone(self.repo.get(loc.id))

    def test_list_by_trip(self) -> None:
        """list_by_trip filters on the owning trip."""
        a = self.repo.create(_loc('A', trip_id='t1'))
        self.repo.create(_loc('B', trip_id='t2'))
        c = self.repo.create(_loc('C', trip_id=None))
        self.assertEqual([loc.id for loc in self.repo.list_by_trip('t1')], [a.id])
        self.assertEqual([loc.id for loc in self.repo.list_by_trip(None)], [c.id])
        self.assertEqual(len(self.repo.list_all()), 3)

    def test_find_by_fingerprint(self) -> None:
        """Duplicates of the same place share a fingerprint."""
        first = self.repo.create(_loc('Louvre'))
        self.repo.create(_loc('Louvre'))
        self.repo.create(_loc('Orsay'))
        self.assertEqual(len(self.repo.find_by_fingerprint(first.fingerprint)), 2)


class TestTrips(unittest.TestCase):
    """Tests for trip records."""

    def setUp(self) -> None:
        self.repo = LocationRepository(make_in_memory_engine())

    def test_save_and_list(self) -> None:
        """Saved trips are listed."""
        trip = self.repo.save_trip('Paris')
        self.assertEqual([t.id for t in self.repo.list_trips()], [trip.id])

    def test_rename(self) -> None:
        """Saving with an existing id renames the trip."""
        trip = self.repo.save_trip('Paris')
        self.repo.save_trip('Paris 2025', trip_id=trip.id)
        trips = self.repo.list_trips()
        self.assertEqual(len(trips), 1)
        self.assertEqual(trips[0].name, 'Paris 2025')


class TestWatch(unittest.TestCase):
    """Tests for the change stream."""

    def test_events_follow_writes(self) -> None:
        """Each write publishes one event in order."""
        repo = LocationRepository(make_in_memory_engine())

        async def scenario() -> list[ChangeEvent]:
            stream = repo.watch()
            first = asyncio.ensure_future(stream.__anext__())
            # Let the iterator subscribe before writing.
            await asyncio.sleep(0)
            loc = repo.create(_loc())
            repo.update(loc.model_copy(update={'name': 'Renamed'}))
            repo.delete(loc.id)
            events = [await first, await stream.__anext__(), await stream.__anext__()]
            await stream.aclose()
            return events

        events = asyncio.run(scenario())
        self.assertEqual(
            [e.change for e in events],
            [ChangeType.CREATED, ChangeType.UPDATED, ChangeType.DELETED],
        )
        self.assertEqual(events[1].location.name, 'Renamed')  # type: ignore[union-attr]
        self.assertIsNone(events[2].location)
        self.assertEqual(events[2].trip_id, 'trip-1')

    def test_writes_from_worker_thread(self) -> None:
        """Writes made off the event loop still reach the watcher."""
        repo = LocationRepository(make_in_memory_engine())

        async def scenario() -> ChangeEvent:
            stream = repo.watch()
            first = asyncio.ensure_future(stream.__anext__())
            await asyncio.sleep(0)
            await asyncio.to_thread(repo.create, _loc())
            event = await asyncio.wait_for(first, timeout=1.0)
            await stream.aclose()
            return event

        self.assertEqual(asyncio.run(scenario()).change, ChangeType.CREATED)

    def test_no_subscribers_is_fine(self) -> None:
        """Writes without watchers do not fail."""
        repo = LocationRepository(make_in_memory_engine())
        repo.create(_loc())
        self.assertEqual(len(repo.list_all()), 1)


if __name__ == '__main__':
    unittest.main()
