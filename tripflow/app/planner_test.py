"""Unit tests for the trip planner service."""

from __future__ import annotations

import asyncio
import datetime
import threading
import unittest
from typing import Any

import sqlalchemy
import sqlalchemy.pool
import sqlmodel

from tripflow.app.config import PlannerConfig
from tripflow.app.planner import TripPlanner, build_planner
from tripflow.core import polyline
from tripflow.core.models import LatLng, Location
from tripflow.core.orchestrator import RouteOrchestrator
from tripflow.core.store import TripStore
from tripflow.directions.client import ProviderError
from tripflow.directions.models import DirectionsRequest, DirectionsResponse
from tripflow.markers.cache import MarkerCache
from tripflow.persistence import database
from tripflow.persistence.repository import LocationRepository

DAY = datetime.date(2025, 6, 1)
NEXT_DAY = datetime.date(2025, 6, 2)
ORIGIN = LatLng(lat=0.0, lng=0.0)


def make_in_memory_engine() -> sqlalchemy.Engine:
    """Create an in-memory SQLite engine for testing."""
    engine = sqlmodel.create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=sqlalchemy.pool.StaticPool,
    )
    database.create_db_and_tables(engine)
    return engine


def _loc(loc_id: str, lng: float, day: datetime.date = DAY) -> Location:
    return Location(
        id=loc_id, name=loc_id, position=LatLng(lat=0.0, lng=lng), scheduled_date=day
    )


def _leg(start: LatLng, end: LatLng, seconds: int, metres: int) -> dict[str, Any]:
    return {
        'duration': {'value': seconds},
        'distance': {'value': metres},
        'start_location': start.model_dump(),
        'end_location': end.model_dump(),
        'steps': [{'polyline': {'points': polyline.encode([start, end])}}],
    }


class StubProvider:
    """Directions provider that answers every request the same way."""

    def __init__(
        self,
        response: DirectionsResponse | None = None,
        error: Exception | None = None,
    ) -> None:
        self.response = response
        self.error = error
        self.requests: list[DirectionsRequest] = []

    async def directions(self, request: DirectionsRequest) -> DirectionsResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        assert self.response is not None
        return self.response


W1 = _loc('W1', 0.01)
W2 = _loc('W2', 0.02)

# ORIGIN -> W2 -> W1, plus the return leg.
ROUND_TRIP = DirectionsResponse.model_validate(
    {
        'status': 'OK',
        'routes': [
            {
                'legs': [
                    _leg(ORIGIN, W2.position, 300, 2200),
                    _leg(W2.position, W1.position, 120, 1100),
                    _leg(W1.position, ORIGIN, 200, 1150),
                ],
                'waypoint_order': [1, 0],
            }
        ],
    }
)


def make_planner(
    provider: StubProvider | None = None,
    repository: LocationRepository | None = None,
) -> TripPlanner:
    return TripPlanner(
        store=TripStore(selected_date=DAY),
        orchestrator=RouteOrchestrator(provider or StubProvider(ROUND_TRIP)),
        cache=MarkerCache(capacity=10),
        repository=repository,
    )


class TestWriteThrough(unittest.TestCase):
    """Store mutations are persisted through the repository."""

    def setUp(self) -> None:
        self.repo = LocationRepository(make_in_memory_engine())
        self.planner = make_planner(repository=self.repo)

    def test_add_persists(self) -> None:
        """Added locations are stored."""
        asyncio.run(self.planner.add_location(W1))
        self.assertEqual(self.repo.get('W1'), self.planner.store.get('W1'))

    def test_undated_location_stored_on_selected_date(self) -> None:
        """An undated pin is scheduled on the selected date before saving."""
        added = asyncio.run(
            self.planner.add_location(
                Location(id='P', name='Pin', position=LatLng(lat=1.0, lng=1.0))
            )
        )
        self.assertEqual(added.scheduled_date, DAY)
        self.assertEqual(self.repo.get('P').scheduled_date, DAY)  # type: ignore[union-attr]

    def test_remove_deletes(self) -> None:
        """Removing a location deletes its row."""
        asyncio.run(self.planner.add_location(W1))
        self.assertTrue(asyncio.run(self.planner.remove_location('W1')))
        self.assertIsNone(self.repo.get('W1'))

    def test_remove_unknown(self) -> None:
        """Removing an unknown id reports False."""
        self.assertFalse(asyncio.run(self.planner.remove_location('missing')))

    def test_update_reschedules(self) -> None:
        """Rescheduling moves the stored row to the new day."""
        asyncio.run(self.planner.add_location(W1))
        updated = asyncio.run(
            self.planner.update_location('W1', name='Museum', scheduled_date=NEXT_DAY)
        )
        assert updated is not None
        self.assertEqual(updated.name, 'Museum')
        stored = self.repo.get('W1')
        assert stored is not None
        self.assertEqual(stored.scheduled_date, NEXT_DAY)
        self.assertEqual(stored.name, 'Museum')

    def test_update_unknown(self) -> None:
        """Editing an unknown id returns None."""
        self.assertIsNone(asyncio.run(self.planner.update_location('missing', name='x')))

    def test_copy_persists_new_ids(self) -> None:
        """Copies are stored under fresh ids on the target day."""
        asyncio.run(self.planner.add_location(W1))
        copies = asyncio.run(self.planner.copy_locations(['W1'], NEXT_DAY))
        self.assertEqual(len(copies), 1)
        self.assertNotEqual(copies[0].id, 'W1')
        self.assertEqual(
            [loc.id for loc in self.repo.list_all() if loc.scheduled_date == NEXT_DAY],
            [copies[0].id],
        )

    def test_reorder_persists_day(self) -> None:
        """Reordering moves the stop and refuses out-of-range indices."""
        asyncio.run(self.planner.add_location(W1))
        asyncio.run(self.planner.add_location(W2))
        self.assertTrue(asyncio.run(self.planner.reorder_location(DAY, 1, 0)))
        self.assertEqual([loc.id for loc in self.planner.store.day_group(DAY)], ['W2', 'W1'])
        self.assertFalse(asyncio.run(self.planner.reorder_location(DAY, 0, 5)))

    def test_clear_trip_deletes_rows(self) -> None:
        """Clearing the trip removes every stored location."""
        asyncio.run(self.planner.add_location(W1))
        asyncio.run(self.planner.add_location(_loc('N', 0.05, NEXT_DAY)))
        self.assertEqual(asyncio.run(self.planner.clear_trip()), 2)
        self.assertEqual(self.planner.store.locations, ())
        self.assertEqual(self.repo.list_all(), [])

    def test_writes_run_off_the_event_loop(self) -> None:
        """Repository writes happen on a worker thread."""
        threads: list[int] = []
        upsert_many = self.repo.upsert_many

        def recording(locations: Any) -> int:
            threads.append(threading.get_ident())
            return upsert_many(locations)

        self.repo.upsert_many = recording  # type: ignore[method-assign]

        async def add() -> int:
            await self.planner.add_location(W1)
            return threading.get_ident()

        loop_thread = asyncio.run(add())
        self.assertEqual(len(threads), 1)
        self.assertNotEqual(threads[0], loop_thread)
        self.assertIsNotNone(self.repo.get('W1'))

    def test_concurrent_commands_all_persist(self) -> None:
        """Overlapping commands on one loop each reach storage."""

        async def add_both() -> None:
            await asyncio.gather(
                self.planner.add_location(W1), self.planner.add_location(W2)
            )

        asyncio.run(add_both())
        self.assertCountEqual([loc.id for loc in self.repo.list_all()], ['W1', 'W2'])

    def test_load_restores_store(self) -> None:
        """load() rebuilds the store from storage."""
        asyncio.run(self.planner.add_location(W1))
        asyncio.run(self.planner.add_location(W2))
        fresh = make_planner(repository=self.repo)
        self.assertEqual(asyncio.run(fresh.load()), 2)
        self.assertCountEqual([loc.id for loc in fresh.store.day_group(DAY)], ['W1', 'W2'])

    def test_load_without_repository(self) -> None:
        """Without storage, load() is a no-op."""
        self.assertEqual(asyncio.run(make_planner().load()), 0)


class TestOptimize(unittest.TestCase):
    """Tests for TripPlanner.optimize."""

    def setUp(self) -> None:
        self.repo = LocationRepository(make_in_memory_engine())
        self.planner = make_planner(repository=self.repo)
        asyncio.run(self.planner.add_location(W1))
        asyncio.run(self.planner.add_location(W2))
        self.planner.update_current_location(ORIGIN)

    def test_applied_result_is_persisted(self) -> None:
        """Derived metrics from an applied route reach storage."""
        outcome = asyncio.run(self.planner.optimize())
        self.assertEqual(outcome.status, 'applied')
        stored = self.repo.get('W1')
        assert stored is not None
        self.assertEqual(stored.travel_time_from_previous, datetime.timedelta(seconds=120))
        self.assertEqual(stored.distance_from_previous_m, 1100.0)

    def test_mutation_clears_persisted_metrics(self) -> None:
        """Invalidating the day clears the stored metrics as well."""
        asyncio.run(self.planner.optimize())
        asyncio.run(self.planner.add_location(_loc('W3', 0.03)))
        stored = self.repo.get('W1')
        assert stored is not None
        self.assertFalse(stored.has_route_metrics)

    def test_failure_is_reported(self) -> None:
        """A provider failure comes back as a failed outcome."""
        planner = make_planner(StubProvider(error=ProviderError('ZERO_RESULTS', 'none')))
        asyncio.run(planner.add_location(W1))
        asyncio.run(planner.add_location(W2))
        planner.update_current_location(ORIGIN)
        outcome = asyncio.run(planner.optimize())
        self.assertEqual(outcome.status, 'failed')
        self.assertEqual(outcome.error.reason, 'ZERO_RESULTS')  # type: ignore[union-attr]
        self.assertIsNone(planner.store.route)


class TestViews(unittest.TestCase):
    """Tests for overlays, markers and export."""

    def setUp(self) -> None:
        self.planner = make_planner()
        asyncio.run(self.planner.add_location(W1))
        asyncio.run(self.planner.add_location(W2))
        self.planner.update_current_location(ORIGIN)

    def test_overlays_default_threshold(self) -> None:
        """Stops about 1.1 km apart are separate zones at the 1 km default."""
        overlays = self.planner.overlays()
        self.assertEqual(overlays.threshold_m, 1000.0)
        self.assertEqual(len(overlays.zones), 2)
        self.assertEqual([m.params.number for m in overlays.markers], [1, 2])

    def test_overlays_wider_threshold(self) -> None:
        """A 2 km threshold merges the stops into one zone."""
        self.assertEqual(len(self.planner.overlays(threshold_m=2000).zones), 1)

    def test_overlays_follow_route(self) -> None:
        """After optimizing, markers are numbered in visiting order with geometry."""
        asyncio.run(self.planner.optimize())
        overlays = self.planner.overlays()
        numbered = [m.location_id for m in overlays.markers if m.kind == 'numbered']
        self.assertEqual(numbered, ['W2', 'W1'])
        self.assertEqual(len(overlays.leg_polylines), 2)

    def test_render_markers_includes_route_info(self) -> None:
        """Day markers render for every stop and every leg label."""
        asyncio.run(self.planner.optimize())
        bitmaps = asyncio.run(self.planner.render_markers())
        self.assertCountEqual(bitmaps, ['W1', 'W2', 'leg-1', 'leg-2'])
        self.assertTrue(bitmaps['leg-1'].png.startswith(b'\x89PNG'))

    def test_marker_png(self) -> None:
        """Markers are rendered through the cache."""
        bitmap = asyncio.run(self.planner.marker('destination'))
        self.assertTrue(bitmap.png.startswith(b'\x89PNG'))
        self.assertEqual(asyncio.run(self.planner.marker('destination')), bitmap)

    def test_export_csv(self) -> None:
        """Export writes a header and one row per location."""
        lines = self.planner.export_csv().splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(lines[0].startswith('Order,Name'))
        self.assertTrue(lines[1].startswith('1,W1'))


class TestTrips(unittest.TestCase):
    """Tests for trip management."""

    def test_create_trip_needs_repository(self) -> None:
        """Trips cannot be created without storage."""
        with self.assertRaises(RuntimeError):
            asyncio.run(make_planner().create_trip('Paris'))
        self.assertEqual(asyncio.run(make_planner().list_trips()), [])

    def test_create_and_list(self) -> None:
        """Created trips are listed."""
        planner = make_planner(repository=LocationRepository(make_in_memory_engine()))
        trip = asyncio.run(planner.create_trip('Paris'))
        self.assertEqual([t.id for t in asyncio.run(planner.list_trips())], [trip.id])


class TestBuildPlanner(unittest.TestCase):
    """Tests for build_planner."""

    def test_wires_from_config(self) -> None:
        """Configuration values reach the components."""
        config = PlannerConfig.model_validate(
            {'markers': {'capacity': 7}, 'store': {'noise_threshold_m': 50}}
        )
        planner = build_planner(
            engine=make_in_memory_engine(), provider=StubProvider(), config=config
        )
        self.assertEqual(planner.cache.capacity, 7)
        self.assertIsNotNone(planner.repository)
        planner.update_current_location(ORIGIN)
        # 0.0003 degrees of longitude at the equator is about 33 m.
        self.assertFalse(planner.update_current_location(LatLng(lat=0.0, lng=0.0003)))

    def test_without_engine(self) -> None:
        """Without an engine the planner runs purely in memory."""
        self.assertIsNone(build_planner(provider=StubProvider()).repository)


if __name__ == '__main__':
    unittest.main()
