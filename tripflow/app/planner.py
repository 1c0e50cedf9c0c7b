"""Trip planner service: composes the store, orchestrator, marker cache and
repository, and writes store changes through to persistence."""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Iterable, Sequence

import sqlalchemy
from fastapi.concurrency import run_in_threadpool

from tripflow.core import export
from tripflow.core.models import CURRENT_LOCATION, LatLng, Location
from tripflow.core.orchestrator import RouteOrchestrator, RouteOutcome
from tripflow.core.overlays import Overlays, compute_overlays, render_overlays
from tripflow.core.store import TripStore
from tripflow.directions.client import DirectionsClient, DirectionsProvider
from tripflow.markers.cache import MarkerCache
from tripflow.markers.render import Bitmap, MarkerParams
from tripflow.persistence.models import TripRecord
from tripflow.persistence.repository import LocationRepository

from .config import PlannerConfig

logger = logging.getLogger(__name__)


class TripPlanner:
    """Entry point for every planner command issued by the presentation layer.

    Commands mutate the store on the event loop, then write the touched day
    groups to the repository on a worker thread.  Writes are serialised so
    that the last command to finish is also the last one stored.
    """

    def __init__(
        self,
        store: TripStore,
        orchestrator: RouteOrchestrator,
        cache: MarkerCache,
        repository: LocationRepository | None = None,
        config: PlannerConfig | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.cache = cache
        self.repository = repository
        self.config = config or PlannerConfig()
        self._write_lock = asyncio.Lock()

    async def load(self) -> int:
        """Replace the store contents with everything in the repository."""
        if self.repository is None:
            return 0
        locations = await run_in_threadpool(self.repository.list_all)
        self.store = TripStore(
            selected_date=self.store.selected_date,
            locations=locations,
            noise_threshold_m=self.config.store.noise_threshold_m,
        )
        logger.info('Loaded %d location(s) from storage', len(locations))
        return len(locations)

    # ------------------------------------------------------------------
    # Write-through
    # ------------------------------------------------------------------

    async def _sync_days(
        self, days: Iterable[datetime.date], deleted: Sequence[str] = ()
    ) -> None:
        """Persist every location of *days* as the store now holds them."""
        if self.repository is None:
            return
        async with self._write_lock:
            groups = [self.store.day_group(day) for day in set(days)]
            await run_in_threadpool(self._write, groups, deleted)

    def _write(self, groups: list[list[Location]], deleted: Sequence[str]) -> None:
        assert self.repository is not None
        for location_id in deleted:
            self.repository.delete(location_id)
        for group in groups:
            self.repository.upsert_many(group)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def add_location(self, location: Location) -> Location:
        added = self.store.add_location(location)
        await self._sync_days([added.effective_date])
        return added

    async def remove_location(self, location_id: str) -> bool:
        location = self.store.get(location_id)
        if location is None or not self.store.remove_location(location_id):
            return False
        await self._sync_days([location.effective_date], deleted=[location_id])
        return True

    async def update_location(
        self,
        location_id: str,
        name: str | None = None,
        scheduled_date: datetime.date | None = None,
        stay_duration: datetime.timedelta | None = None,
        is_skipped: bool | None = None,
    ) -> Location | None:
        """Apply any combination of edits; None when the location is unknown."""
        current = self.store.get(location_id)
        if current is None:
            return None
        days = {current.effective_date}
        if name is not None:
            self.store.rename_location(location_id, name)
        if stay_duration is not None:
            self.store.set_stay_duration(location_id, stay_duration)
        if is_skipped is not None:
            self.store.set_skipped(location_id, is_skipped)
        if scheduled_date is not None:
            self.store.reschedule_location(location_id, scheduled_date)
            days.add(scheduled_date)
        updated = self.store.get(location_id)
        await self._sync_days(days)
        return updated

    async def reorder_location(
        self, day: datetime.date, old_index: int, new_index: int
    ) -> bool:
        """Move one stop within *day*; False when an index is out of range."""
        if not self.store.reorder_location(old_index, new_index, day=day):
            return False
        await self._sync_days([day])
        return True

    async def copy_locations(
        self, location_ids: list[str], day: datetime.date
    ) -> list[Location]:
        copies = self.store.copy_locations_to_date(location_ids, day)
        await self._sync_days([day])
        return copies

    async def clear_trip(self) -> int:
        """Delete every location from the store and from storage."""
        ids = [loc.id for loc in self.store.locations]
        self.store.clear_trip()
        await self._sync_days([], deleted=ids)
        return len(ids)

    async def select_date(self, day: datetime.date) -> bool:
        previous = self.store.selected_date
        changed = self.store.select_date(day)
        if changed:
            await self._sync_days([previous])
        return changed

    def update_current_location(self, point: LatLng) -> bool:
        return self.store.update_current_location(point)

    async def create_trip(self, name: str, trip_id: str | None = None) -> TripRecord:
        if self.repository is None:
            raise RuntimeError('no repository configured')
        return await run_in_threadpool(self.repository.save_trip, name, trip_id)

    async def list_trips(self) -> list[TripRecord]:
        if self.repository is None:
            return []
        return await run_in_threadpool(self.repository.list_trips)

    async def optimize(
        self,
        day: datetime.date | None = None,
        preserve_order: bool = False,
        start_location_id: str | None = None,
        departure: datetime.datetime | None = None,
    ) -> RouteOutcome:
        """Optimize *day* (default: the selected date) and persist the result."""
        outcome = await self.orchestrator.optimize_day(
            self.store,
            day=day,
            preserve_order=preserve_order,
            start_location_id=start_location_id,
            departure=departure,
        )
        if outcome.status == 'applied' and outcome.result is not None:
            await self._sync_days([outcome.result.route.day])
        return outcome

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def overlays(
        self,
        day: datetime.date | None = None,
        threshold_m: float | None = None,
        dark_mode: bool = False,
    ) -> Overlays:
        """Recompute zones and markers for *day*."""
        day = day or self.store.selected_date
        if threshold_m is None:
            threshold_m = self.config.zones.default_threshold_m
        route = self.store.route
        start = None
        if route is not None and route.day == day and route.start != CURRENT_LOCATION:
            start = route.start
        return compute_overlays(
            self.store.day_group(day),
            threshold_m,
            day,
            start_location_id=start,
            dark_mode=dark_mode,
            route=route,
        )

    async def render_markers(
        self,
        day: datetime.date | None = None,
        threshold_m: float | None = None,
        dark_mode: bool = False,
    ) -> dict[str, Bitmap]:
        """Bitmaps for every marker of *day*, keyed by marker id."""
        return await render_overlays(
            self.overlays(day, threshold_m=threshold_m, dark_mode=dark_mode), self.cache
        )

    async def marker(self, kind: str, params: MarkerParams | None = None) -> Bitmap:
        return await self.cache.get(kind, params)

    def export_csv(self, day: datetime.date | None = None) -> str:
        return export.trip_csv(self.store.day_group(day))


def build_planner(
    engine: sqlalchemy.Engine | None = None,
    provider: DirectionsProvider | None = None,
    config: PlannerConfig | None = None,
) -> TripPlanner:
    """Wire a planner from configuration."""
    config = config or PlannerConfig()
    if provider is None:
        provider = DirectionsClient(
            base_url=config.directions.base_url,
            connect_timeout=config.directions.connect_timeout,
            read_timeout=config.directions.read_timeout,
        )
    return TripPlanner(
        store=TripStore(noise_threshold_m=config.store.noise_threshold_m),
        orchestrator=RouteOrchestrator(
            provider, request_timeout=config.directions.request_timeout
        ),
        cache=MarkerCache(
            capacity=config.markers.capacity,
            render_timeout=config.markers.render_timeout,
        ),
        repository=LocationRepository(engine) if engine is not None else None,
        config=config,
    )
