"""In-memory trip state store.

:class:`TripStore` is the authoritative view of pinned locations, the
selected date, the device position and the currently materialized optimized
route.  All state lives in one immutable :class:`_Snapshot`; every mutation
builds a new snapshot and swaps it in with a single assignment, so a reader
never sees a location list that disagrees with the route next to it.

Route invalidation
------------------
Each day has a generation counter.  Any change to a day's waypoint set (add,
remove, reschedule in or out, skip toggle, manual reorder) bumps it, clears
the route when it belongs to that day, and clears the day's derived
travel-time/distance fields.  Route results computed against an older
generation are refused by :meth:`TripStore.apply_route`.

Renames and stay-duration edits do not touch the waypoint set, so they leave
the route in place; :meth:`TripStore.totals` always reads current stays.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Sequence

import pydantic

from . import geo
from .models import (
    InvalidInputError,
    LatLng,
    Location,
    OptimizedRoute,
    RouteTotals,
)

logger = logging.getLogger(__name__)

# Device moves shorter than this are GPS noise and are ignored.
DEFAULT_NOISE_THRESHOLD_M = 20.0


class _Snapshot(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    locations: tuple[Location, ...] = ()
    selected_date: datetime.date
    generations: dict[datetime.date, int] = pydantic.Field(default_factory=dict)
    route: OptimizedRoute | None = None
    current_location: LatLng | None = None


def _revalidated(location: Location, **changes: object) -> Location:
    """Copy *location* with *changes*, running field validation again."""
    data = location.model_dump()
    data.update(changes)
    return Location.model_validate(data)


class TripStore:
    """Single shared store for one user's trip state."""

    def __init__(
        self,
        selected_date: datetime.date | None = None,
        locations: Iterable[Location] = (),
        noise_threshold_m: float = DEFAULT_NOISE_THRESHOLD_M,
    ) -> None:
        locs = tuple(locations)
        ids = [loc.id for loc in locs]
        if len(set(ids)) != len(ids):
            raise InvalidInputError('duplicate location ids')
        self._noise_threshold_m = noise_threshold_m
        self._snapshot = _Snapshot(
            locations=locs,
            selected_date=selected_date or datetime.date.today(),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def locations(self) -> tuple[Location, ...]:
        return self._snapshot.locations

    @property
    def selected_date(self) -> datetime.date:
        return self._snapshot.selected_date

    @property
    def current_location(self) -> LatLng | None:
        return self._snapshot.current_location

    @property
    def route(self) -> OptimizedRoute | None:
        """The materialized route for the selected date, if any."""
        return self._snapshot.route

    def get(self, location_id: str) -> Location | None:
        for loc in self._snapshot.locations:
            if loc.id == location_id:
                return loc
        return None

    def generation(self, day: datetime.date | None = None) -> int:
        """Current generation of *day* (default: the selected date)."""
        snap = self._snapshot
        return snap.generations.get(day or snap.selected_date, 0)

    def day_group(self, day: datetime.date | None = None) -> list[Location]:
        """Every location whose effective date is *day*, in display order."""
        snap = self._snapshot
        target = day or snap.selected_date
        return [loc for loc in snap.locations if loc.effective_date == target]

    def route_candidates(self, day: datetime.date | None = None) -> list[Location]:
        """The non-skipped members of the day group."""
        return [loc for loc in self.day_group(day) if not loc.is_skipped]

    def dates_with_locations(self) -> set[datetime.date]:
        return {loc.effective_date for loc in self._snapshot.locations}

    def totals(self, departure: datetime.datetime | None = None) -> RouteTotals:
        """Aggregate metrics for the current route.

        Trip time is the route's travel time plus the stay at every routed
        stop except the last.  All values are zero when there is no route.
        """
        snap = self._snapshot
        route = snap.route
        if route is None or route.is_empty:
            return RouteTotals()
        stays = datetime.timedelta(0)
        by_id = {loc.id: loc for loc in snap.locations}
        for loc_id in route.ordered_ids[:-1]:
            loc = by_id.get(loc_id)
            if loc is not None:
                stays += loc.stay_duration
        trip_time = route.total_duration + stays
        return RouteTotals(
            travel_time=route.total_duration,
            distance_m=route.total_distance_m,
            trip_time=trip_time,
            eta=departure + trip_time if departure is not None else None,
        )

    # ------------------------------------------------------------------
    # Location mutations
    # ------------------------------------------------------------------

    def add_location(self, location: Location) -> Location:
        """Add *location*, scheduling it on the selected date if undated.

        Raises:
            InvalidInputError: a location with the same id already exists.
        """
        snap = self._snapshot
        if self.get(location.id) is not None:
            raise InvalidInputError(f'location {location.id} already exists')
        if location.scheduled_date is None:
            location = location.model_copy(update={'scheduled_date': snap.selected_date})
        location = location.without_route_metrics()
        self._commit(
            snap.locations + (location,),
            touched={location.effective_date},
        )
        logger.debug('Added location %s on %s', location.id, location.effective_date)
        return location

    def remove_location(self, location_id: str) -> bool:
        """Delete one location; False when it does not exist."""
        return self.remove_locations([location_id]) == 1

    def remove_locations(self, location_ids: Iterable[str]) -> int:
        """Delete every listed location and return how many were removed."""
        doomed = set(location_ids)
        snap = self._snapshot
        kept = tuple(loc for loc in snap.locations if loc.id not in doomed)
        removed = [loc for loc in snap.locations if loc.id in doomed]
        if not removed:
            return 0
        self._commit(kept, touched={loc.effective_date for loc in removed})
        logger.debug('Removed %d location(s)', len(removed))
        return len(removed)

    def rename_location(self, location_id: str, name: str) -> Location | None:
        """Rename a location.  The route is kept since stops are unchanged."""
        loc = self.get(location_id)
        if loc is None:
            return None
        try:
            renamed = _revalidated(loc, name=name)
        except pydantic.ValidationError as exc:
            raise InvalidInputError(str(exc)) from exc
        self._replace({renamed.id: renamed})
        return renamed

    def reschedule_location(
        self, location_id: str, day: datetime.date
    ) -> Location | None:
        moved = self.reschedule_locations([location_id], day)
        return moved[0] if moved else None

    def reschedule_locations(
        self, location_ids: Iterable[str], day: datetime.date
    ) -> list[Location]:
        """Move locations to *day*; both the old and new days are invalidated."""
        wanted = set(location_ids)
        snap = self._snapshot
        touched: set[datetime.date] = set()
        moved: list[Location] = []
        new_locations: list[Location] = []
        for loc in snap.locations:
            if loc.id in wanted and loc.effective_date != day:
                touched.update({loc.effective_date, day})
                loc = loc.model_copy(update={'scheduled_date': day})
                moved.append(loc)
            elif loc.id in wanted:
                moved.append(loc)
            new_locations.append(loc)
        if touched:
            self._commit(tuple(new_locations), touched=touched)
        return [self.get(loc.id) or loc for loc in moved]

    def set_stay_duration(
        self, location_id: str, duration: datetime.timedelta
    ) -> Location | None:
        """Change the stay at a location without invalidating the route."""
        loc = self.get(location_id)
        if loc is None:
            return None
        if duration < datetime.timedelta(0):
            raise InvalidInputError('stay duration must not be negative')
        updated = loc.model_copy(update={'stay_duration': duration})
        self._replace({updated.id: updated})
        return updated

    def set_skipped(self, location_id: str, skipped: bool) -> Location | None:
        """Toggle the skipped flag; changes the waypoint set of the day."""
        loc = self.get(location_id)
        if loc is None:
            return None
        if loc.is_skipped == skipped:
            return loc
        updated = loc.model_copy(update={'is_skipped': skipped})
        self._replace({updated.id: updated}, touched={updated.effective_date})
        return self.get(location_id)

    def reorder_location(
        self, old_index: int, new_index: int, day: datetime.date | None = None
    ) -> bool:
        """Move a location within one day's list.

        Indices refer to :meth:`day_group` for *day* (default: the selected
        date).  Returns False when either index is out of range.
        """
        snap = self._snapshot
        day = day or snap.selected_date
        group = self.day_group(day)
        if not (0 <= old_index < len(group) and 0 <= new_index < len(group)):
            return False
        if old_index == new_index:
            return True
        reordered = list(group)
        reordered.insert(new_index, reordered.pop(old_index))
        self._commit(
            self._splice_day(snap.locations, day, reordered),
            touched={day},
        )
        return True

    def copy_locations_to_date(
        self, location_ids: Sequence[str], day: datetime.date
    ) -> list[Location]:
        """Duplicate locations onto *day* with fresh ids and no route metrics."""
        snap = self._snapshot
        by_id = {loc.id: loc for loc in snap.locations}
        copies = [
            Location(
                name=by_id[loc_id].name,
                address=by_id[loc_id].address,
                position=by_id[loc_id].position,
                scheduled_date=day,
                stay_duration=by_id[loc_id].stay_duration,
                trip_id=by_id[loc_id].trip_id,
            )
            for loc_id in location_ids
            if loc_id in by_id
        ]
        if copies:
            self._commit(snap.locations + tuple(copies), touched={day})
        return copies

    def clear_trip(self) -> None:
        """Remove every location and the route."""
        snap = self._snapshot
        touched = {loc.effective_date for loc in snap.locations}
        touched.add(snap.selected_date)
        self._commit((), touched=touched)
        logger.info('Cleared trip (%d location(s))', len(snap.locations))

    # ------------------------------------------------------------------
    # Date and device position
    # ------------------------------------------------------------------

    def select_date(self, day: datetime.date) -> bool:
        """Switch the selected date.  Returns False if it was already selected.

        The previous day's route is invalidated and any in-flight
        optimization for it becomes stale.
        """
        snap = self._snapshot
        if day == snap.selected_date:
            return False
        previous = snap.selected_date
        self._commit(snap.locations, touched={previous}, selected_date=day)
        logger.debug('Selected date changed %s -> %s', previous, day)
        return True

    def update_current_location(self, point: LatLng) -> bool:
        """Record the device position, ignoring moves below the noise threshold."""
        snap = self._snapshot
        previous = snap.current_location
        if previous is not None and geo.distance_m(previous, point) < self._noise_threshold_m:
            return False
        self._snapshot = snap.model_copy(update={'current_location': point})
        return True

    # ------------------------------------------------------------------
    # Route write-back
    # ------------------------------------------------------------------

    def apply_route(
        self,
        route: OptimizedRoute,
        ordered: Sequence[Location],
        generation: int,
    ) -> bool:
        """Install an optimization result computed at *generation*.

        *ordered* holds the routed locations in visiting order with their
        derived fields already set.  The result is refused, and False
        returned, when the day's generation has moved on or the day is no
        longer selected.  Otherwise the day's list is reordered to match
        and the route swapped in, all in one snapshot.

        Raises:
            InvalidInputError: *ordered* is not exactly the day's current
                route candidates.
        """
        snap = self._snapshot
        current = snap.generations.get(route.day, 0)
        if generation != current or route.day != snap.selected_date:
            logger.info(
                'Discarding stale route for %s (generation %d, now %d)',
                route.day,
                generation,
                current,
            )
            return False

        group = self.day_group(route.day)
        candidates = {loc.id for loc in group if not loc.is_skipped}
        ordered_ids = [loc.id for loc in ordered]
        if set(ordered_ids) != candidates or len(ordered_ids) != len(candidates):
            raise InvalidInputError('routed locations do not match the day group')

        skipped = [loc.without_route_metrics() for loc in group if loc.is_skipped]
        new_day = list(ordered) + skipped
        self._snapshot = snap.model_copy(
            update={
                'locations': self._splice_day(snap.locations, route.day, new_day),
                'route': None if route.is_empty else route,
            }
        )
        logger.info(
            'Applied route for %s: %d stop(s), %d leg(s)',
            route.day,
            len(ordered),
            len(route.legs),
        )
        return True

    def clear_route(self, day: datetime.date | None = None) -> None:
        """Drop the route for *day* and clear its derived fields."""
        snap = self._snapshot
        target = day or snap.selected_date
        route = snap.route
        if route is not None and route.day == target:
            route = None
        self._snapshot = snap.model_copy(
            update={
                'locations': self._cleared(snap.locations, {target}),
                'route': route,
            }
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _cleared(
        locations: Iterable[Location], days: set[datetime.date]
    ) -> tuple[Location, ...]:
        return tuple(
            loc.without_route_metrics() if loc.effective_date in days else loc
            for loc in locations
        )

    @staticmethod
    def _splice_day(
        locations: Sequence[Location],
        day: datetime.date,
        day_order: Sequence[Location],
    ) -> tuple[Location, ...]:
        """Write *day_order* into the slots the day's locations occupy."""
        replacements = iter(day_order)
        return tuple(
            next(replacements) if loc.effective_date == day else loc
            for loc in locations
        )

    def _replace(
        self,
        updates: dict[str, Location],
        touched: set[datetime.date] | None = None,
    ) -> None:
        snap = self._snapshot
        locations = tuple(updates.get(loc.id, loc) for loc in snap.locations)
        if touched:
            self._commit(locations, touched=touched)
        else:
            self._snapshot = snap.model_copy(update={'locations': locations})

    def _commit(
        self,
        locations: tuple[Location, ...],
        touched: set[datetime.date],
        selected_date: datetime.date | None = None,
    ) -> None:
        """Swap in *locations*, invalidating every day in *touched*."""
        snap = self._snapshot
        generations = dict(snap.generations)
        for day in touched:
            generations[day] = generations.get(day, 0) + 1
        route = snap.route
        if route is not None and route.day in touched:
            route = None
        self._snapshot = _Snapshot(
            locations=self._cleared(locations, touched),
            selected_date=selected_date or snap.selected_date,
            generations=generations,
            route=route,
            current_location=snap.current_location,
        )
