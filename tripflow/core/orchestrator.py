"""Route optimization orchestrator.

Turns a day's route candidates into a directions request, calls the provider
and reconciles the answer back onto the locations:

* the start is either the device position or one of the day's locations; a
  start location is sent as the origin, not as a waypoint;
* a single remaining stop is a direct origin to destination request;
* with ``preserve_order`` the last stop is the destination and the rest are
  sent in caller order;
* otherwise the request is a round trip back to the origin with
  ``optimize:true`` so the provider may permute every stop, and the trailing
  return leg is dropped.

Failures never mutate anything.  :meth:`RouteOrchestrator.optimize` returns
a :class:`RouteResult` or a :class:`RouteError` value; it does not raise for
provider problems.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import time
from collections.abc import Sequence
from typing import Literal

import pydantic

from tripflow.directions.client import DirectionsProvider, ProviderError
from tripflow.directions.models import DirectionsRequest, DirectionsResponse

from .models import (
    CURRENT_LOCATION,
    LatLng,
    Leg,
    Location,
    OptimizedRoute,
    RouteTotals,
)
from .store import TripStore

logger = logging.getLogger(__name__)

# Upper bound on one provider round trip, on top of the client's own
# connect/read timeouts.
DEFAULT_REQUEST_TIMEOUT = 30.0


class RouteResult(pydantic.BaseModel):
    """A successful optimization, not yet applied to any store."""

    model_config = pydantic.ConfigDict(frozen=True)

    success: Literal[True] = True
    route: OptimizedRoute
    # Routed locations in visiting order, derived fields set.
    ordered: tuple[Location, ...] = ()
    totals: RouteTotals = RouteTotals()


class RouteError(pydantic.BaseModel):
    """A failed optimization.  Nothing was changed."""

    model_config = pydantic.ConfigDict(frozen=True)

    success: Literal[False] = False
    reason: str
    error_message: str = ''


class RouteOutcome(pydantic.BaseModel):
    """What happened when a day's optimization was run against the store."""

    status: Literal['applied', 'stale', 'failed']
    result: RouteResult | None = None
    error: RouteError | None = None
    totals: RouteTotals = RouteTotals()


def _error(reason: str, message: str = '') -> RouteError:
    return RouteError(reason=reason, error_message=message)


def _totals(route: OptimizedRoute, ordered: Sequence[Location]) -> RouteTotals:
    stays = sum(
        (loc.stay_duration for loc in ordered[:-1]), datetime.timedelta(0)
    )
    return RouteTotals(
        travel_time=route.total_duration,
        distance_m=route.total_distance_m,
        trip_time=route.total_duration + stays,
    )


class RouteOrchestrator:
    """Runs optimizations against a :class:`DirectionsProvider`."""

    def __init__(
        self,
        provider: DirectionsProvider,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._provider = provider
        self._request_timeout = request_timeout

    async def optimize(
        self,
        origin: LatLng | None,
        start_location_id: str | None,
        waypoints: Sequence[Location],
        preserve_order: bool = False,
        day: datetime.date | None = None,
    ) -> RouteResult | RouteError:
        """Resolve a visiting order for *waypoints*.

        Args:
            origin: Device position, used when the start is the current
                location.
            start_location_id: ``'current_location'``, the id of one of
                *waypoints*, or None to pick the device position when known
                and the first waypoint otherwise.
            waypoints: The day's route candidates in caller order.
            preserve_order: Keep caller order instead of letting the
                provider permute the stops.
            day: Day the route belongs to; defaults to the first waypoint's
                effective date.
        """
        started = time.perf_counter()
        stops = [loc for loc in waypoints if not loc.is_skipped]
        ids = [loc.id for loc in stops]
        if len(set(ids)) != len(ids):
            return _error('invalid_input', 'duplicate location ids')
        if day is None:
            day = stops[0].effective_date if stops else datetime.date.today()

        # Resolve where the route starts.
        start: Location | None = None
        if start_location_id is None:
            start_location_id = CURRENT_LOCATION if origin is not None else None
            if start_location_id is None and stops:
                start_location_id = stops[0].id
        if start_location_id == CURRENT_LOCATION:
            if origin is None:
                return _error('invalid_input', 'current location is not known')
            origin_point = origin
        elif start_location_id is not None:
            start = next((loc for loc in stops if loc.id == start_location_id), None)
            if start is None:
                return _error(
                    'invalid_input', f'start location {start_location_id} is not a waypoint'
                )
            origin_point = start.position
            stops = [loc for loc in stops if loc.id != start.id]
        else:
            # No stops and no origin.
            return RouteResult(route=OptimizedRoute(day=day, start=CURRENT_LOCATION))

        head = [start.without_route_metrics()] if start is not None else []
        if not stops:
            route = OptimizedRoute(
                day=day,
                start=start_location_id,
                ordered_ids=tuple(loc.id for loc in head),
            )
            return RouteResult(route=route, ordered=tuple(head))

        request, expected_legs = self._build_request(origin_point, stops, preserve_order)
        try:
            response = await asyncio.wait_for(
                self._provider.directions(request), self._request_timeout
            )
        except ProviderError as exc:
            logger.warning(
                'Route optimization for %s failed after %.2fs: %s',
                day,
                time.perf_counter() - started,
                exc,
            )
            return _error(exc.reason, str(exc))
        except TimeoutError:
            logger.warning('Route optimization for %s timed out', day)
            return _error('timeout', f'no response within {self._request_timeout:g}s')

        outcome = self._reconcile(response, stops, expected_legs, preserve_order)
        if isinstance(outcome, RouteError):
            logger.warning('Route optimization for %s rejected: %s', day, outcome.error_message)
            return outcome
        order, legs = outcome

        visited = [
            stops[index].with_route_metrics(leg.duration, leg.distance_m)
            for index, leg in zip(order, legs)
        ]
        ordered = head + visited
        route = OptimizedRoute(
            day=day,
            start=start_location_id,
            waypoint_order=tuple(order),
            ordered_ids=tuple(loc.id for loc in ordered),
            legs=tuple(legs),
        )
        logger.info(
            'Optimized %d stop(s) for %s in %.2fs (order=%s, preserve_order=%s)',
            len(stops),
            day,
            time.perf_counter() - started,
            list(order),
            preserve_order,
        )
        return RouteResult(route=route, ordered=tuple(ordered), totals=_totals(route, ordered))

    @staticmethod
    def _build_request(
        origin: LatLng, stops: Sequence[Location], preserve_order: bool
    ) -> tuple[DirectionsRequest, int]:
        """Return the provider request and how many legs the answer must have."""
        if len(stops) == 1:
            return DirectionsRequest(origin=origin, destination=stops[0].position), 1
        if preserve_order:
            request = DirectionsRequest(
                origin=origin,
                destination=stops[-1].position,
                waypoints=tuple(loc.position for loc in stops[:-1]),
            )
            return request, len(stops)
        request = DirectionsRequest(
            origin=origin,
            destination=origin,
            waypoints=tuple(loc.position for loc in stops),
            optimize=True,
        )
        # One leg per stop plus the return to the origin.
        return request, len(stops) + 1

    @staticmethod
    def _reconcile(
        response: DirectionsResponse,
        stops: Sequence[Location],
        expected_legs: int,
        preserve_order: bool,
    ) -> tuple[list[int], list[Leg]] | RouteError:
        if not response.ok:
            return _error(response.status, response.error_message or '')
        if not response.routes:
            return _error('no_route', 'provider returned no routes')
        provider_route = response.routes[0]
        if not provider_route.legs:
            return _error('no_legs', 'provider returned a route without legs')
        if len(provider_route.legs) != expected_legs:
            return _error(
                'invalid_response',
                f'expected {expected_legs} legs, got {len(provider_route.legs)}',
            )
        try:
            legs = [leg.to_leg() for leg in provider_route.legs]
        except ValueError as exc:
            return _error('invalid_response', f'bad leg geometry: {exc}')

        n = len(stops)
        if n == 1 or preserve_order:
            return list(range(n)), legs

        order = provider_route.waypoint_order
        if order is None or sorted(order) != list(range(n)):
            return _error('invalid_response', f'waypoint_order {order} is not a permutation')
        # Drop the return-to-origin leg.
        return list(order), legs[:n]

    async def optimize_day(
        self,
        store: TripStore,
        day: datetime.date | None = None,
        preserve_order: bool = False,
        start_location_id: str | None = None,
        departure: datetime.datetime | None = None,
    ) -> RouteOutcome:
        """Optimize *day* from *store* and write the result back.

        The day's generation is read before the provider call; if it moved
        on by the time the answer arrives, the answer is dropped and the
        outcome reported as ``'stale'``.  Only the selected date can be
        optimized; any other day fails with ``invalid_input`` before the
        provider is called.
        """
        day = day or store.selected_date
        if day != store.selected_date:
            error = _error('invalid_input', f'{day} is not the selected date')
            return RouteOutcome(status='failed', error=error, totals=store.totals(departure))
        generation = store.generation(day)
        result = await self.optimize(
            origin=store.current_location,
            start_location_id=start_location_id,
            waypoints=store.route_candidates(day),
            preserve_order=preserve_order,
            day=day,
        )
        if isinstance(result, RouteError):
            return RouteOutcome(status='failed', error=result, totals=store.totals(departure))
        if not store.apply_route(result.route, result.ordered, generation):
            return RouteOutcome(status='stale', result=result, totals=store.totals(departure))
        return RouteOutcome(status='applied', result=result, totals=store.totals(departure))
