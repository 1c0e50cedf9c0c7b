"""Map overlay recompute.

The presentation layer calls :func:`compute_overlays` after any mutation; it
is a pure function of the day's locations, the threshold and the route, so
zones and marker numbers never drift from the store.  Bitmaps are resolved
separately by :func:`render_overlays` through a shared marker cache.
"""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Sequence

import pydantic

from tripflow.markers.cache import MarkerCache
from tripflow.markers.render import Bitmap, MarkerParams

from . import geo, zones
from .models import (
    LatLng,
    Leg,
    Location,
    OptimizedRoute,
    ZoneCircle,
    format_distance,
    format_duration,
)

ROUTE_INFO_KIND = 'route_info'


class MarkerSpec(pydantic.BaseModel):
    """A marker to draw: where, and which bitmap."""

    model_config = pydantic.ConfigDict(frozen=True)

    # A location id, or ``leg-<n>`` for route info labels.
    location_id: str
    position: LatLng
    kind: str = 'numbered'
    params: MarkerParams


class Overlays(pydantic.BaseModel):
    """Everything the map needs to draw one day."""

    model_config = pydantic.ConfigDict(frozen=True)

    day: datetime.date
    threshold_m: float
    zones: tuple[ZoneCircle, ...] = ()
    # One ring per zone, in the same order as ``zones``.
    zone_polygons: tuple[tuple[LatLng, ...], ...] = ()
    markers: tuple[MarkerSpec, ...] = ()
    route_polyline: tuple[LatLng, ...] = ()
    leg_polylines: tuple[tuple[LatLng, ...], ...] = ()


def compute_overlays(
    locations: Sequence[Location],
    threshold_m: float,
    day: datetime.date,
    start_location_id: str | None = None,
    dark_mode: bool = False,
    route: OptimizedRoute | None = None,
) -> Overlays:
    """Derive zones, numbered markers and route geometry for *day*.

    Locations not on *day* are ignored.  Active locations are numbered from
    1 in the order given; skipped locations get an unnumbered greyed marker
    and are left out of zones.

    Raises:
        InvalidInputError: *threshold_m* is outside the allowed bounds.
    """
    threshold = zones.validate_threshold(threshold_m)
    day_locations = [loc for loc in locations if loc.effective_date == day]
    active = [loc for loc in day_locations if not loc.is_skipped]

    markers: list[MarkerSpec] = []
    number = 0
    for loc in day_locations:
        if not loc.is_skipped:
            number += 1
        params = MarkerParams(
            number=None if loc.is_skipped else number,
            name=loc.name,
            dark_mode=dark_mode,
            skipped=loc.is_skipped,
            is_start=loc.id == start_location_id,
        )
        markers.append(MarkerSpec(location_id=loc.id, position=loc.position, params=params))

    route_polyline: tuple[LatLng, ...] = ()
    leg_polylines: tuple[tuple[LatLng, ...], ...] = ()
    if route is not None and route.day == day:
        route_polyline = tuple(route.polyline)
        leg_polylines = tuple(route.leg_polylines)
        for i, leg in enumerate(route.legs, start=1):
            markers.append(_route_info(i, leg, dark_mode))

    circles = tuple(zones.zone_circles(active, threshold))
    return Overlays(
        day=day,
        threshold_m=threshold,
        zones=circles,
        zone_polygons=tuple(
            tuple(geo.circle_to_polygon(c.center, c.radius_m)) for c in circles
        ),
        markers=tuple(markers),
        route_polyline=route_polyline,
        leg_polylines=leg_polylines,
    )


def _route_info(number: int, leg: Leg, dark_mode: bool) -> MarkerSpec:
    """Duration and distance label placed halfway along *leg*."""
    points = leg.polyline or (leg.start, leg.end)
    return MarkerSpec(
        location_id=f'leg-{number}',
        position=points[len(points) // 2],
        kind=ROUTE_INFO_KIND,
        params=MarkerParams(
            number=number,
            dark_mode=dark_mode,
            duration=format_duration(leg.duration),
            distance=format_distance(leg.distance_m),
        ),
    )


async def render_overlays(overlays: Overlays, cache: MarkerCache) -> dict[str, Bitmap]:
    """Resolve every marker in *overlays* to a bitmap, keyed by marker id.

    Raises:
        RenderError: any marker failed to render.
    """
    bitmaps = await asyncio.gather(
        *(cache.get(spec.kind, spec.params) for spec in overlays.markers)
    )
    return {spec.location_id: bitmap for spec, bitmap in zip(overlays.markers, bitmaps)}
