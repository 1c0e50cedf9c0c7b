"""Zone clustering for map decluttering.

Locations whose great-circle distance is within the proximity threshold are
linked, and zones are the connected components of that relation: if A is near
B and B is near C, all three share a zone even when A and C are far apart.
Clustering is recomputed from scratch on every call and is deterministic for
a given input order and threshold.
"""

from __future__ import annotations

from collections.abc import Sequence

from . import geo
from .models import InvalidInputError, Location, Zone, ZoneCircle

MIN_THRESHOLD_M = 100.0
MAX_THRESHOLD_M = 5000.0
DEFAULT_THRESHOLD_M = 1000.0

# Extra radius added around the farthest member so pins sit inside the circle.
ZONE_PADDING_M = 100.0

ZONE_COLORS: list[str] = [
    '#64B5F6',  # blue
    '#81C784',  # green
    '#BA68C8',  # purple
    '#FFB74D',  # orange
    '#4DB6AC',  # teal
    '#F06292',  # pink
]


def validate_threshold(threshold_m: float) -> float:
    """Return *threshold_m* as a float, rejecting values outside the bounds."""
    try:
        value = float(threshold_m)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f'threshold must be a number, got {threshold_m!r}') from exc
    if not MIN_THRESHOLD_M <= value <= MAX_THRESHOLD_M:
        raise InvalidInputError(
            f'threshold {value:g} m outside [{MIN_THRESHOLD_M:g}, {MAX_THRESHOLD_M:g}]'
        )
    return value


def cluster(locations: Sequence[Location], threshold_m: float) -> list[Zone]:
    """Partition *locations* into proximity zones.

    Zones come out in order of their first member's position in *locations*,
    and members keep their input order.  Singletons are returned as
    one-element zones.

    Raises:
        InvalidInputError: *threshold_m* is outside the allowed bounds, or
            the same location id appears twice.
    """
    threshold = validate_threshold(threshold_m)
    ids = [loc.id for loc in locations]
    if len(set(ids)) != len(ids):
        raise InvalidInputError('duplicate location ids in clustering input')

    n = len(locations)
    parent = list(range(n))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i in range(n):
        for j in range(i + 1, n):
            if geo.distance_m(locations[i].position, locations[j].position) <= threshold:
                root_i, root_j = find(i), find(j)
                if root_i != root_j:
                    # Keep the lower index as root so zone order follows input order.
                    parent[max(root_i, root_j)] = min(root_i, root_j)

    groups: dict[int, list[Location]] = {}
    for i, loc in enumerate(locations):
        groups.setdefault(find(i), []).append(loc)
    return [Zone(members=tuple(members)) for _, members in sorted(groups.items())]


def zone_circle(zone: Zone, index: int) -> ZoneCircle:
    """Build the overlay circle enclosing *zone*.

    The center is the members' centroid and the radius reaches the farthest
    member plus :data:`ZONE_PADDING_M`.  Colours cycle through
    :data:`ZONE_COLORS` by *index*.
    """
    points = [loc.position for loc in zone.members]
    center = geo.centroid(points)
    radius = max(geo.distance_m(center, p) for p in points) + ZONE_PADDING_M
    return ZoneCircle(
        zone_id=f'zone_{index}',
        center=center,
        radius_m=radius,
        color=ZONE_COLORS[index % len(ZONE_COLORS)],
    )


def zone_circles(locations: Sequence[Location], threshold_m: float) -> list[ZoneCircle]:
    """Cluster *locations* and return one circle per zone."""
    return [zone_circle(zone, i) for i, zone in enumerate(cluster(locations, threshold_m))]
