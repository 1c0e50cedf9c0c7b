"""Geospatial helpers shared by zone clustering and the state store."""

from __future__ import annotations

from collections.abc import Sequence

from geopy import distance as geopy_distance  # pyright: ignore[reportMissingTypeStubs]

from .models import LatLng


def distance_m(a: LatLng, b: LatLng) -> float:
    """Great-circle distance between two points in metres."""
    return geopy_distance.great_circle((a.lat, a.lng), (b.lat, b.lng)).meters


def centroid(points: Sequence[LatLng]) -> LatLng:
    """Arithmetic mean of *points*; adequate for city-scale clusters."""
    if not points:
        raise ValueError('centroid of an empty point set')
    lat = sum(p.lat for p in points) / len(points)
    lng = sum(p.lng for p in points) / len(points)
    return LatLng(lat=lat, lng=lng)


def circle_to_polygon(center: LatLng, radius_m: float, points: int = 64) -> list[LatLng]:
    """Approximate a geodesic circle with a ring of *points* vertices."""
    circle = geopy_distance.great_circle(meters=radius_m)
    ring: list[LatLng] = []
    for i in range(points):
        vertex = circle.destination((center.lat, center.lng), bearing=360.0 * i / points)
        ring.append(LatLng(lat=vertex.latitude, lng=vertex.longitude))
    return ring
