"""Typed request and response shapes for the directions provider.

The provider's JSON body is validated into these models at the client
boundary; anything that does not fit is rejected there rather than being
read with ad hoc dictionary lookups further in.
"""

from __future__ import annotations

import datetime

import pydantic

from tripflow.core import polyline
from tripflow.core.models import LatLng, Leg

OK_STATUS = 'OK'
OPTIMIZE_PREFIX = 'optimize:true|'


class DirectionsRequest(pydantic.BaseModel):
    """One directions query: origin, destination and optional waypoints."""

    model_config = pydantic.ConfigDict(frozen=True)

    origin: LatLng
    destination: LatLng
    waypoints: tuple[LatLng, ...] = ()
    optimize: bool = False
    mode: str = 'driving'

    def to_params(self, api_key: str) -> dict[str, str]:
        """Build the query string for the JSON endpoint."""
        params = {
            'origin': self.origin.as_param(),
            'destination': self.destination.as_param(),
            'mode': self.mode,
            'key': api_key,
        }
        if self.waypoints:
            joined = '|'.join(point.as_param() for point in self.waypoints)
            params['waypoints'] = f'{OPTIMIZE_PREFIX}{joined}' if self.optimize else joined
        return params


class TextValue(pydantic.BaseModel):
    """A numeric quantity with its provider-formatted label."""

    text: str = ''
    value: float


class EncodedPolyline(pydantic.BaseModel):
    points: str


class DirectionsStep(pydantic.BaseModel):
    polyline: EncodedPolyline
    start_location: LatLng | None = None
    end_location: LatLng | None = None


class DirectionsLeg(pydantic.BaseModel):
    """One leg of a provider route."""

    duration: TextValue
    distance: TextValue
    start_location: LatLng
    end_location: LatLng
    steps: list[DirectionsStep] = pydantic.Field(default_factory=list)

    def decoded_points(self) -> list[LatLng]:
        """The leg's geometry, always beginning at its start coordinate.

        The start is prefixed only when the first step does not already
        begin there (compared at polyline precision).

        Raises:
            ValueError: a step polyline is malformed.
        """
        points: list[LatLng] = []
        for step in self.steps:
            points.extend(polyline.decode(step.polyline.points))
        start = self.start_location
        if points and polyline.same_point(points[0], start):
            points[0] = start
        else:
            points.insert(0, start)
        return points

    def to_leg(self) -> Leg:
        return Leg(
            duration=datetime.timedelta(seconds=int(self.duration.value)),
            distance_m=float(self.distance.value),
            start=self.start_location,
            end=self.end_location,
            polyline=tuple(self.decoded_points()),
        )


class DirectionsRoute(pydantic.BaseModel):
    legs: list[DirectionsLeg] = pydantic.Field(default_factory=list)
    # Present only when waypoint optimization was requested.
    waypoint_order: list[int] | None = None
    overview_polyline: EncodedPolyline | None = None
    summary: str = ''


class DirectionsResponse(pydantic.BaseModel):
    """Top-level provider response."""

    status: str
    routes: list[DirectionsRoute] = pydantic.Field(default_factory=list)
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == OK_STATUS
