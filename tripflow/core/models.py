"""Domain models for pinned locations, optimized routes and zones.

Every model here is an immutable pydantic value.  Mutations go through
``model_copy(update=...)`` so that the state store can swap whole snapshots
without readers ever seeing a partially updated record.
"""

from __future__ import annotations

import datetime
import hashlib
import math
import uuid

import pydantic

# Default time spent at a stop when the user has not set one.
DEFAULT_STAY = datetime.timedelta(minutes=30)

# Start reference meaning "the device's current position", as opposed to a
# location id.
CURRENT_LOCATION = 'current_location'


class InvalidInputError(ValueError):
    """A value was rejected at the boundary of the planning core."""


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class LatLng(pydantic.BaseModel):
    """A WGS84 coordinate in decimal degrees."""

    model_config = pydantic.ConfigDict(frozen=True)

    lat: float
    lng: float

    @pydantic.model_validator(mode='after')
    def _check_range(self) -> LatLng:
        if not (math.isfinite(self.lat) and math.isfinite(self.lng)):
            raise ValueError('coordinates must be finite')
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f'latitude {self.lat} outside [-90, 90]')
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f'longitude {self.lng} outside [-180, 180]')
        return self

    def as_param(self) -> str:
        """Render as the ``lat,lng`` form used in provider query strings."""
        return f'{self.lat},{self.lng}'


class Place(pydantic.BaseModel):
    """A geocoding or autocomplete result the UI turns into a pin."""

    model_config = pydantic.ConfigDict(frozen=True)

    place_id: str
    name: str
    address: str = ''
    position: LatLng


class Location(pydantic.BaseModel):
    """A pinned point of interest.

    ``travel_time_from_previous`` and ``distance_from_previous_m`` are derived
    from the last optimized route and are written only by the route
    orchestrator.  They are either both set or both absent.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    id: str = pydantic.Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    address: str = ''
    position: LatLng
    created_at: datetime.datetime = pydantic.Field(default_factory=_utcnow)
    scheduled_date: datetime.date | None = None
    stay_duration: datetime.timedelta = DEFAULT_STAY
    is_skipped: bool = False
    travel_time_from_previous: datetime.timedelta | None = None
    distance_from_previous_m: float | None = None
    trip_id: str | None = None

    @pydantic.field_validator('name')
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('name must not be empty')
        return value

    @pydantic.field_validator('stay_duration')
    @classmethod
    def _stay_not_negative(cls, value: datetime.timedelta) -> datetime.timedelta:
        if value < datetime.timedelta(0):
            raise ValueError('stay duration must not be negative')
        return value

    @pydantic.model_validator(mode='after')
    def _derived_fields_paired(self) -> Location:
        has_time = self.travel_time_from_previous is not None
        has_distance = self.distance_from_previous_m is not None
        if has_time != has_distance:
            raise ValueError(
                'travel time and distance from previous must be set together'
            )
        return self

    @classmethod
    def from_place(cls, place: Place, **kwargs: object) -> Location:
        """Build a new pin from a geocoding or autocomplete result."""
        return cls(
            name=place.name,
            address=place.address,
            position=place.position,
            **kwargs,  # type: ignore[arg-type]
        )

    @property
    def effective_date(self) -> datetime.date:
        """The day this location belongs to: scheduled date, else creation date."""
        if self.scheduled_date is not None:
            return self.scheduled_date
        return self.created_at.date()

    @property
    def fingerprint(self) -> str:
        """SHA-256 over name and coordinates, used to spot duplicate pins."""
        data = f'{self.name}{self.position.lat}{self.position.lng}'
        return hashlib.sha256(data.encode('utf-8')).hexdigest()

    @property
    def has_route_metrics(self) -> bool:
        return self.travel_time_from_previous is not None

    def with_route_metrics(
        self, travel_time: datetime.timedelta, distance_m: float
    ) -> Location:
        return self.model_copy(
            update={
                'travel_time_from_previous': travel_time,
                'distance_from_previous_m': distance_m,
            }
        )

    def without_route_metrics(self) -> Location:
        if not self.has_route_metrics:
            return self
        return self.model_copy(
            update={'travel_time_from_previous': None, 'distance_from_previous_m': None}
        )


class Leg(pydantic.BaseModel):
    """One point-to-point segment of a route."""

    model_config = pydantic.ConfigDict(frozen=True)

    duration: datetime.timedelta
    distance_m: float
    start: LatLng
    end: LatLng
    # Leg geometry, starting with the leg's own start coordinate.
    polyline: tuple[LatLng, ...] = ()


class OptimizedRoute(pydantic.BaseModel):
    """A day group resolved into a visiting order with per-leg metrics."""

    model_config = pydantic.ConfigDict(frozen=True)

    day: datetime.date
    # CURRENT_LOCATION or the id of the location the route starts from.
    start: str
    # waypoint_order[k] is the input index of the k-th visited waypoint.
    waypoint_order: tuple[int, ...] = ()
    # Ids of every stop in visiting order, including a start location.
    ordered_ids: tuple[str, ...] = ()
    legs: tuple[Leg, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.legs

    @property
    def total_duration(self) -> datetime.timedelta:
        return sum((leg.duration for leg in self.legs), datetime.timedelta(0))

    @property
    def total_distance_m(self) -> float:
        return sum(leg.distance_m for leg in self.legs)

    @property
    def leg_polylines(self) -> list[tuple[LatLng, ...]]:
        return [leg.polyline for leg in self.legs]

    @property
    def polyline(self) -> list[LatLng]:
        """Full route geometry: every leg's points, concatenated."""
        return [point for leg in self.legs for point in leg.polyline]


class Zone(pydantic.BaseModel):
    """A group of one or more locations within the proximity threshold."""

    model_config = pydantic.ConfigDict(frozen=True)

    members: tuple[Location, ...]

    @property
    def location_ids(self) -> list[str]:
        return [loc.id for loc in self.members]


class ZoneCircle(pydantic.BaseModel):
    """Map overlay circle enclosing a zone."""

    model_config = pydantic.ConfigDict(frozen=True)

    zone_id: str
    center: LatLng
    radius_m: float
    color: str
    fill_opacity: float = 0.25
    stroke_opacity: float = 0.8
    stroke_width: int = 4


class RouteTotals(pydantic.BaseModel):
    """Aggregate metrics for the materialized route of a day."""

    model_config = pydantic.ConfigDict(frozen=True)

    travel_time: datetime.timedelta = datetime.timedelta(0)
    distance_m: float = 0.0
    # Travel time plus the stay at every stop except the last.
    trip_time: datetime.timedelta = datetime.timedelta(0)
    eta: datetime.datetime | None = None


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_duration(value: datetime.timedelta | None) -> str:
    """Render a duration as ``'12 min'`` or ``'1h 5m'``."""
    if value is None:
        return 'n/a'
    total_minutes = round(value.total_seconds() / 60.0)
    if total_minutes < 60:
        return f'{total_minutes} min'
    hours, minutes = divmod(total_minutes, 60)
    return f'{hours}h {minutes}m'


def format_km(distance_m: float) -> str:
    """Metres as a bare kilometre figure with two decimals."""
    return f'{distance_m / 1000.0:.2f}'


def format_distance(distance_m: float | None) -> str:
    """Render metres as kilometres with two decimals."""
    if distance_m is None:
        return 'n/a'
    return f'{format_km(distance_m)} km'
