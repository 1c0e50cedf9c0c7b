"""JSON API routes for the trip planner."""

import datetime
from typing import Annotated

import fastapi
import fastapi.responses
import pydantic

from tripflow.core.models import InvalidInputError, LatLng, Location, OptimizedRoute, RouteTotals
from tripflow.core.overlays import Overlays
from tripflow.markers import render
from tripflow.markers.render import MarkerParams, RenderError

from .planner import TripPlanner

router = fastapi.APIRouter(prefix='/api')


def get_planner(request: fastapi.Request) -> TripPlanner:
    return request.app.state.planner


Planner = Annotated[TripPlanner, fastapi.Depends(get_planner)]


class LocationCreate(pydantic.BaseModel):
    """Request body for pinning a new location."""

    name: str
    latitude: float
    longitude: float
    address: str = ''
    scheduled_date: datetime.date | None = None
    stay_minutes: int | None = pydantic.Field(default=None, ge=0)
    trip_id: str | None = None


class LocationUpdate(pydantic.BaseModel):
    """Request body for editing a location; omitted fields are left alone."""

    name: str | None = None
    scheduled_date: datetime.date | None = None
    stay_minutes: int | None = pydantic.Field(default=None, ge=0)
    is_skipped: bool | None = None


class LocationCopy(pydantic.BaseModel):
    scheduled_date: datetime.date


class Reorder(pydantic.BaseModel):
    old_index: int
    new_index: int


class CurrentLocation(pydantic.BaseModel):
    """Device position reported by the client."""

    latitude: float
    longitude: float


class OptimizeRequest(pydantic.BaseModel):
    preserve_order: bool = False
    start_location_id: str | None = None
    departure: datetime.datetime | None = None


class OptimizeResponse(pydantic.BaseModel):
    route: OptimizedRoute
    locations: list[Location]
    totals: RouteTotals


class TripCreate(pydantic.BaseModel):
    name: str = pydantic.Field(min_length=1)
    trip_id: str | None = None


class TripOut(pydantic.BaseModel):
    id: str
    name: str
    created_at: datetime.datetime


def _not_found(location_id: str) -> fastapi.HTTPException:
    return fastapi.HTTPException(status_code=404, detail=f'Location {location_id} not found')


@router.get('/days/{day}/locations', response_model=list[Location])
async def list_day(day: datetime.date, planner: Planner) -> list[Location]:
    """All locations scheduled on *day*, in display order."""
    return planner.store.day_group(day)


@router.post('/locations', response_model=Location, status_code=201)
async def create_location(body: LocationCreate, planner: Planner) -> Location:
    """Pin a new location."""
    try:
        location = Location(
            name=body.name,
            address=body.address,
            position=LatLng(lat=body.latitude, lng=body.longitude),
            scheduled_date=body.scheduled_date,
            trip_id=body.trip_id,
            **(
                {'stay_duration': datetime.timedelta(minutes=body.stay_minutes)}
                if body.stay_minutes is not None
                else {}
            ),
        )
        return await planner.add_location(location)
    except (pydantic.ValidationError, InvalidInputError) as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc


@router.patch('/locations/{location_id}', response_model=Location)
async def update_location(
    location_id: str, body: LocationUpdate, planner: Planner
) -> Location:
    """Rename, reschedule, skip or change the stay of a location."""
    try:
        updated = await planner.update_location(
            location_id,
            name=body.name,
            scheduled_date=body.scheduled_date,
            stay_duration=(
                datetime.timedelta(minutes=body.stay_minutes)
                if body.stay_minutes is not None
                else None
            ),
            is_skipped=body.is_skipped,
        )
    except InvalidInputError as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc
    if updated is None:
        raise _not_found(location_id)
    return updated


@router.delete('/locations/{location_id}', status_code=204)
async def delete_location(location_id: str, planner: Planner) -> None:
    """Delete a location; the day's route is invalidated."""
    if not await planner.remove_location(location_id):
        raise _not_found(location_id)


@router.delete('/locations', status_code=204)
async def clear_trip(planner: Planner) -> None:
    """Delete every location on every day."""
    await planner.clear_trip()


@router.post('/locations/{location_id}/copy', response_model=Location, status_code=201)
async def copy_location(location_id: str, body: LocationCopy, planner: Planner) -> Location:
    """Duplicate a location onto another day."""
    copies = await planner.copy_locations([location_id], body.scheduled_date)
    if not copies:
        raise _not_found(location_id)
    return copies[0]


@router.post('/days/{day}/select')
async def select_day(day: datetime.date, planner: Planner) -> dict[str, object]:
    """Make *day* the selected date."""
    changed = await planner.select_date(day)
    return {'selected_date': day.isoformat(), 'changed': changed}


@router.post('/days/{day}/reorder', response_model=list[Location])
async def reorder_day(day: datetime.date, body: Reorder, planner: Planner) -> list[Location]:
    """Move one stop within *day*; the day's route is invalidated."""
    if not await planner.reorder_location(day, body.old_index, body.new_index):
        raise fastapi.HTTPException(status_code=422, detail='Index out of range')
    return planner.store.day_group(day)


@router.put('/current-location')
async def set_current_location(body: CurrentLocation, planner: Planner) -> dict[str, object]:
    """Record the device position used as the default route start."""
    try:
        point = LatLng(lat=body.latitude, lng=body.longitude)
    except pydantic.ValidationError as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc
    return {'changed': planner.update_current_location(point)}


@router.post('/days/{day}/optimize', response_model=OptimizeResponse)
async def optimize_day(
    day: datetime.date, planner: Planner, body: OptimizeRequest | None = None
) -> OptimizeResponse:
    """Request an optimized visiting order for *day*."""
    body = body or OptimizeRequest()
    outcome = await planner.optimize(
        day=day,
        preserve_order=body.preserve_order,
        start_location_id=body.start_location_id,
        departure=body.departure,
    )
    if outcome.status == 'failed' and outcome.error is not None:
        status = 422 if outcome.error.reason == 'invalid_input' else 502
        raise fastapi.HTTPException(
            status_code=status,
            detail={'reason': outcome.error.reason, 'message': outcome.error.error_message},
        )
    if outcome.status == 'stale' or outcome.result is None:
        raise fastapi.HTTPException(
            status_code=409, detail='Locations changed while the route was computed'
        )
    return OptimizeResponse(
        route=outcome.result.route,
        locations=planner.store.day_group(day),
        totals=outcome.totals,
    )


@router.get('/days/{day}/overlays', response_model=Overlays)
async def day_overlays(
    day: datetime.date,
    planner: Planner,
    threshold: float | None = None,
    dark_mode: bool = False,
) -> Overlays:
    """Zones, markers and route geometry for *day*."""
    try:
        return planner.overlays(day, threshold_m=threshold, dark_mode=dark_mode)
    except InvalidInputError as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc


@router.get('/days/{day}/markers/{marker_id}.png')
async def day_marker_png(
    day: datetime.date,
    marker_id: str,
    planner: Planner,
    threshold: float | None = None,
    dark_mode: bool = False,
) -> fastapi.responses.Response:
    """Bitmap of one marker on *day*: a location id or ``leg-<n>``."""
    try:
        bitmaps = await planner.render_markers(day, threshold_m=threshold, dark_mode=dark_mode)
    except InvalidInputError as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc
    except RenderError as exc:
        raise fastapi.HTTPException(status_code=500, detail=str(exc)) from exc
    if marker_id not in bitmaps:
        raise fastapi.HTTPException(status_code=404, detail=f'Marker {marker_id} not found')
    return fastapi.responses.Response(content=bitmaps[marker_id].png, media_type='image/png')


@router.get('/markers/{kind}.png')
async def marker_png(
    kind: str,
    planner: Planner,
    params: Annotated[MarkerParams, fastapi.Query()],
) -> fastapi.responses.Response:
    """Rendered marker bitmap for the given kind and parameters."""
    if kind not in render.MARKER_KINDS:
        raise fastapi.HTTPException(status_code=404, detail=f'Unknown marker kind {kind}')
    try:
        bitmap = await planner.marker(kind, params)
    except RenderError as exc:
        raise fastapi.HTTPException(status_code=500, detail=str(exc)) from exc
    return fastapi.responses.Response(content=bitmap.png, media_type='image/png')


@router.get('/days/{day}/export.csv')
async def export_day(day: datetime.date, planner: Planner) -> fastapi.responses.Response:
    """Trip plan for *day* as a CSV download."""
    return fastapi.responses.Response(
        content=planner.export_csv(day),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename="trip-{day.isoformat()}.csv"'},
    )


@router.post('/trips', response_model=TripOut, status_code=201)
async def create_trip(body: TripCreate, planner: Planner) -> TripOut:
    """Create or rename a trip."""
    try:
        trip = await planner.create_trip(body.name, trip_id=body.trip_id)
    except RuntimeError as exc:
        raise fastapi.HTTPException(status_code=503, detail=str(exc)) from exc
    return TripOut(id=trip.id, name=trip.name, created_at=trip.created_at)


@router.get('/trips', response_model=list[TripOut])
async def list_trips(planner: Planner) -> list[TripOut]:
    trips = await planner.list_trips()
    return [TripOut(id=t.id, name=t.name, created_at=t.created_at) for t in trips]
