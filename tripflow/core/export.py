"""CSV export of a day's trip plan."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable

from .models import Location, format_km

CSV_HEADERS = [
    'Order',
    'Name',
    'Address',
    'Scheduled Date',
    'Stay Duration (min)',
    'Travel Time from Previous (min)',
    'Distance from Previous (km)',
    'Status',
]


def _row(order: int, loc: Location) -> list[str]:
    travel = loc.travel_time_from_previous
    distance = loc.distance_from_previous_m
    return [
        str(order),
        loc.name,
        loc.address,
        loc.scheduled_date.isoformat() if loc.scheduled_date else '',
        str(int(loc.stay_duration.total_seconds() // 60)),
        str(int(travel.total_seconds() // 60)) if travel is not None else '-',
        format_km(distance) if distance is not None else '-',
        'Skipped' if loc.is_skipped else 'Active',
    ]


def write_trip_csv(locations: Iterable[Location], out: io.TextIOBase) -> int:
    """Write *locations* in order as CSV to *out*; return the row count."""
    writer = csv.writer(out, lineterminator='\n')
    writer.writerow(CSV_HEADERS)
    count = 0
    for count, loc in enumerate(locations, start=1):
        writer.writerow(_row(count, loc))
    return count


def trip_csv(locations: Iterable[Location]) -> str:
    """Render *locations* as a CSV document."""
    buf = io.StringIO()
    write_trip_csv(locations, buf)
    return buf.getvalue()
