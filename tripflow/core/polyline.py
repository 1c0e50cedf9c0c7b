"""Encoded polyline codec.

Implements the delta-encoded polyline format used by the directions
provider: coordinates are scaled to 5 decimal places, each axis is stored as
a zig-zag signed delta from the previous point, and deltas are written as
little-endian 5-bit chunks offset by 63 into printable ASCII.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import LatLng

_PRECISION = 1e5


def _decode_value(encoded: str, index: int) -> tuple[int, int]:
    """Decode one signed varint starting at *index*; return (value, next_index)."""
    result = 0
    shift = 0
    while True:
        if index >= len(encoded):
            raise ValueError('truncated polyline')
        b = ord(encoded[index]) - 63
        index += 1
        if b < 0 or b > 0x3F:
            raise ValueError(f'invalid polyline character at {index - 1}')
        result |= (b & 0x1F) << shift
        shift += 5
        if b < 0x20:
            break
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode(encoded: str) -> list[LatLng]:
    """Decode *encoded* into a list of coordinates.

    Raises:
        ValueError: the string is truncated or contains characters outside
            the polyline alphabet.
    """
    points: list[LatLng] = []
    index = 0
    lat = 0
    lng = 0
    while index < len(encoded):
        d_lat, index = _decode_value(encoded, index)
        d_lng, index = _decode_value(encoded, index)
        lat += d_lat
        lng += d_lng
        points.append(LatLng(lat=lat / _PRECISION, lng=lng / _PRECISION))
    return points


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks: list[str] = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return ''.join(chunks)


def encode(points: Iterable[LatLng]) -> str:
    """Encode *points* into the polyline format."""
    out: list[str] = []
    prev_lat = 0
    prev_lng = 0
    for point in points:
        lat = round(point.lat * _PRECISION)
        lng = round(point.lng * _PRECISION)
        out.append(_encode_value(lat - prev_lat))
        out.append(_encode_value(lng - prev_lng))
        prev_lat, prev_lng = lat, lng
    return ''.join(out)


def same_point(a: LatLng, b: LatLng) -> bool:
    """True when *a* and *b* encode to the same polyline vertex."""
    return round(a.lat * _PRECISION) == round(b.lat * _PRECISION) and round(
        a.lng * _PRECISION
    ) == round(b.lng * _PRECISION)
