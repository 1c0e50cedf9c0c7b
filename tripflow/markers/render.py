"""Pillow rendering of map marker bitmaps.

Rendering is synchronous and CPU bound; :class:`tripflow.markers.cache.MarkerCache`
runs it in a worker thread.  Output is deterministic: the same kind and
parameters always produce byte-identical PNG data.
"""

from __future__ import annotations

import io
import textwrap
from typing import Literal

import pydantic
from PIL import Image, ImageColor, ImageDraw, ImageFont

MarkerKind = Literal[
    'numbered',
    'current_location',
    'destination',
    'leg_start',
    'leg_end',
    'route_info',
]
MARKER_KINDS: tuple[str, ...] = (
    'numbered',
    'current_location',
    'destination',
    'leg_start',
    'leg_end',
    'route_info',
)

PRIMARY_COLOR = '#00D4FF'
ACCENT_COLOR = '#FF6B6B'
LEG_START_COLOR = '#66BB6A'
ROUTE_INFO_BACKGROUND = '#1A1A2E'
SKIPPED_COLOR = '#9E9E9E'
WHITE = '#FFFFFF'

NUMBERED_SIZE = 100
CURRENT_LOCATION_SIZE = 120
DESTINATION_SIZE = 100
LEG_MARKER_SIZE = 40
LABEL_FONT_SIZE = 28
NAME_WRAP_CHARS = 18


class RenderError(Exception):
    """A marker bitmap could not be produced."""


class MarkerParams(pydantic.BaseModel):
    """Every input that affects a marker's pixels.

    Colours are normalised to upper-case ``#RRGGBB`` so that equivalent
    spellings share one cache entry.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    number: int | None = None
    name: str = ''
    background: str = ACCENT_COLOR
    text_color: str = WHITE
    dark_mode: bool = False
    skipped: bool = False
    is_start: bool = False
    # route_info only
    duration: str = ''
    distance: str = ''
    highlighted: bool = False

    @pydantic.field_validator('background', 'text_color')
    @classmethod
    def _normalise_color(cls, value: str) -> str:
        value = value.strip().upper()
        if not value.startswith('#'):
            value = f'#{value}'
        return value


class Bitmap(pydantic.BaseModel):
    """A rendered marker image."""

    model_config = pydantic.ConfigDict(frozen=True)

    png: bytes
    width: int
    height: int
    # Fractional (x, y) of the pixel that sits on the coordinate.
    anchor: tuple[float, float] = (0.5, 0.5)


def _rgba(color: str, alpha: int = 255) -> tuple[int, int, int, int]:
    r, g, b = ImageColor.getrgb(color)[:3]
    return r, g, b, alpha


def _font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


def _to_bitmap(image: Image.Image, anchor: tuple[float, float]) -> Bitmap:
    buf = io.BytesIO()
    image.save(buf, format='PNG')
    return Bitmap(png=buf.getvalue(), width=image.width, height=image.height, anchor=anchor)


def _centered_text(
    draw: ImageDraw.ImageDraw,
    center: tuple[float, float],
    text: str,
    font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
    fill: tuple[int, int, int, int],
) -> None:
    if text:
        draw.text(center, text, font=font, fill=fill, anchor='mm')


def _left_text(
    draw: ImageDraw.ImageDraw,
    origin: tuple[float, float],
    text: str,
    font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
) -> None:
    if text:
        draw.text(origin, text, font=font, fill=_rgba(WHITE), anchor='lm')


def _render_numbered(params: MarkerParams) -> Bitmap:
    size = NUMBERED_SIZE
    background = SKIPPED_COLOR if params.skipped else params.background
    label_color = WHITE if params.dark_mode else '#000000'

    lines = textwrap.wrap(params.name, NAME_WRAP_CHARS)
    if len(lines) > 2:
        lines = [lines[0], lines[1][: NAME_WRAP_CHARS - 3] + '...']
    name_font = _font(LABEL_FONT_SIZE)
    line_height = LABEL_FONT_SIZE + 4
    label_width = max(
        (int(name_font.getlength(line)) for line in lines), default=0
    )
    width = max(size, label_width + 8)
    height = size + 8 + line_height * len(lines)

    image = Image.new('RGBA', (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    cx = width / 2
    draw.ellipse((cx - size / 2, 0, cx + size / 2, size), fill=_rgba(background))
    if params.is_start:
        draw.ellipse(
            (cx - size / 2 + 3, 3, cx + size / 2 - 3, size - 3),
            outline=_rgba(LEG_START_COLOR),
            width=6,
        )
    text = '' if params.number is None else str(params.number)
    _centered_text(draw, (cx, size / 2), text, _font(size // 2), _rgba(params.text_color))
    if params.skipped:
        draw.line((cx - size / 3, size / 2, cx + size / 3, size / 2), fill=_rgba(WHITE), width=5)

    # Halo keeps the label readable over any map tile.
    halo = _rgba('#000000' if params.dark_mode else WHITE, 180)
    for i, line in enumerate(lines):
        y = size + 8 + line_height * i + line_height / 2
        draw.text(
            (cx, y),
            line,
            font=name_font,
            fill=_rgba(label_color),
            anchor='mm',
            stroke_width=2,
            stroke_fill=halo,
        )
    return _to_bitmap(image, (0.5, (size / 2) / height))


def _render_current_location(params: MarkerParams) -> Bitmap:
    size = CURRENT_LOCATION_SIZE
    image = Image.new('RGBA', (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    c = size / 2
    glow = size / 2
    ring = size / 4
    core = size / 5
    draw.ellipse((c - glow, c - glow, c + glow, c + glow), fill=_rgba(params.background, 77))
    draw.ellipse((c - ring, c - ring, c + ring, c + ring), fill=_rgba(WHITE))
    draw.ellipse((c - core, c - core, c + core, c + core), fill=_rgba(params.background))
    return _to_bitmap(image, (0.5, 0.5))


def _render_destination(params: MarkerParams) -> Bitmap:
    s = DESTINATION_SIZE
    image = Image.new('RGBA', (s, s), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    pole_x = s * 0.1
    draw.line((pole_x, s * 0.9, pole_x, s * 0.1), fill=_rgba(params.background), width=6)
    draw.polygon(
        [
            (pole_x, s * 0.1),
            (s * 0.7, s * 0.1),
            (s * 0.5, s * 0.3),
            (s * 0.7, s * 0.5),
            (pole_x, s * 0.5),
        ],
        fill=_rgba(params.background),
    )
    return _to_bitmap(image, (0.1, 0.9))


def _render_leg(params: MarkerParams, glyph: str) -> Bitmap:
    size = LEG_MARKER_SIZE
    image = Image.new('RGBA', (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    draw.ellipse((0, 0, size - 1, size - 1), fill=_rgba(params.background))
    _centered_text(draw, (size / 2, size / 2), glyph, _font(size // 2), _rgba(params.text_color))
    return _to_bitmap(image, (0.5, 0.5))


def _render_route_info(params: MarkerParams) -> Bitmap:
    font = _font(LABEL_FONT_SIZE)
    padding = 16
    separator = 2 + 2 * 12
    duration_w = int(font.getlength(params.duration))
    distance_w = int(font.getlength(params.distance))
    width = duration_w + distance_w + padding * 2 + separator
    height = LABEL_FONT_SIZE + padding * 2

    image = Image.new('RGBA', (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    border = PRIMARY_COLOR if params.highlighted else ROUTE_INFO_BACKGROUND
    draw.rounded_rectangle(
        (0, 0, width - 1, height - 1),
        radius=height // 2,
        fill=_rgba(ROUTE_INFO_BACKGROUND, 235),
        outline=_rgba(border),
        width=3,
    )
    mid_y = height / 2
    _left_text(draw, (padding, mid_y), params.duration, font)
    sep_x = padding + duration_w + separator / 2
    draw.line(
        (sep_x, padding / 2, sep_x, height - padding / 2),
        fill=_rgba(WHITE, 77),
        width=2,
    )
    _left_text(draw, (padding + duration_w + separator, mid_y), params.distance, font)
    return _to_bitmap(image, (0.5, 0.5))


def render_marker(kind: str, params: MarkerParams) -> Bitmap:
    """Render one marker.

    Raises:
        RenderError: unknown kind, unparseable colour, or any Pillow failure.
    """
    try:
        if kind == 'numbered':
            return _render_numbered(params)
        if kind == 'current_location':
            return _render_current_location(params)
        if kind == 'destination':
            return _render_destination(params)
        if kind == 'leg_start':
            return _render_leg(params, 'S')
        if kind == 'leg_end':
            return _render_leg(params, 'E')
        if kind == 'route_info':
            return _render_route_info(params)
    except (ValueError, OSError) as exc:
        raise RenderError(f'could not render {kind} marker: {exc}') from exc
    raise RenderError(f'unknown marker kind {kind!r}')
