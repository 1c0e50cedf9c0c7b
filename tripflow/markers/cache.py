"""Bounded LRU cache of rendered marker bitmaps.

One :class:`MarkerCache` is constructed by whatever composes the map
pipeline and passed to the code that needs markers.  Keys encode every
parameter that affects pixels, so a hit is always pixel-identical to a fresh
render.

Concurrent misses for the same key share one in-flight render.  A render
that fails or times out raises :class:`~tripflow.markers.render.RenderError`
to every waiter and leaves nothing behind in the cache.

The current-location and destination markers are requested on almost every
redraw, so each is held as a single retained value outside the LRU and is
never evicted by numbered-marker churn.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable

from . import render
from .render import Bitmap, MarkerParams, RenderError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_RENDER_TIMEOUT = 5.0

# Numbered markers 1..PREWARM_NUMBERS are rendered by prewarm().
PREWARM_NUMBERS = 10

RETAINED_KINDS = frozenset({'current_location', 'destination'})

Renderer = Callable[[str, MarkerParams], Bitmap]

_DEFAULT_PARAMS: dict[str, MarkerParams] = {
    'current_location': MarkerParams(background=render.PRIMARY_COLOR),
    'destination': MarkerParams(background=render.ACCENT_COLOR),
    'leg_start': MarkerParams(background=render.LEG_START_COLOR),
    'leg_end': MarkerParams(background=render.ACCENT_COLOR),
}


def marker_key(kind: str, params: MarkerParams | None = None) -> str:
    """Deterministic cache key covering every visually relevant parameter."""
    if params is None:
        params = _DEFAULT_PARAMS.get(kind, MarkerParams())
    return f'{kind}:{params.model_dump_json()}'


class MarkerCache:
    """LRU cache of marker bitmaps with in-flight render de-duplication."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        renderer: Renderer = render.render_marker,
        render_timeout: float = DEFAULT_RENDER_TIMEOUT,
    ) -> None:
        if capacity < 1:
            raise ValueError('capacity must be at least 1')
        self.capacity = capacity
        self._renderer = renderer
        self._render_timeout = render_timeout
        self._entries: OrderedDict[str, Bitmap] = OrderedDict()
        self._retained: dict[str, tuple[str, Bitmap]] = {}
        self._inflight: dict[str, asyncio.Task[Bitmap]] = {}
        self._prewarmed = False
        # Bumped by clear(); renders started under an older epoch are not stored.
        self._epoch = 0

    @property
    def size(self) -> int:
        """Number of entries in the LRU (retained markers not counted)."""
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        """LRU keys from least to most recently used."""
        return list(self._entries)

    async def get(self, kind: str, params: MarkerParams | None = None) -> Bitmap:
        """Return the bitmap for *kind* and *params*, rendering on a miss.

        Raises:
            RenderError: the bitmap could not be rendered.
        """
        if params is None:
            params = _DEFAULT_PARAMS.get(kind, MarkerParams())
        key = marker_key(kind, params)

        if kind in RETAINED_KINDS:
            retained = self._retained.get(kind)
            if retained is not None and retained[0] == key:
                return retained[1]
        else:
            bitmap = self._entries.get(key)
            if bitmap is not None:
                self._entries.move_to_end(key)
                return bitmap

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, kind, params, self._epoch))
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def current_location_marker(
        self, background: str = render.PRIMARY_COLOR
    ) -> Bitmap:
        return await self.get('current_location', MarkerParams(background=background))

    async def destination_marker(self) -> Bitmap:
        return await self.get('destination')

    async def prewarm(self) -> int:
        """Render the most common markers ahead of first use.

        Returns the number of markers rendered; zero when already prewarmed.
        """
        if self._prewarmed:
            return 0
        requests: list[tuple[str, MarkerParams | None]] = [('current_location', None)]
        for number in range(1, PREWARM_NUMBERS + 1):
            requests.append(
                (
                    'numbered',
                    MarkerParams(
                        number=number,
                        name=f'Location {number}',
                        background=render.ACCENT_COLOR,
                        text_color=render.WHITE,
                    ),
                )
            )
        requests.extend([('leg_start', None), ('leg_end', None)])
        await asyncio.gather(*(self.get(kind, params) for kind, params in requests))
        self._prewarmed = True
        logger.info('Marker cache prewarmed with %d markers', self.size)
        return len(requests)

    def clear(self) -> None:
        """Drop every cached and retained bitmap.

        Renders already in flight still answer their waiters but are not
        stored, and later requests start a fresh render.
        """
        self._epoch += 1
        self._entries.clear()
        self._retained.clear()
        self._inflight.clear()
        self._prewarmed = False

    async def _load(
        self, key: str, kind: str, params: MarkerParams, epoch: int
    ) -> Bitmap:
        try:
            bitmap = await asyncio.wait_for(
                asyncio.to_thread(self._renderer, kind, params), self._render_timeout
            )
        except TimeoutError as exc:
            raise RenderError(f'{kind} marker render timed out') from exc
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]
        if not isinstance(bitmap, Bitmap) or not bitmap.png:
            raise RenderError(f'{kind} marker renderer returned no image')
        if epoch != self._epoch:
            logger.debug('Not caching marker %s rendered before clear', key)
            return bitmap

        if kind in RETAINED_KINDS:
            self._retained[kind] = (key, bitmap)
        else:
            self._entries[key] = bitmap
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug('Evicted marker %s', evicted)
        return bitmap
