"""Trip planner API application."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator

import fastapi
import uvicorn

from common.app import create_app
from tripflow.markers.cache import MarkerCache
from tripflow.markers.render import RenderError
from tripflow.persistence import database

from . import routes
from .config import load_config
from .planner import build_planner

logger = logging.getLogger(__name__)


async def _prewarm(cache: MarkerCache) -> None:
    try:
        await cache.prewarm()
    except RenderError:
        logger.exception('Marker prewarm failed')


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncGenerator[None, None]:
    """Create tables, load saved locations and prewarm the marker cache."""
    database.create_db_and_tables()
    config = load_config()
    planner = getattr(app.state, 'planner', None)
    if planner is None:
        planner = build_planner(engine=database.engine, config=config)
        app.state.planner = planner
    await planner.load()

    prewarm: asyncio.Task[None] | None = None
    if config.markers.prewarm:
        prewarm = asyncio.create_task(_prewarm(planner.cache))
    yield
    if prewarm is not None and not prewarm.done():
        prewarm.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await prewarm


app = create_app('Tripflow', lifespan=lifespan)
app.include_router(routes.router)


if __name__ == '__main__':
    uvicorn.run(app, host='0.0.0.0', port=8000)
