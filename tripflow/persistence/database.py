"""Database configuration and session management for trip storage."""

from collections.abc import Generator
from pathlib import Path

import sqlalchemy
import sqlmodel

from common import settings

DATABASE_PATH = Path(settings.DATA_DIR) / 'tripflow.db'
DATABASE_URL = f'sqlite:///{DATABASE_PATH}'

# check_same_thread=False: sessions are used from FastAPI's worker threads.
engine = sqlmodel.create_engine(
    DATABASE_URL,
    connect_args={'check_same_thread': False},
    echo=False,
)


def create_db_and_tables(bind: sqlalchemy.Engine | None = None) -> None:
    """Create database tables if they don't exist."""
    # Import models to ensure they're registered with SQLModel
    from . import models  # noqa: F401 # pyright: ignore[reportUnusedImport]

    if bind is None:
        DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
        bind = engine
    sqlmodel.SQLModel.metadata.create_all(bind)


def get_session() -> Generator[sqlmodel.Session, None, None]:
    """Get database session."""
    with sqlmodel.Session(engine) as session:
        yield session
