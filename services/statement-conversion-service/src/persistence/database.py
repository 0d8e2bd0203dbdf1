"""Engine and session wiring for conversion history and usage quotas."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.engine.url import URL
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from persistence.models import Base

DB_URL_ENV_VAR = "CONVERTER_DB_URL"
# Relative to the working directory the service is started from.
DEFAULT_DB_PATH = Path("data") / "converter.db"


def get_database_url() -> str:
    """`CONVERTER_DB_URL`, or a SQLite file under `./data` of the working directory."""
    return os.getenv(DB_URL_ENV_VAR) or f"sqlite:///{DEFAULT_DB_PATH}"


def _is_memory_database(url: URL) -> bool:
    return url.database in (None, "", ":memory:")


def create_engine_for_url(database_url: str) -> Engine:
    """Build an engine without touching the filesystem; `init_db` creates directories."""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return create_engine(url, future=True, pool_pre_ping=True)

    options: dict = {"connect_args": {"check_same_thread": False}}
    if _is_memory_database(url):
        # Every checkout must see the same in-memory database.
        options["poolclass"] = StaticPool
    return create_engine(url, future=True, **options)


_engine = create_engine_for_url(get_database_url())

SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False, future=True)


def get_engine() -> Engine:
    return _engine


@contextmanager
def session_scope(factory: Callable[[], Session] = SessionLocal) -> Iterator[Session]:
    """Session that commits on success and rolls back when the block raises."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency for DB sessions (yield pattern)."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """Create the SQLite parent directory if needed, then any missing tables."""
    engine = engine or _engine
    if engine.url.drivername.startswith("sqlite") and not _is_memory_database(engine.url):
        Path(engine.url.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=engine)

