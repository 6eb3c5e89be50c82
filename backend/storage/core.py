"""Storage initialization: data directory and the SQLAlchemy engine."""

import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Engine, create_engine, event

from .schema import metadata

_data_dir: Path | None = None
_engine: Engine | None = None


def _sqlite_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def init_storage(data_dir: Path, database_url: str | None = None) -> None:
    """Point storage at `data_dir` and create the schema.

    `database_url` defaults to $DATABASE_URL, then to a SQLite file inside
    the data directory. Calling this again disposes the previous engine.
    """
    global _data_dir, _engine

    _data_dir = data_dir
    _data_dir.mkdir(parents=True, exist_ok=True)

    url = database_url or os.getenv("DATABASE_URL") or f"sqlite:///{_data_dir / 'game.db'}"
    if _engine is not None:
        _engine.dispose()
    if url.startswith("sqlite"):
        _engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
        event.listen(_engine, "connect", _sqlite_pragmas)
    else:
        _engine = create_engine(url, pool_pre_ping=True)
    metadata.create_all(_engine)


def data_dir() -> Path:
    assert _data_dir is not None, "Call init_storage() before using storage"
    return _data_dir


def engine() -> Engine:
    assert _engine is not None, "Call init_storage() before using storage"
    return _engine


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
