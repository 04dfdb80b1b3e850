"""Database engine helpers."""

from __future__ import annotations

import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


DEFAULT_DATABASE_URL = "sqlite:///deals.db"


def create_engine_from_env() -> Engine:
    """Create an engine using the DATABASE_URL environment variable."""
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    return create_engine_for(url)


def create_engine_for(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", float(os.environ.get("SQLITE_BUSY_TIMEOUT", 5)))
        engine = create_engine(url, connect_args=connect_args, future=True, **kwargs)
        event.listen(engine, "connect", _sqlite_pragmas)
        return engine
    return create_engine(url, pool_pre_ping=True, future=True, **kwargs)


def _sqlite_pragmas(dbapi_connection, _record) -> None:
    # References to deleted rows are tolerated, so FK enforcement stays off.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = OFF")
    cursor.close()
