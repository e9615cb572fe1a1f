"""
core/db.py -- Engine construction shared by every SQLAlchemy-backed store.

Each store (auth/store.py, tenancy/store.py, audit/store.py) owns its own
schema and repository class; only the engine setup lives here so every store
gets the same SQLite connection policy.

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed without blocking during writes. Set per-connection
    because SQLite PRAGMAs are not inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine for db_url.

    SQLite: check_same_thread=False because FastAPI runs sync handlers in a
    thread pool, WAL mode on every connection, and the parent directory of a
    file database is created on first use.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        database = make_url(db_url).database
        if database and database != ":memory:" and not database.startswith("file:"):
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine
