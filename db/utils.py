"""Engine construction and per-request access to the catalogue database."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterator

from flask import g, has_app_context
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger(__name__)

db_lock = Lock()
"""Serializes writes; SQLite allows a single writer at a time."""

DEFAULT_TIMEOUT_SECONDS = 5.0


class DatabaseEngine:
    """Thin wrapper handing out context-managed connections."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        with self._engine.connect() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Yield a connection whose transaction commits when the block exits cleanly."""

        with self._engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        self._engine.dispose()


_fallback_engine: DatabaseEngine | None = None


def set_fallback_connection(engine: DatabaseEngine | None) -> None:
    """Register the engine :func:`get_db` returns outside a request."""

    global _fallback_engine
    _fallback_engine = engine


def _sqlite_on_connect(busy_timeout: float) -> Callable[[Any, Any], None]:
    busy_timeout_ms = max(int(busy_timeout * 1000), 0)

    def on_connect(dbapi_conn: sqlite3.Connection, _record: Any) -> None:
        dbapi_conn.execute("PRAGMA foreign_keys=ON")
        if busy_timeout_ms:
            dbapi_conn.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        try:
            dbapi_conn.execute("PRAGMA journal_mode=WAL").fetchone()
        except sqlite3.OperationalError:
            logger.debug("SQLite WAL journal mode unavailable; using default journal")

    return on_connect


def _mariadb_on_connect(lock_timeout: float) -> Callable[[Any, Any], None]:
    seconds = max(int(lock_timeout), 1)

    def on_connect(dbapi_conn: Any, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("SET SESSION innodb_lock_wait_timeout = %s", (seconds,))
        finally:
            cursor.close()

    return on_connect


def build_engine_from_dsn(dsn: str, *, timeout: float | None = None) -> DatabaseEngine:
    """Return a :class:`DatabaseEngine` for a ``sqlite:///`` or ``mariadb://`` DSN.

    SQLite files get their parent directory created and are opened with
    foreign keys enabled; MariaDB sessions get a lock wait timeout.
    """

    try:
        url = make_url(dsn)
    except ArgumentError as exc:
        raise ValueError(f"Invalid database DSN: {dsn!r}") from exc

    effective_timeout = DEFAULT_TIMEOUT_SECONDS if timeout is None else timeout
    backend = url.get_backend_name()

    if backend == "sqlite":
        if not url.database or url.database == ":memory:":
            raise ValueError("SQLite DSN must include a filesystem path")
        database = Path(url.database).expanduser().resolve()
        database.parent.mkdir(parents=True, exist_ok=True)
        url = url.set(database=database.as_posix())
        engine = create_engine(url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _sqlite_on_connect(effective_timeout))
    else:
        engine = create_engine(url, pool_recycle=1_800, pool_pre_ping=True)
        if backend in {"mysql", "mariadb"}:
            event.listen(engine, "connect", _mariadb_on_connect(effective_timeout))

    return DatabaseEngine(engine)


def get_db(
    engine_factory: Callable[[], DatabaseEngine] | None = None,
    *,
    context_key: str = 'db',
) -> DatabaseEngine:
    """Return the request's :class:`DatabaseEngine`, or the fallback outside a request."""

    if has_app_context():
        engine = g.get(context_key)
        if engine is None:
            engine = engine_factory() if engine_factory is not None else _fallback_engine
            if engine is None:
                raise RuntimeError('Database connection is not configured')
            setattr(g, context_key, engine)
        return engine

    if _fallback_engine is not None:
        return _fallback_engine
    if engine_factory is None:
        raise RuntimeError('Database connection is not configured')
    return engine_factory()
