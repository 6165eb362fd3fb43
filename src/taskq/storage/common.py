"""Common helpers for the task store: clock, datetime policy and engines."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime

from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine

BEGIN_IMMEDIATE = "taskq_sqlite_begin_immediate"
DEFAULT_SQLITE_CLAIM_LEASE_SECONDS = 3600.0


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_utc_aware_datetime(value: datetime) -> datetime:
    """SQLite returns naive values; every stored timestamp is UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_sqlite_url(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def build_engine(database_url: str, *, sqlite_busy_timeout_ms: int = 5000) -> Engine:
    """Build SQLAlchemy engine with the store policy for the URL's backend."""

    if is_sqlite_url(database_url):
        return build_sqlite_engine(
            database_url=database_url,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )
    return create_engine(database_url, pool_pre_ping=True)


def build_sqlite_engine(*, database_url: str, busy_timeout_ms: int) -> Engine:
    """SQLite engine with WAL, a busy timeout and opt-in ``BEGIN IMMEDIATE``.

    Transactions are deferred unless the connection carries the
    ``BEGIN_IMMEDIATE`` execution option (see ``immediate_engine``). Writers
    that read before they write need it: they wait up to ``busy_timeout_ms``
    for the write lock instead of failing on a stale snapshot.
    """

    engine = create_engine(
        database_url,
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    event.listen(
        engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    event.listen(engine, "begin", _begin)
    return engine


def immediate_engine(engine: Engine) -> Engine:
    """Engine view whose SQLite transactions start with ``BEGIN IMMEDIATE``."""

    return engine.execution_options(**{BEGIN_IMMEDIATE: True})


def _begin(connection: Connection) -> None:
    if connection.get_execution_options().get(BEGIN_IMMEDIATE, False):
        connection.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        connection.exec_driver_sql("BEGIN")


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    # Hand transaction control to SQLAlchemy's "begin" event.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.close()
