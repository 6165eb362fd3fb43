"""Alembic environment for the task store.

Migrations run on the connection handed over through
``config.attributes["connection"]`` by ``upgrade_head``; a standalone
``alembic`` invocation falls back to ``sqlalchemy.url`` or the
``TASKQ_DATABASE_URL`` environment variable.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection
from sqlmodel import SQLModel

from taskq.config import Settings
from taskq.storage import sqlmodel_models  # noqa: F401
from taskq.storage.common import build_engine

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    context.configure(
        url=_get_db_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connection = config.attributes.get("connection")
    if connection is not None:
        do_run_migrations(connection)
        return

    engine = build_engine(_get_db_url())
    try:
        with engine.begin() as connection:
            do_run_migrations(connection)
    finally:
        engine.dispose()


def _get_db_url() -> str:
    return config.get_main_option("sqlalchemy.url") or Settings.from_env().database_url


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
