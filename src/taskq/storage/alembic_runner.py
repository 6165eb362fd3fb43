"""Utilities to run Alembic migrations programmatically."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import Engine

from taskq.storage.common import immediate_engine

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def upgrade_head(engine: Engine) -> None:
    """Apply Alembic migrations up to head on the engine's database."""

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option(
        "sqlalchemy.url",
        engine.url.render_as_string(hide_password=False).replace("%", "%%"),
    )
    with immediate_engine(engine).begin() as connection:
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
