"""Utilities to run Alembic migrations programmatically."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy.engine import Engine

PROJECT_ROOT = Path(__file__).resolve().parents[4]


def upgrade_head(db_path: Path) -> None:
    """Apply Alembic migrations up to head for the given SQLite database."""

    command.upgrade(_alembic_config(db_path), "head")


def current_revision(engine: Engine) -> str | None:
    """Return the revision stamped in the database, or None before migrations ran."""

    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def _alembic_config(db_path: Path) -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config
