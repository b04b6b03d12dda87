"""``flask db`` commands: Alembic for managed databases, ``init-schema`` for local ones."""

from __future__ import annotations

import os
from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask

from sourcing_engine.db import connect_database, ensure_schema


PROJECT_ROOT = Path(__file__).resolve().parents[1]
MIGRATIONS_DIR = PROJECT_ROOT / "migrations"
ALEMBIC_INI = PROJECT_ROOT / "alembic.ini"


def to_sqlalchemy_url(raw_db_path: str) -> str:
    """Turn a ``DB_PATH`` value (file path or postgres DSN) into a SQLAlchemy URL."""
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH is not set; migrations need a database.")
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")):
        return raw
    return f"sqlite:///{Path(raw).expanduser().resolve().as_posix()}"


def environment_db_url(fallback: str | None) -> str:
    """``DATABASE_URL`` or ``DB_PATH`` from the environment win over the configured URL."""
    return to_sqlalchemy_url(os.environ.get("DATABASE_URL") or os.environ.get("DB_PATH") or fallback or "")


def build_alembic_config(db_path: str) -> AlembicConfig:
    if not ALEMBIC_INI.exists():
        raise RuntimeError(f"alembic.ini not found in {PROJECT_ROOT}.")
    alembic_cfg = AlembicConfig(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("script_location", MIGRATIONS_DIR.as_posix())
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(db_path))
    return alembic_cfg


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Sourcing engine schema management."""

    def _alembic() -> AlembicConfig:
        return build_alembic_config(app.config["DB_PATH"])

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(_alembic(), revision)
        click.echo(f"Schema upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(_alembic(), revision)
        click.echo(f"Schema downgraded to {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        click.echo(f"Database: {to_sqlalchemy_url(app.config['DB_PATH'])}")
        command.current(_alembic(), verbose=True)

    @db_group.command("init-schema")
    def db_init_schema() -> None:
        """Create the engine tables directly, without recording an Alembic revision."""
        db = connect_database(app.config["DB_PATH"])
        try:
            ensure_schema(db)
        finally:
            db.close()
        click.echo("Engine tables created.")
