from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from sourcing_engine.db_migrations import environment_db_url


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Tables are created from the raw SQL in sourcing_engine.db; there is no ORM metadata to diff.
target_metadata = None
database_url = environment_db_url(config.get_main_option("sqlalchemy.url"))


if context.is_offline_mode():
    context.configure(url=database_url, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()
else:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = database_url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()
