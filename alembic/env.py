"""Alembic environment — rsspanel models, URL from DATABASE_URL or config.yaml."""

from __future__ import annotations

import os
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

from alembic import context

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from rsspanel.config import load_config  # noqa: E402
from rsspanel.database.models import Base  # noqa: E402

target_metadata = Base.metadata


def _database_url() -> str:
    """DATABASE_URL wins; otherwise the panel's own config file decides."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    configured = config.get_main_option("sqlalchemy.url")
    if configured:
        return configured
    return load_config(os.getenv("RSSPANEL_CONFIG", "config.yaml")).database.uri


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(_database_url(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
