"""Alembic environment for the Scanner Shield protection tables."""
from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

from scanner_shield.core.settings import settings
from scanner_shield.db.session import Base
from scanner_shield.models import (  # noqa: F401
    BlockedIP,
    RateLimitConfig,
    RateLimitRecord,
    RateLimitViolation,
    WhitelistEntry,
)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# `alembic -x url=...` wins over ALEMBIC_URL, which wins over DATABASE_URL.
database_url = (
    context.get_x_argument(as_dictionary=True).get("url")
    or os.getenv("ALEMBIC_URL")
    or config.get_main_option("sqlalchemy.url")
    or settings.database_url_sync
)
config.set_main_option("sqlalchemy.url", database_url)

target_metadata = Base.metadata

# SQLite cannot ALTER most columns in place; batch mode copies the table.
render_as_batch = make_url(database_url).get_backend_name() == "sqlite"


def include_object(obj, name, type_, reflected, compare_to):
    """Limit autogenerate to tables owned by this service.

    The protection tables may live in a database shared with the scanner, so
    reflected tables with no model here are left alone.
    """
    if type_ == "table":
        return name in target_metadata.tables
    return True


def _configure_options() -> dict:
    return {
        "target_metadata": target_metadata,
        "include_object": include_object,
        "compare_type": True,
        "render_as_batch": render_as_batch,
    }


def run_migrations_offline() -> None:
    """Emit SQL for the protection tables without a live connection."""
    context.configure(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a single short-lived connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
