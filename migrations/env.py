# -*- coding: utf-8 -*-
"""Alembic environment for Backlify Payments (async).

Purpose:
    • Run migrations over async SQLAlchemy + asyncpg.
    • Take the DSN from config_core (DATABASE_URL), never from alembic.ini.
    • Expose Base.metadata with every model registered.

Prohibitions:
    • No create_all here; DDL lives in the version files.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from backlify.core.config_core import get_settings
from backlify.core.database_core import Base
from backlify.models import MODEL_REGISTRY

config = context.config
if config.config_file_name and config.get_section("loggers"):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

settings = get_settings()
db_url = settings.database_url_asyncpg()
config.set_main_option("sqlalchemy.url", db_url)

# importing backlify.models registers every table on Base.metadata
_ = MODEL_REGISTRY
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL without a connection (review mode)."""
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
