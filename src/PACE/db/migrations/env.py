from __future__ import annotations
import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from PACE.db.base import Base
import PACE.db.models  # noqa: F401  (registers every table on Base.metadata)

# Alembic Config object
config = context.config

# Logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _choose_url() -> str:
    # -x url=... wins, then the environment, then alembic.ini
    x = context.get_x_argument(as_dictionary=True)
    if x.get("url"):
        return x["url"]
    for k in ("DATABASE_URL", "ASYNC_DATABASE_URL", "ALEMBIC_DATABASE_URL"):
        v = os.getenv(k)
        if v:
            return v
    from PACE.core.config import settings
    return settings.DATABASE_URL


def run_migrations_offline() -> None:
    context.configure(
        url=_choose_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def _do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _choose_url()
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    async with engine.connect() as connection:
        await connection.run_sync(_do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
