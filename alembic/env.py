from __future__ import annotations

import asyncio
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from agentflow.core.config import get_settings
from agentflow.db.models import metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _database_url() -> str:
    dsn = get_settings().postgres.dsn
    if dsn is None:
        raise RuntimeError("POSTGRES__DSN must be set to run task table migrations")
    url = str(dsn)
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def _configure_and_run(**options: Any) -> None:
    context.configure(target_metadata=metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    _configure_and_run(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})


async def _run_online() -> None:
    section: dict[str, Any] = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = _database_url()
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    def _migrate(connection: Connection) -> None:
        _configure_and_run(connection=connection)

    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(_run_online())
