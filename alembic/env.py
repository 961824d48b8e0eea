"""Alembic environment for the governance schema.

The database URL comes from ``sqlalchemy.url`` in the Alembic config or, when
that is empty, from ``EXECGUARD_AI_DATABASE_URL``. Migrations run through the
same async engine factory the SQL repositories use.
"""

import asyncio
import os
from logging.config import fileConfig

from sqlalchemy.engine import Connection

from alembic import context
from execguard_ai.governance.repos.models import Base
from execguard_ai.governance.repos.sql import create_engine

config = context.config

if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or os.getenv("EXECGUARD_AI_DATABASE_URL")
    if not url:
        raise RuntimeError("Set sqlalchemy.url or EXECGUARD_AI_DATABASE_URL to run migrations")
    return url


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting to a database."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_engine(_database_url())
    async with engine.connect() as connection:
        await connection.run_sync(_do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
