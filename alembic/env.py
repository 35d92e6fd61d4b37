"""Alembic environment for the upload pipeline's key-value table.

Migrations run against the same async engine configuration the service
uses (asyncpg in production). Autogenerate only considers tables declared
on ``upload_pipeline.models.Base``; anything else living in the shared
database is ignored.

Usage:
    DATABASE_URL=postgresql://... alembic upgrade head
    DATABASE_URL=postgresql://... alembic revision --autogenerate -m "add column"
"""

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from upload_pipeline.config import get_database_url
from upload_pipeline.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
VERSION_TABLE = "upload_pipeline_alembic_version"


def migration_url() -> str:
    """Return the asyncpg URL for migrations.

    Raises:
        ValueError: If DATABASE_URL is not set.
    """
    if not os.getenv("DATABASE_URL"):
        raise ValueError("DATABASE_URL environment variable is required for migrations")
    return get_database_url()


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    # Other services share the database; never autogenerate drops for their tables
    if type_ == "table" and reflected and compare_to is None:
        return name in target_metadata.tables
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        include_object=include_object,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting (``alembic upgrade --sql``)."""
    _configure(
        url=migration_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection: Connection) -> None:
    _configure(connection=connection, compare_type=True, compare_server_default=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Connect through a throwaway async engine and apply migrations."""
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = migration_url()
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
