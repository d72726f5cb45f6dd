"""
Alembic Environment Configuration for Shyftcut Entitlements

Customized for:
- Async SQLAlchemy/SQLModel
- DATABASE_URL (or SUPABASE_URL + SUPABASE_PASSWORD) from settings
- Exclude Supabase system tables from autogenerate
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context
from sqlmodel import SQLModel

from shyftcut.infrastructure.db.database import resolve_database_url

# Import all models to register them with SQLModel.metadata
from shyftcut.infrastructure.db.models import (  # noqa: F401
    SubscriptionModel,
    UsageCounterModel,
    UsageIncrementKeyModel,
)

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# SQLModel metadata for autogenerate
target_metadata = SQLModel.metadata

# Schemas owned by Supabase itself
EXCLUDE_SCHEMAS = {"auth", "storage", "realtime", "extensions", "graphql", "graphql_public"}


def include_object(object, name, type_, reflected, compare_to):
    """Only manage tables that belong to this service."""
    if type_ == "table":
        if getattr(object, "schema", None) in EXCLUDE_SCHEMAS:
            return False
        if reflected and name not in target_metadata.tables:
            return False
    return True


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    Generates SQL script without database connection.
    """
    context.configure(
        url=resolve_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    """Run migrations with connection."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """
    Run migrations in 'online' mode with async engine.
    """
    connectable = create_async_engine(
        resolve_database_url(),
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
