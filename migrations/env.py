"""
Alembic environment for the Waterline schema.

Runs migrations against PostgreSQL through asyncpg. The database URL always
comes from the application settings (WATERLINE_DATABASE_URL), so alembic.ini
carries no credentials.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from waterline.core.config import get_settings
from waterline.core.logging import get_logger
from waterline.database.base import Base
from waterline.database.connection import to_async_database_url

# Import all models to ensure they are registered with Base.metadata
from waterline.database.models.order import Order  # noqa: F401
from waterline.database.models.settings import BusinessSettings  # noqa: F401
from waterline.database.models.user import RoleProfile  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = get_logger(__name__)
target_metadata = Base.metadata
database_url = to_async_database_url(get_settings().database_url)


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    logger.info("Running migrations in offline mode")
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        transaction_per_migration=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = create_async_engine(database_url, poolclass=pool.NullPool)
    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    except Exception as e:
        logger.error(
            "Migration failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await connectable.dispose()
    logger.info("Migrations applied")


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
