"""Database connection management using asyncpg."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from app.config import get_settings
from app.errors import ConfigurationError

logger = logging.getLogger(__name__)

APPLICATION_NAME = "lineup-tips-backend"

# Global connection pool, shared by the API and the sync scripts
_pool: asyncpg.Pool | None = None


async def init_pool() -> asyncpg.Pool:
    """
    Initialize the database connection pool.

    Raises:
        ConfigurationError: If DATABASE_URL is not set
    """
    global _pool
    if _pool is not None:
        return _pool

    settings = get_settings()
    db_url = settings.db_connection_string
    if not db_url:
        raise ConfigurationError(
            "Database connection string not configured. Set DATABASE_URL."
        )

    logger.info(
        f"Initializing database pool (min={settings.db_pool_min_size}, "
        f"max={settings.db_pool_max_size})"
    )
    _pool = await asyncpg.create_pool(
        db_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
        server_settings={"application_name": APPLICATION_NAME},
    )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        logger.info("Closing database connection pool")
        await _pool.close()
        _pool = None


def get_pool() -> asyncpg.Pool:
    """Get the current connection pool (must be initialized first)."""
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return _pool


def pool_ready() -> bool:
    return _pool is not None


@asynccontextmanager
async def get_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Borrow a connection from the pool for the duration of the block."""
    async with get_pool().acquire() as conn:
        yield conn
