"""Connection pool lifecycle."""

import asyncio
import logging
from typing import Optional

import asyncpg

from pgjournal.config import DatabaseConfig
from pgjournal.exceptions import ConnectionError

logger = logging.getLogger(__name__)


async def create_pool(config: DatabaseConfig) -> asyncpg.Pool:
    """Create an asyncpg connection pool.

    The pool is an explicit handle: create it once at process start and pass
    it to whatever needs the database.

    Args:
        config: Database configuration

    Returns:
        asyncpg.Pool: Connected pool

    Raises:
        ConnectionError: If the database cannot be reached
    """
    logger.info(f"Connecting to database: {config.masked_url}")

    try:
        pool = await asyncpg.create_pool(
            dsn=config.url,
            min_size=config.min_connections,
            max_size=config.max_connections,
            timeout=config.timeout,
            command_timeout=config.command_timeout,
            ssl="require" if config.ssl else None,
        )
    except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
        logger.error(f"Database connection failed: {e}")
        raise ConnectionError(f"Failed to connect to database: {e}") from e

    logger.info("Database connected successfully")
    return pool


async def close_pool(pool: Optional[asyncpg.Pool]) -> None:
    """Close a connection pool. Safe to call with None or twice."""
    if pool is None or pool.is_closing():
        return

    await pool.close()
    logger.info("Database disconnected successfully")


async def check_connection(pool: asyncpg.Pool) -> bool:
    """Return True if the database answers a trivial query."""
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
