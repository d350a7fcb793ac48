"""FastAPI integration for pgjournal."""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import asyncpg
from fastapi import FastAPI, Request

from pgjournal.config import DatabaseConfig, ServiceConfig
from pgjournal.connection import close_pool, create_pool
from pgjournal.runner import MigrationRunner

logger = logging.getLogger(__name__)


def create_lifespan(
    config: DatabaseConfig,
    service: Optional[ServiceConfig] = None,
    migrate_on_startup: bool = False,
):
    """Create a lifespan context manager for database pool management.

    The pool is created once at startup, stored on ``app.state.db_pool`` and
    closed at shutdown. With ``migrate_on_startup`` pending migrations are
    applied before the application starts serving; a failure aborts startup.

    Example:
        from fastapi import FastAPI
        from pgjournal import DatabaseConfig, create_lifespan, health_router

        config = DatabaseConfig(url="postgresql://localhost/mydb")

        app = FastAPI(lifespan=create_lifespan(config))
        app.include_router(health_router)

    Args:
        config: Database configuration
        service: Service identity reported by health checks
        migrate_on_startup: Apply pending migrations during startup

    Returns:
        An async context manager function for FastAPI lifespan
    """
    service = service or ServiceConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage database connection pool lifecycle."""
        logger.info("Initializing database connection pool")
        pool = await create_pool(config)
        app.state.db_pool = pool
        app.state.db_config = config
        app.state.service_config = service
        app.state.started_at = time.monotonic()
        logger.info("Database connection pool initialized")

        try:
            if migrate_on_startup:
                applied = await MigrationRunner.from_pool(pool, config).migrate()
                if applied:
                    logger.info(f"Applied {len(applied)} migration(s) at startup")

            yield

        finally:
            logger.info("Shutting down database connection pool")
            pool_instance: Optional[asyncpg.Pool] = getattr(app.state, "db_pool", None)
            await close_pool(pool_instance)
            logger.info("Database connection pool shut down")

    return lifespan


async def get_db_pool(request: Request) -> asyncpg.Pool:
    """Dependency to get database pool from request.

    Usage:
        from fastapi import Depends
        from pgjournal import get_db_pool

        @app.get("/users")
        async def get_users(pool: asyncpg.Pool = Depends(get_db_pool)):
            async with pool.acquire() as conn:
                return await conn.fetch("SELECT * FROM users")
    """
    return request.app.state.db_pool
