"""pgjournal - Journal-tracked SQL migrations for asyncpg and FastAPI.

pgjournal applies ordered ``<tag>.sql`` migrations to PostgreSQL, records
applied migrations in a JSON journal, and rolls them back newest-first. It
also provides connection pool lifecycle, health endpoints and logging setup
for FastAPI services.
"""

from pgjournal.config import DatabaseConfig, ServiceConfig
from pgjournal.connection import check_connection, close_pool, create_pool
from pgjournal.exceptions import (
    ConfigurationError,
    ConnectionError,
    ExecutionError,
    JournalCorruptError,
    JournalError,
    JournalWriteError,
    LockError,
    MigrationError,
    MigrationNotFoundError,
    PgjournalError,
)
from pgjournal.executor import PoolExecutor, SqlExecutor
from pgjournal.fastapi import create_lifespan, get_db_pool
from pgjournal.health import health_router
from pgjournal.journal import Journal, JournalEntry, JournalStore
from pgjournal.locking import advisory_lock
from pgjournal.log import configure_logging
from pgjournal.migrations import MigrationFile, discover_migrations
from pgjournal.runner import MigrationRunner, MigrationStatus

__all__ = [
    "DatabaseConfig",
    "ServiceConfig",
    "create_pool",
    "close_pool",
    "check_connection",
    "PgjournalError",
    "ConnectionError",
    "ConfigurationError",
    "ExecutionError",
    "JournalError",
    "JournalCorruptError",
    "JournalWriteError",
    "LockError",
    "MigrationError",
    "MigrationNotFoundError",
    "SqlExecutor",
    "PoolExecutor",
    "create_lifespan",
    "get_db_pool",
    "health_router",
    "Journal",
    "JournalEntry",
    "JournalStore",
    "advisory_lock",
    "configure_logging",
    "MigrationFile",
    "discover_migrations",
    "MigrationRunner",
    "MigrationStatus",
]
