"""SQL execution capability used by the migration runner."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

import asyncpg

from pgjournal.exceptions import ExecutionError

logger = logging.getLogger(__name__)


class SqlExecutor(Protocol):
    """Anything that can run a batch of SQL statements as one unit.

    Implementations raise ExecutionError when the batch fails.
    """

    async def execute(self, sql: str) -> None: ...


async def _run_batch(conn: asyncpg.Connection, sql: str) -> None:
    try:
        async with conn.transaction():
            await conn.execute(sql)
    except asyncpg.PostgresError as e:
        raise ExecutionError(str(e)) from e


class PoolExecutor:
    """Runs SQL batches on connections from an asyncpg pool.

    Each batch executes inside its own transaction, so a failing statement
    leaves no partial schema change behind. While a connection is pinned
    (see ``pinned``) every batch runs on it instead of a pooled one.

    Args:
        pool: asyncpg connection pool owned by the caller
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool
        self._pinned: Optional[asyncpg.Connection] = None

    @asynccontextmanager
    async def pinned(self, conn: asyncpg.Connection) -> AsyncIterator[None]:
        """Run batches on ``conn`` for the duration of the block."""
        self._pinned = conn
        try:
            yield
        finally:
            self._pinned = None

    async def execute(self, sql: str) -> None:
        if self._pinned is not None:
            await _run_batch(self._pinned, sql)
            return

        async with self.pool.acquire() as conn:
            await _run_batch(conn, sql)
