"""Advisory locking so only one migration run touches a database at a time."""

import hashlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from pgjournal.exceptions import LockError

logger = logging.getLogger(__name__)


def lock_key(name: str) -> int:
    """Stable signed 64-bit advisory lock key for ``name``."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@asynccontextmanager
async def advisory_lock(
    pool: asyncpg.Pool, name: str = "pgjournal"
) -> AsyncIterator[asyncpg.Connection]:
    """Hold a session-level PostgreSQL advisory lock for the enclosed block.

    The lock lives on a dedicated pool connection and is released when the
    block exits, including on errors. A lock already held by another session
    fails immediately instead of waiting.

    Yields:
        The connection holding the lock

    Raises:
        LockError: If another session holds the lock
    """
    key = lock_key(name)

    async with pool.acquire() as conn:
        acquired = await conn.fetchval("SELECT pg_try_advisory_lock($1)", key)
        if not acquired:
            raise LockError(
                f"Migration lock '{name}' is held by another process; "
                "wait for it to finish and retry"
            )

        logger.debug(f"Acquired migration lock '{name}' ({key})")
        try:
            yield conn
        finally:
            await conn.fetchval("SELECT pg_advisory_unlock($1)", key)
            logger.debug(f"Released migration lock '{name}'")
