"""Unit tests for pool-backed helpers, using fake asyncpg objects."""

import asyncio
from contextlib import asynccontextmanager

import asyncpg
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

import pgjournal.fastapi as pgjournal_fastapi
from pgjournal.config import DatabaseConfig
from pgjournal.connection import check_connection, close_pool, create_pool
from pgjournal.exceptions import ConnectionError, ExecutionError, LockError
from pgjournal.executor import PoolExecutor
from pgjournal.journal import JournalStore
from pgjournal.locking import advisory_lock, lock_key
from pgjournal.runner import MigrationRunner
from pgjournal.testing import scaffold_journal, write_migration


class FakeConnection:
    def __init__(self, lock_available: bool = True, error: Exception = None):
        self.lock_available = lock_available
        self.error = error
        self.executed = []
        self.queries = []
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield

    async def execute(self, sql):
        if self.error:
            raise self.error
        self.executed.append(sql)

    async def fetchval(self, query, *args):
        self.queries.append((query, args))
        if "pg_try_advisory_lock" in query:
            return self.lock_available
        return True


class FakePool:
    def __init__(self, conn: FakeConnection = None):
        self.conn = conn or FakeConnection()
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    def is_closing(self):
        return self.closed

    async def close(self):
        self.closed = True


class SingleConnectionPool(FakePool):
    """Pool with one connection; a second acquire waits like asyncpg does."""

    def __init__(self):
        super().__init__()
        self.slots = asyncio.Semaphore(1)

    @asynccontextmanager
    async def acquire(self):
        async with self.slots:
            yield self.conn


def test_lock_key_is_stable_and_distinct():
    assert lock_key("pgjournal") == lock_key("pgjournal")
    assert lock_key("pgjournal") != lock_key("other")
    assert -(2**63) <= lock_key("pgjournal") < 2**63


async def test_pool_executor_runs_in_transaction():
    pool = FakePool()

    await PoolExecutor(pool).execute("CREATE TABLE a (id INT);")

    assert pool.conn.executed == ["CREATE TABLE a (id INT);"]
    assert pool.conn.transactions == 1


async def test_pool_executor_wraps_database_errors():
    pool = FakePool(FakeConnection(error=asyncpg.PostgresError("syntax error")))

    with pytest.raises(ExecutionError) as exc_info:
        await PoolExecutor(pool).execute("CREATE TABEL a;")

    assert isinstance(exc_info.value.__cause__, asyncpg.PostgresError)


async def test_advisory_lock_acquires_and_releases():
    pool = FakePool()

    async with advisory_lock(pool, "deploy"):
        assert [q for q, _ in pool.conn.queries] == [
            "SELECT pg_try_advisory_lock($1)"
        ]

    (_, unlock_args) = pool.conn.queries[-1]
    assert pool.conn.queries[-1][0] == "SELECT pg_advisory_unlock($1)"
    assert unlock_args == (lock_key("deploy"),)


async def test_advisory_lock_released_on_error():
    pool = FakePool()

    with pytest.raises(RuntimeError):
        async with advisory_lock(pool):
            raise RuntimeError("boom")

    assert pool.conn.queries[-1][0] == "SELECT pg_advisory_unlock($1)"


async def test_advisory_lock_held_elsewhere():
    pool = FakePool(FakeConnection(lock_available=False))

    with pytest.raises(LockError, match="held by another process"):
        async with advisory_lock(pool):
            pytest.fail("lock body must not run")

    assert len(pool.conn.queries) == 1


async def test_check_connection():
    assert await check_connection(FakePool()) is True


@pytest.mark.parametrize("error", [asyncio.TimeoutError(), OSError("refused")])
async def test_create_pool_wraps_connect_failures(monkeypatch, error):
    async def failing_create_pool(**kwargs):
        raise error

    monkeypatch.setattr(asyncpg, "create_pool", failing_create_pool)

    with pytest.raises(ConnectionError, match="Failed to connect"):
        await create_pool(DatabaseConfig(url="postgresql://localhost/app"))


async def test_close_pool_is_idempotent():
    pool = FakePool()

    await close_pool(pool)
    await close_pool(pool)
    await close_pool(None)

    assert pool.closed


class TestLifespan:
    @pytest.fixture
    def fake_pool(self, monkeypatch):
        pool = FakePool()

        async def fake_create_pool(config):
            return pool

        monkeypatch.setattr(pgjournal_fastapi, "create_pool", fake_create_pool)
        return pool

    def test_pool_stored_and_closed(self, fake_pool):
        config = DatabaseConfig(url="postgresql://localhost/app")
        app = FastAPI(lifespan=pgjournal_fastapi.create_lifespan(config))

        @app.get("/pool")
        async def uses_pool(pool=Depends(pgjournal_fastapi.get_db_pool)):
            return {"same": pool is fake_pool}

        with TestClient(app) as client:
            assert client.get("/pool").json() == {"same": True}
            assert app.state.db_config is config
            assert not fake_pool.closed

        assert fake_pool.closed

    def test_migrate_on_startup(self, fake_pool, migrations_dir):
        write_migration(migrations_dir, "0000_a", "CREATE TABLE a (id INT);")
        scaffold_journal(migrations_dir)
        config = DatabaseConfig(
            url="postgresql://localhost/app", migrations_dir=str(migrations_dir)
        )
        app = FastAPI(
            lifespan=pgjournal_fastapi.create_lifespan(config, migrate_on_startup=True)
        )

        with TestClient(app):
            pass

        assert fake_pool.conn.executed == ["CREATE TABLE a (id INT);"]
        journal = JournalStore(config.resolved_journal_path()).read()
        assert [e.tag for e in journal.entries] == ["0000_a"]
        assert fake_pool.closed


async def test_pinned_executor_skips_pool():
    pool = SingleConnectionPool()
    executor = PoolExecutor(pool)

    async with pool.acquire() as conn:
        async with executor.pinned(conn):
            await asyncio.wait_for(executor.execute("SELECT 1;"), timeout=2)

    assert pool.conn.executed == ["SELECT 1;"]


class TestSingleConnectionPool:
    @pytest.fixture
    def config(self, migrations_dir):
        return DatabaseConfig(
            url="postgresql://localhost/app",
            min_connections=1,
            max_connections=1,
            migrations_dir=str(migrations_dir),
        )

    async def test_migrate_runs_on_lock_connection(self, config, migrations_dir):
        write_migration(migrations_dir, "0000_a", "CREATE TABLE a (id INT);")
        write_migration(migrations_dir, "0001_b", "CREATE TABLE b (id INT);")
        scaffold_journal(migrations_dir)
        pool = SingleConnectionPool()
        runner = MigrationRunner.from_pool(pool, config)

        applied = await asyncio.wait_for(runner.migrate(), timeout=2)

        assert applied == ["0000_a", "0001_b"]
        assert pool.conn.executed == [
            "CREATE TABLE a (id INT);",
            "CREATE TABLE b (id INT);",
        ]
        assert pool.conn.queries[-1][0] == "SELECT pg_advisory_unlock($1)"

    async def test_rollback_runs_on_lock_connection(self, config, migrations_dir):
        write_migration(migrations_dir, "0000_a", down="DROP TABLE a;")
        scaffold_journal(migrations_dir, ["0000_a"])
        pool = SingleConnectionPool()
        runner = MigrationRunner.from_pool(pool, config)

        rolled_back = await asyncio.wait_for(runner.rollback(), timeout=2)

        assert rolled_back == ["0000_a"]
        assert pool.conn.executed == ["DROP TABLE a;"]

    async def test_executor_returns_to_pool_after_run(self, config, migrations_dir):
        pool = SingleConnectionPool()
        runner = MigrationRunner.from_pool(pool, config)

        await runner.migrate()
        await asyncio.wait_for(runner.executor.execute("SELECT 1;"), timeout=2)

        assert pool.conn.executed == ["SELECT 1;"]
