"""Journal-tracked migration apply and rollback."""

import logging
import time
from contextlib import AbstractAsyncContextManager, asynccontextmanager, nullcontext
from pathlib import Path
from typing import Callable, Optional

import asyncpg
from pydantic import BaseModel

from pgjournal.config import JOURNAL_DIRNAME, JOURNAL_FILENAME, DatabaseConfig
from pgjournal.exceptions import (
    ExecutionError,
    JournalWriteError,
    MigrationError,
    MigrationNotFoundError,
)
from pgjournal.executor import PoolExecutor, SqlExecutor
from pgjournal.journal import Journal, JournalEntry, JournalStore, applied_tags
from pgjournal.locking import advisory_lock
from pgjournal.migrations import MigrationFile, discover_migrations

logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return int(time.time() * 1000)


def pending_migrations(
    files: list[MigrationFile], journal: Optional[Journal]
) -> list[MigrationFile]:
    """Files whose tag is not recorded in ``journal``, file order preserved."""
    applied = applied_tags(journal)
    return [m for m in files if m.tag not in applied]


class MigrationStatus(BaseModel):
    """Snapshot of applied and pending migrations."""

    journal_exists: bool
    applied: list[JournalEntry]
    pending: list[MigrationFile]


class MigrationRunner:
    """Applies and rolls back migrations, recording progress in a journal.

    Runs are strictly sequential: one migration at a time, in tag order, with
    the journal rewritten after every successful step. A failed step stops
    the run; steps completed before it stay applied and recorded.

    Args:
        executor: Runs one SQL batch; raises ExecutionError on failure
        migrations_dir: Directory containing ``<tag>.sql`` files
        journal_store: Journal location (default: <migrations_dir>/meta/_journal.json)
        lock: Zero-argument callable returning an async context manager held
            for the duration of each migrate/rollback run
        clock: Returns the current time in epoch milliseconds
        require_down_scripts: Fail a rollback whose migrations lack down scripts
            instead of re-executing their forward SQL
    """

    def __init__(
        self,
        executor: SqlExecutor,
        migrations_dir: Path | str,
        journal_store: Optional[JournalStore] = None,
        lock: Optional[Callable[[], AbstractAsyncContextManager]] = None,
        clock: Optional[Callable[[], int]] = None,
        require_down_scripts: bool = False,
    ):
        self.executor = executor
        self.migrations_dir = Path(migrations_dir)
        self.journal_store = journal_store or JournalStore(
            self.migrations_dir / JOURNAL_DIRNAME / JOURNAL_FILENAME
        )
        self._lock = lock or nullcontext
        self._clock = clock or _now_millis
        self.require_down_scripts = require_down_scripts

    @classmethod
    def from_pool(cls, pool: asyncpg.Pool, config: DatabaseConfig) -> "MigrationRunner":
        """Runner executing on ``pool``, guarded by the configured advisory lock.

        Batches run on the connection that holds the lock, so a run needs
        only one connection from the pool.
        """
        executor = PoolExecutor(pool)

        @asynccontextmanager
        async def lock():
            async with advisory_lock(pool, config.lock_name) as conn:
                async with executor.pinned(conn):
                    yield

        return cls(
            executor=executor,
            migrations_dir=config.migrations_dir,
            journal_store=JournalStore(config.resolved_journal_path()),
            lock=lock,
            require_down_scripts=config.require_down_scripts,
        )

    def discover(self) -> list[MigrationFile]:
        return discover_migrations(self.migrations_dir)

    def pending(self, journal: Optional[Journal] = None) -> list[MigrationFile]:
        """Migrations whose tag is not in the journal, in apply order."""
        if journal is None:
            journal = self.journal_store.read()
        return pending_migrations(self.discover(), journal)

    def status(self) -> MigrationStatus:
        journal = self.journal_store.read()
        return MigrationStatus(
            journal_exists=journal is not None,
            applied=list(journal.entries) if journal else [],
            pending=self.pending(journal),
        )

    async def migrate(self, dry_run: bool = False) -> list[str]:
        """Apply all pending migrations in order.

        Progress is only recorded when a journal already exists on disk. With
        no journal the migrations still run, but nothing is persisted and the
        next run will attempt them again.

        Args:
            dry_run: Return what would be applied without executing anything

        Returns:
            Tags of the migrations that were applied (or would be, in dry-run)

        Raises:
            JournalCorruptError: If the journal file cannot be parsed
            MigrationError: If any migration fails; carries the completed tags
        """
        async with self._lock():
            journal = self.journal_store.read()
            files = self.discover()
            pending = pending_migrations(files, journal)

            logger.info(
                f"Found {len(files)} migration files, {len(applied_tags(journal))} applied, "
                f"{len(pending)} pending"
            )

            if not pending:
                logger.info("Database is up to date")
                return []

            if dry_run:
                return [m.tag for m in pending]

            if journal is None:
                logger.warning(
                    f"No journal at {self.journal_store.path}; applied migrations "
                    "will not be recorded. Run 'pgjournal init' to create one."
                )

            logger.info(
                f"Running {len(pending)} migrations: "
                f"{', '.join(m.tag for m in pending)}"
            )

            start = time.monotonic()
            completed: list[str] = []

            for migration in pending:
                try:
                    sql = migration.read_sql()
                except (OSError, UnicodeDecodeError) as e:
                    logger.error(f"Cannot read {migration.filename}: {e} - stopping")
                    raise self._failure(completed, len(pending)) from e

                try:
                    await self._execute(migration.filename, sql)
                except ExecutionError as e:
                    logger.error(f"Migration failed: {migration.filename} - stopping")
                    raise self._failure(completed, len(pending)) from e

                if journal is not None:
                    journal.append(migration.tag, self._clock())
                    try:
                        self.journal_store.write(journal)
                    except JournalWriteError as e:
                        logger.error(
                            f"Applied {migration.filename} but could not record it "
                            "in the journal - stopping"
                        )
                        raise self._failure(completed, len(pending)) from e

                completed.append(migration.tag)

            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(
                f"Successfully completed {len(completed)} migrations in {duration_ms}ms"
            )
            return completed

    async def rollback(
        self,
        target: Optional[str] = None,
        count: Optional[int] = None,
        dry_run: bool = False,
    ) -> list[str]:
        """Undo applied migrations, newest first.

        Selection:
            target: undo everything applied after this tag (the tag stays applied)
            count: undo the N most recent migrations
            neither: undo the most recent migration

        ``target`` takes precedence over ``count``. Each migration is undone
        with its down script (``down/<tag>.sql``) when present, otherwise by
        re-executing its forward SQL.

        Args:
            target: Tag to roll back to, exclusive
            count: Number of migrations to roll back (must be >= 1)
            dry_run: Return what would be rolled back without executing anything

        Returns:
            Tags that were rolled back, in execution order

        Raises:
            ValueError: If count is less than 1
            MigrationNotFoundError: If target is not in the journal
            JournalCorruptError: If the journal file cannot be parsed
            MigrationError: If any rollback step fails
        """
        if not target and count is not None and count < 1:
            raise ValueError(f"Rollback count must be >= 1, got {count}")

        async with self._lock():
            journal = self.journal_store.read()
            if journal is None or not journal.entries:
                logger.info("No migrations to rollback")
                return []

            to_rollback = self._select_rollback(journal, target, count)
            if not to_rollback:
                logger.info("No migrations to rollback")
                return []

            # Newest first, whatever the selection
            ordered = list(reversed(to_rollback))
            tags = [e.tag for e in ordered]

            files = {m.tag: m for m in self.discover()}
            if self.require_down_scripts:
                missing = [t for t in tags if t not in files or not files[t].has_down_script]
                if missing:
                    raise MigrationError(
                        f"Missing down scripts for: {', '.join(missing)}",
                        total=len(ordered),
                    )

            if dry_run:
                return tags

            logger.info(f"Rolling back {len(ordered)} migrations: {', '.join(tags)}")

            start = time.monotonic()
            completed: list[str] = []

            for entry in ordered:
                migration = files.get(entry.tag)
                filename = f"{entry.tag}.sql"

                try:
                    sql = self._rollback_sql(entry.tag, migration)
                except (OSError, UnicodeDecodeError) as e:
                    logger.error(f"Cannot read rollback SQL for {filename}: {e} - stopping")
                    raise self._failure(completed, len(ordered), "Rollback failed") from e

                try:
                    await self._execute(filename, sql)
                except ExecutionError as e:
                    logger.error(f"Rollback failed: {filename} - stopping")
                    raise self._failure(completed, len(ordered), "Rollback failed") from e

                journal.remove(entry.tag)
                try:
                    self.journal_store.write(journal)
                except JournalWriteError as e:
                    logger.error(
                        f"Rolled back {filename} but could not update the journal - stopping"
                    )
                    raise self._failure(completed, len(ordered), "Rollback failed") from e

                completed.append(entry.tag)

            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(
                f"Successfully rolled back {len(completed)} migrations in {duration_ms}ms"
            )
            return completed

    def _select_rollback(
        self, journal: Journal, target: Optional[str], count: Optional[int]
    ) -> list[JournalEntry]:
        entries = journal.entries

        if target:
            position = next(
                (i for i, e in enumerate(entries) if e.tag == target), None
            )
            if position is None:
                raise MigrationNotFoundError(f"Migration not found: {target}")
            return entries[position + 1 :]

        if count is not None:
            return entries[max(0, len(entries) - count) :]

        return entries[-1:]

    def _rollback_sql(self, tag: str, migration: Optional[MigrationFile]) -> str:
        if migration is None:
            raise FileNotFoundError(f"Migration file not found for {tag}")

        if migration.has_down_script:
            return migration.read_down_sql()

        logger.warning(
            f"No down script for {migration.filename}; re-executing its forward SQL"
        )
        return migration.read_sql()

    async def _execute(self, filename: str, sql: str) -> None:
        start = time.monotonic()
        logger.info(f"Executing: {filename}")

        try:
            await self.executor.execute(sql)
        except ExecutionError as e:
            logger.error(f"Failed: {filename} - {e}")
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Completed: {filename} ({duration_ms}ms)")

    def _failure(
        self, completed: list[str], total: int, prefix: str = "Failed"
    ) -> MigrationError:
        return MigrationError(
            f"{prefix} after {len(completed)}/{total} migrations",
            completed=completed,
            total=total,
        )
