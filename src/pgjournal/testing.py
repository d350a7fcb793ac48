"""Testing utilities for pgjournal.

Provides an in-memory SQL executor and helpers for laying out migration
directories, so migration runs can be tested without a database.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

from pgjournal.config import JOURNAL_DIRNAME, JOURNAL_FILENAME
from pgjournal.exceptions import ExecutionError
from pgjournal.journal import Journal, JournalStore
from pgjournal.migrations import down_script_path

logger = logging.getLogger(__name__)


class RecordingExecutor:
    """SqlExecutor that records every batch instead of running it.

    Example:
        executor = RecordingExecutor(fail_on=["BROKEN"])
        runner = MigrationRunner(executor, migrations_dir)
        await runner.migrate()
        assert executor.executed == ["CREATE TABLE a ...;"]

    Args:
        fail_on: Substrings that make a batch fail with ExecutionError
    """

    def __init__(self, fail_on: Optional[Iterable[str]] = None):
        self.fail_on = list(fail_on or [])
        self.executed: list[str] = []
        self.attempted: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.attempted)

    async def execute(self, sql: str) -> None:
        self.attempted.append(sql)
        for marker in self.fail_on:
            if marker in sql:
                logger.debug(f"Simulated failure for batch containing {marker!r}")
                raise ExecutionError(f"simulated failure: {marker}")
        self.executed.append(sql)


def write_migration(
    migrations_dir: Path | str,
    tag: str,
    sql: Optional[str] = None,
    down: Optional[str] = None,
) -> Path:
    """Write ``<tag>.sql`` (and ``down/<tag>.sql`` if ``down`` is given).

    The default SQL is a comment naming the tag, which makes executed
    batches easy to tell apart in assertions.
    """
    directory = Path(migrations_dir)
    directory.mkdir(parents=True, exist_ok=True)

    path = directory / f"{tag}.sql"
    path.write_text(sql if sql is not None else f"-- up {tag}\n", encoding="utf-8")

    if down is not None:
        down_path = down_script_path(directory, tag)
        down_path.parent.mkdir(parents=True, exist_ok=True)
        down_path.write_text(down, encoding="utf-8")

    return path


def scaffold_journal(
    migrations_dir: Path | str,
    tags: Iterable[str] = (),
    version: str = "7",
    dialect: str = "postgresql",
    start: int = 1_700_000_000_000,
) -> JournalStore:
    """Create a journal under ``migrations_dir`` with ``tags`` already applied."""
    store = JournalStore(Path(migrations_dir) / JOURNAL_DIRNAME / JOURNAL_FILENAME)
    journal = Journal(version=version, dialect=dialect)
    for offset, tag in enumerate(tags):
        journal.append(tag, start + offset)
    store.write(journal)
    return store
