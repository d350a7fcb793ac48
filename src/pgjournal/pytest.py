"""pytest fixtures for pgjournal testing.

Usage in conftest.py:
    from pgjournal.pytest import *  # Import all fixtures

Or selectively:
    from pgjournal.pytest import runner, recording_executor
"""

import pytest

from pgjournal.journal import JournalStore
from pgjournal.runner import MigrationRunner
from pgjournal.testing import RecordingExecutor, scaffold_journal


@pytest.fixture
def migrations_dir(tmp_path):
    """Empty migrations directory."""
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def journal_store(migrations_dir) -> JournalStore:
    """Empty journal scaffolded in migrations_dir."""
    return scaffold_journal(migrations_dir)


@pytest.fixture
def recording_executor() -> RecordingExecutor:
    """Executor that records SQL instead of running it."""
    return RecordingExecutor()


@pytest.fixture
def runner(recording_executor, migrations_dir, journal_store) -> MigrationRunner:
    """MigrationRunner over the recording executor with a fixed clock.

    Override ``recording_executor`` to inject failures.
    """
    ticks = iter(range(1_700_000_000_000, 1_800_000_000_000))
    return MigrationRunner(
        executor=recording_executor,
        migrations_dir=migrations_dir,
        journal_store=journal_store,
        clock=lambda: next(ticks),
    )


__all__ = [
    "migrations_dir",
    "journal_store",
    "recording_executor",
    "runner",
]
