import os

import pytest

from pgjournal import DatabaseConfig

# Import all standard fixtures from pgjournal.pytest
from pgjournal.pytest import (
    journal_store,
    migrations_dir,
    recording_executor,
    runner,
)

# Make fixtures available to all tests (avoid F401 warning)
__all__ = [
    "journal_store",
    "migrations_dir",
    "recording_executor",
    "runner",
]


@pytest.fixture
def db_config(migrations_dir):
    """Configuration for the PostgreSQL-backed integration tests.

    Uses TEST_DATABASE_URL and points the migrations directory at the
    per-test temporary directory.
    """
    url = os.getenv("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")

    return DatabaseConfig(
        url=url,
        min_connections=1,
        max_connections=3,
        migrations_dir=str(migrations_dir),
        lock_name=f"pgjournal-test-{os.getpid()}",
    )
