"""Migration file discovery."""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

MIGRATION_SUFFIX = ".sql"
DOWN_DIRNAME = "down"

_SEQUENCE_RE = re.compile(r"^(\d+)_")


class MigrationFile(BaseModel):
    """Represents one migration file on disk.

    The tag is the filename without its extension and doubles as the
    ordering key, so tags must sort lexicographically in apply order.
    """

    tag: str
    path: Path
    down_path: Optional[Path] = None

    model_config = {"frozen": True}

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def has_down_script(self) -> bool:
        return self.down_path is not None and self.down_path.exists()

    def read_sql(self) -> str:
        """Read the forward SQL batch.

        Raises:
            OSError: If the file cannot be read
        """
        return self.path.read_text(encoding="utf-8")

    def read_down_sql(self) -> str:
        """Read the paired down script.

        Raises:
            FileNotFoundError: If the migration has no down script
            OSError: If the file cannot be read
        """
        if self.down_path is None:
            raise FileNotFoundError(f"No down script for migration {self.tag}")
        return self.down_path.read_text(encoding="utf-8")


def down_script_path(migrations_dir: Path | str, tag: str) -> Path:
    """Location of the down script paired with ``tag``."""
    return Path(migrations_dir) / DOWN_DIRNAME / f"{tag}{MIGRATION_SUFFIX}"


def discover_migrations(migrations_dir: Path | str) -> list[MigrationFile]:
    """Discover all migrations in a directory.

    Only files directly inside the directory are considered; the ``meta``
    and ``down`` subdirectories are never scanned. Ordering is purely
    lexicographic on filename.

    Returns:
        List of MigrationFile objects sorted by filename, or an empty list
        if the directory is missing or unreadable
    """
    directory = Path(migrations_dir)

    try:
        filenames = sorted(
            p.name
            for p in directory.iterdir()
            if p.suffix == MIGRATION_SUFFIX and p.is_file()
        )
    except OSError as e:
        logger.debug(f"No migrations discovered in {directory}: {e}")
        return []

    migrations = []
    for filename in filenames:
        tag = filename[: -len(MIGRATION_SUFFIX)]
        down_path = down_script_path(directory, tag)
        migrations.append(
            MigrationFile(
                tag=tag,
                path=directory / filename,
                down_path=down_path if down_path.exists() else None,
            )
        )

    return migrations


def next_sequence(migrations_dir: Path | str) -> int:
    """Return the sequence number following the highest existing one."""
    highest = -1
    for migration in discover_migrations(migrations_dir):
        match = _SEQUENCE_RE.match(migration.tag)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


def create_migration(migrations_dir: Path | str, name: str) -> tuple[Path, Path]:
    """Create a new migration file and its down script.

    Args:
        migrations_dir: Directory to create the migration in
        name: Human-readable migration name (e.g., "add_users_table")

    Returns:
        Tuple of (up_file_path, down_file_path)

    Raises:
        ValueError: If the name is empty after sanitizing
        FileExistsError: If a migration with the same tag already exists
    """
    directory = Path(migrations_dir)

    # Sanitize name (replace spaces with underscores, remove special chars)
    clean_name = name.replace(" ", "_").lower()
    clean_name = "".join(c for c in clean_name if c.isalnum() or c == "_")
    if not clean_name:
        raise ValueError(f"Invalid migration name: {name!r}")

    tag = f"{next_sequence(directory):04d}_{clean_name}"
    up_file = directory / f"{tag}{MIGRATION_SUFFIX}"
    down_file = down_script_path(directory, tag)

    if up_file.exists():
        raise FileExistsError(f"Migration already exists: {up_file}")

    down_file.parent.mkdir(parents=True, exist_ok=True)

    created = datetime.now().isoformat()
    up_file.write_text(
        f"-- Migration: {name}\n-- Created: {created}\n--\n"
        "-- Add your migration SQL here\n\n",
        encoding="utf-8",
    )
    down_file.write_text(
        f"-- Migration: {name} (rollback)\n-- Created: {created}\n--\n"
        "-- Add SQL that reverses the migration here\n\n",
        encoding="utf-8",
    )

    logger.info(f"Created migration files: {up_file.name}, down/{down_file.name}")

    return up_file, down_file
