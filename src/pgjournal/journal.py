"""Migration journal persistence.

The journal is a single JSON document recording which migrations have been
applied, in order::

    {
      "version": "7",
      "dialect": "postgresql",
      "entries": [
        {"idx": 0, "version": "7", "when": 1700000000000, "tag": "0000_init", "breakpoints": true}
      ]
    }

It is read fully into memory, mutated and rewritten fully after each
successful step.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from pgjournal.exceptions import JournalCorruptError, JournalWriteError

logger = logging.getLogger(__name__)


class JournalEntry(BaseModel):
    """One applied migration."""

    index: int = Field(alias="idx", ge=0)
    version: str
    applied_at: int = Field(alias="when")
    tag: str
    breakpoint: bool = Field(default=True, alias="breakpoints")

    model_config = {"populate_by_name": True}


class Journal(BaseModel):
    """Ordered record of applied migrations."""

    version: str
    dialect: str
    entries: list[JournalEntry] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    def applied_tags(self) -> set[str]:
        return {entry.tag for entry in self.entries}

    def entry_for(self, tag: str) -> Optional[JournalEntry]:
        return next((e for e in self.entries if e.tag == tag), None)

    def append(self, tag: str, when: int) -> JournalEntry:
        """Record ``tag`` as applied at ``when`` (epoch milliseconds)."""
        entry = JournalEntry(
            index=len(self.entries),
            version=self.version,
            applied_at=when,
            tag=tag,
            breakpoint=True,
        )
        self.entries.append(entry)
        return entry

    def remove(self, tag: str) -> None:
        """Drop every entry for ``tag``."""
        self.entries = [e for e in self.entries if e.tag != tag]

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2) + "\n"


def applied_tags(journal: Optional[Journal]) -> set[str]:
    """Tags recorded in ``journal``; an absent journal has none."""
    if journal is None:
        return set()
    return journal.applied_tags()


class JournalStore:
    """Reads and writes the journal file.

    Args:
        path: Location of the journal file
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> Optional[Journal]:
        """Load the journal.

        Returns:
            The journal, or None if the file does not exist

        Raises:
            JournalCorruptError: If the file exists but is not a valid journal
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise JournalCorruptError(f"Cannot read journal {self.path}: {e}") from e
        except UnicodeDecodeError as e:
            raise JournalCorruptError(
                f"Journal {self.path} is not valid UTF-8: {e}"
            ) from e

        try:
            return Journal.model_validate_json(content)
        except ValidationError as e:
            raise JournalCorruptError(
                f"Journal {self.path} is not a valid migration journal: {e}"
            ) from e

    def write(self, journal: Journal) -> None:
        """Replace the journal file with ``journal``.

        The document is written to a temporary file in the same directory and
        moved into place, so a reader sees either the old or the new journal.

        Raises:
            JournalWriteError: If the journal cannot be persisted
        """
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=".journal-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(journal.to_json())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            logger.error(f"Failed to write journal {self.path}: {e}")
            raise JournalWriteError(f"Failed to write journal {self.path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def scaffold(self, version: str = "7", dialect: str = "postgresql") -> Journal:
        """Create an empty journal unless one already exists.

        Returns:
            The existing or newly created journal

        Raises:
            JournalCorruptError: If an existing file is not a valid journal
            JournalWriteError: If the new journal cannot be persisted
        """
        existing = self.read()
        if existing is not None:
            return existing

        journal = Journal(version=version, dialect=dialect)
        self.write(journal)
        logger.info(f"Created migration journal: {self.path}")
        return journal
