class PgjournalError(Exception):
    """Base exception for all pgjournal errors."""

    ...


class ConnectionError(PgjournalError):
    """Raised when database connection fails."""

    ...


class ConfigurationError(PgjournalError):
    """Raised when configuration is invalid."""

    ...


class ExecutionError(PgjournalError):
    """Raised by a SQL executor when a statement batch fails."""

    ...


class LockError(PgjournalError):
    """Raised when another run already holds the migration lock."""

    ...


class JournalError(PgjournalError):
    """Raised when journal operations fail."""

    ...


class JournalCorruptError(JournalError):
    """Raised when the journal file exists but cannot be parsed."""

    ...


class JournalWriteError(JournalError):
    """Raised when the journal file cannot be persisted."""

    ...


class MigrationError(PgjournalError):
    """Raised when migration operations fail.

    Args:
        message: Error message
        completed: Tags that were processed before the failure
        total: Number of migrations the run set out to process
    """

    def __init__(
        self,
        message: str,
        completed: list[str] | None = None,
        total: int = 0,
    ):
        super().__init__(message)
        self.completed = list(completed or [])
        self.total = total


class MigrationNotFoundError(MigrationError):
    """Raised when a rollback target is not in the journal."""

    ...
