"""Database and service configuration."""

import os
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from pgjournal.exceptions import ConfigurationError

JOURNAL_DIRNAME = "meta"
JOURNAL_FILENAME = "_journal.json"

_TRUTHY = ("1", "true", "yes", "on")


class DatabaseConfig(BaseModel):
    """Database configuration.

    Args:
        url: PostgreSQL connection URL (postgresql://...)
        min_connections: Minimum pool size (default: 5)
        max_connections: Maximum pool size (default: 20)
        timeout: Connection timeout in seconds (default: 10.0)
        command_timeout: Query timeout in seconds (default: 60.0)
        ssl: Require SSL without certificate verification (default: False)
        migrations_dir: Directory holding ``<tag>.sql`` migration files
        journal_path: Journal file location (default: <migrations_dir>/meta/_journal.json)
        journal_version: Schema version written into a new journal (default: "7")
        dialect: SQL dialect recorded in a new journal (default: "postgresql")
        lock_name: Name of the advisory lock held during a run
        require_down_scripts: Refuse to roll back migrations without a down script

    Raises:
        ValidationError: If configuration is invalid
    """

    url: str
    min_connections: int = Field(default=5, gt=0)
    max_connections: int = Field(default=20, gt=0)
    timeout: float = Field(default=10.0, gt=0)
    command_timeout: float = Field(default=60.0, gt=0)
    ssl: bool = False

    migrations_dir: str = "db/migrations"
    journal_path: Optional[str] = None
    journal_version: str = "7"
    dialect: str = "postgresql"
    lock_name: str = "pgjournal"
    require_down_scripts: bool = False

    model_config = {"frozen": True}  # Configs shouldn't change after creation

    @field_validator("max_connections")
    @classmethod
    def validate_max_connections(cls, v: int, info) -> int:
        """Validate max_connections is >= min_connections."""
        # Note: min_connections is validated first due to field order
        min_conn = info.data.get("min_connections", 5)
        if v < min_conn:
            raise ValueError(
                f"max_connections ({v}) must be >= min_connections ({min_conn})"
            )
        return v

    @model_validator(mode="after")
    def validate_and_normalize_url(self) -> "DatabaseConfig":
        """Validate and normalize PostgreSQL URL with defaults.

        Applies PostgreSQL default values for missing components:
        - Host: localhost
        - Port: 5432
        - User: postgres
        - Database: same as username (or database name if provided alone)

        Examples:
            "dbname" → "postgresql://postgres@localhost:5432/dbname"
            "localhost/dbname" → "postgresql://postgres@localhost:5432/dbname"
            "postgres@localhost:5432/dbname" → "postgresql://postgres@localhost:5432/dbname"
        """
        try:
            url = self.url

            # Handle case where scheme is missing
            if not url.startswith(("postgresql://", "postgres://")):
                if "/" in url:
                    url = f"postgresql://{url}"
                else:
                    url = f"postgresql:///{url}"

            parsed = urlparse(url)

            if parsed.scheme not in ("postgresql", "postgres"):
                raise ValueError(
                    f"Invalid database URL scheme: {parsed.scheme}. "
                    "Expected 'postgresql' or 'postgres'"
                )

            username = parsed.username or "postgres"
            password = parsed.password
            hostname = parsed.hostname or "localhost"
            port = parsed.port or 5432

            database = (
                parsed.path.lstrip("/")
                if parsed.path and parsed.path != "/"
                else username
            )

            auth = f"{username}:{password}" if password else username
            normalized_url = f"postgresql://{auth}@{hostname}:{port}/{database}"

            # Use object.__setattr__ since model is frozen
            object.__setattr__(self, "url", normalized_url)

            return self

        except ValueError:
            raise
        except Exception as e:
            raise ValueError(f"Invalid database URL: {self.url}") from e

    @property
    def masked_url(self) -> str:
        """URL with the password replaced, safe for logs."""
        parsed = urlparse(self.url)
        if not parsed.password:
            return self.url
        return self.url.replace(f":{parsed.password}@", ":***@", 1)

    def resolved_journal_path(self) -> Path:
        """Return the journal file path for this configuration."""
        if self.journal_path is not None:
            return Path(self.journal_path)
        return Path(self.migrations_dir) / JOURNAL_DIRNAME / JOURNAL_FILENAME

    @classmethod
    def from_env(
        cls,
        database_url_var: str = "DATABASE_URL",
        require_url: bool = False,
    ) -> Optional["DatabaseConfig"]:
        """Build configuration from environment variables.

        ``DATABASE_URL`` (or ``database_url_var``) takes priority. Otherwise the
        URL is assembled from ``POSTGRES_HOST``, ``POSTGRES_PORT``,
        ``POSTGRES_USER``, ``POSTGRES_PASSWORD`` and ``POSTGRES_DB``.

        Returns:
            DatabaseConfig, or None if no database is configured

        Raises:
            ValueError: If require_url is set and nothing is configured
            ConfigurationError: If the environment holds invalid values
        """
        url = os.getenv(database_url_var)

        if not url and os.getenv("POSTGRES_DB"):
            user = os.getenv("POSTGRES_USER", "postgres")
            password = os.getenv("POSTGRES_PASSWORD")
            host = os.getenv("POSTGRES_HOST", "localhost")
            port = os.getenv("POSTGRES_PORT", "5432")
            auth = f"{user}:{password}" if password else user
            url = f"postgresql://{auth}@{host}:{port}/{os.environ['POSTGRES_DB']}"

        if not url:
            if require_url:
                raise ValueError(
                    f"No database configuration found. Set {database_url_var} "
                    "or the POSTGRES_* variables (POSTGRES_DB at minimum)."
                )
            return None

        values: dict = {"url": url}
        if os.getenv("DB_POOL_MIN"):
            values["min_connections"] = os.environ["DB_POOL_MIN"]
        if os.getenv("DB_POOL_MAX"):
            values["max_connections"] = os.environ["DB_POOL_MAX"]
        if os.getenv("DB_SSL"):
            values["ssl"] = os.environ["DB_SSL"].lower() in _TRUTHY
        if os.getenv("PGJOURNAL_MIGRATIONS_DIR"):
            values["migrations_dir"] = os.environ["PGJOURNAL_MIGRATIONS_DIR"]
        if os.getenv("PGJOURNAL_JOURNAL_PATH"):
            values["journal_path"] = os.environ["PGJOURNAL_JOURNAL_PATH"]
        if os.getenv("PGJOURNAL_REQUIRE_DOWN"):
            values["require_down_scripts"] = (
                os.environ["PGJOURNAL_REQUIRE_DOWN"].lower() in _TRUTHY
            )

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Config validation error: {_describe(e)}") from e


class ServiceConfig(BaseModel):
    """Service identity and logging configuration.

    Args:
        name: Service name attached to every log record
        version: Service version reported by logs and health checks
        environment: Deployment environment
        log_level: Minimum log level
        log_format: "json" for machine-readable output, "simple" for humans
    """

    name: str = "pgjournal"
    version: str = "1.0.0"
    environment: Literal["development", "production", "test", "staging"] = (
        "development"
    )
    log_level: Literal["error", "warn", "info", "debug"] = "info"
    log_format: Literal["json", "simple"] = "json"

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Build configuration from ``SERVICE_*``, ``APP_ENV`` and ``LOG_*`` variables.

        Raises:
            ConfigurationError: If any variable holds an invalid value
        """
        env_map = {
            "name": "SERVICE_NAME",
            "version": "SERVICE_VERSION",
            "environment": "APP_ENV",
            "log_level": "LOG_LEVEL",
            "log_format": "LOG_FORMAT",
        }
        values = {
            field: os.environ[var] for field, var in env_map.items() if os.getenv(var)
        }
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Config validation error: {_describe(e)}") from e


def _describe(error: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in error.errors()
    )
