"""
Configuration management for devsnap.

All configuration comes from environment variables, read once into frozen
dataclasses. The core components receive these objects at construction and
never consult the environment themselves.

Invariants:
    - All settings have sensible defaults for local development
    - keep_limit is at least 1, so a fresh capture always survives eviction
    - Database passwords are never logged

How to change safely:
    - Add new settings with defaults that keep existing setups working
    - Keep the existing variable names (DEVSNAP, DEVSNAP_MAX_MB, DEVSNAP_KEEP,
      FORCE_SNAP); developers have them in their shell profiles
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError

from .errors import ConfigurationError, UnsupportedEnvironmentError

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("postgresql", "sqlite")

_FALSE_VALUES = {"0", "false", "off", "no"}
_TRUE_VALUES = {"1", "true", "on", "yes"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    value = value.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean flag, got '{value}'", setting=name)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'", setting=name)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{value}'", setting=name)


@dataclass(frozen=True)
class SnapshotConfig:
    """Snapshot lifecycle configuration.

    Attributes:
        enabled: Feature toggle; when False nothing is ever captured automatically
        max_mb: Database size ceiling in MB for automatic captures (0 = unlimited)
        keep_limit: Maximum number of snapshots retained on disk
        force: Capture even when no migrations are pending
        directory: Snapshot directory
        lock_timeout_seconds: How long to wait for the directory lock
    """

    enabled: bool = True
    max_mb: int = 1000
    keep_limit: int = 10
    force: bool = False
    directory: Path = Path(".snapshots")
    lock_timeout_seconds: float = 300.0

    @classmethod
    def from_env(cls) -> SnapshotConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_flag("DEVSNAP", True),
            max_mb=_env_int("DEVSNAP_MAX_MB", 1000),
            keep_limit=_env_int("DEVSNAP_KEEP", 10),
            force=_env_flag("FORCE_SNAP", False),
            directory=Path(os.getenv("DEVSNAP_DIR", ".snapshots")),
            lock_timeout_seconds=_env_float("DEVSNAP_LOCK_TIMEOUT", 300.0),
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """Target database configuration.

    Attributes:
        url: SQLAlchemy database URL
    """

    url: str = "postgresql://localhost/development"

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load configuration from environment variables."""
        return cls(url=os.getenv("DATABASE_URL", "postgresql://localhost/development"))

    def parsed_url(self) -> URL:
        """Parse the URL.

        Raises:
            ConfigurationError: If the URL cannot be parsed
        """
        try:
            return make_url(self.url)
        except ArgumentError as e:
            raise ConfigurationError(f"Invalid DATABASE_URL: {e}", setting="DATABASE_URL")

    @property
    def backend(self) -> str:
        return self.parsed_url().get_backend_name()


@dataclass(frozen=True)
class MigrationConfig:
    """Migration tooling configuration.

    Attributes:
        alembic_ini: Path to the Alembic configuration file
    """

    alembic_ini: Path = Path("alembic.ini")

    @classmethod
    def from_env(cls) -> MigrationConfig:
        """Load configuration from environment variables."""
        return cls(alembic_ini=Path(os.getenv("ALEMBIC_CONFIG", "alembic.ini")))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class DevsnapConfig:
    """Complete devsnap configuration.

    Attributes:
        environment: Environment name (development, test, production, ...)
        snapshot: Snapshot lifecycle configuration
        database: Target database configuration
        migrations: Migration tooling configuration
        observability: Logging configuration
    """

    environment: str = "development"
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    migrations: MigrationConfig = field(default_factory=MigrationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> DevsnapConfig:
        """Load complete configuration from environment variables.

        Returns:
            DevsnapConfig with all sections populated from environment.

        Raises:
            ConfigurationError: If a value is missing or invalid.
        """
        config = cls(
            environment=os.getenv("DEVSNAP_ENV", os.getenv("APP_ENV", "development")).lower(),
            snapshot=SnapshotConfig.from_env(),
            database=DatabaseConfig.from_env(),
            migrations=MigrationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if self.snapshot.max_mb < 0:
            raise ConfigurationError("DEVSNAP_MAX_MB must be >= 0", setting="DEVSNAP_MAX_MB")
        if self.snapshot.keep_limit < 1:
            raise ConfigurationError("DEVSNAP_KEEP must be >= 1", setting="DEVSNAP_KEEP")
        if self.snapshot.lock_timeout_seconds < 0:
            raise ConfigurationError(
                "DEVSNAP_LOCK_TIMEOUT must be >= 0", setting="DEVSNAP_LOCK_TIMEOUT"
            )
        if not self.database.url:
            raise ConfigurationError("DATABASE_URL is required", setting="DATABASE_URL")
        self.database.parsed_url()

    def check_environment(self) -> None:
        """Refuse to run where snapshots make no sense.

        Raises:
            UnsupportedEnvironmentError: In production, or for a database
                backend without a dump engine.
        """
        if self.environment == "production":
            raise UnsupportedEnvironmentError(
                "devsnap is disabled in production", reason="production"
            )

        backend = self.database.backend
        if backend not in SUPPORTED_BACKENDS:
            raise UnsupportedEnvironmentError(
                f"Unsupported database backend '{backend}'. "
                f"Must be one of: {', '.join(SUPPORTED_BACKENDS)}",
                reason="backend",
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.debug(
            "devsnap configuration loaded",
            extra={
                "environment": self.environment,
                "database_url": self.database.parsed_url().render_as_string(hide_password=True),
                "snapshot_dir": str(self.snapshot.directory),
                "enabled": self.snapshot.enabled,
                "max_mb": self.snapshot.max_mb,
                "keep_limit": self.snapshot.keep_limit,
                "force": self.snapshot.force,
            },
        )
