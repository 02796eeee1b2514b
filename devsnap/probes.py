"""
Database probes consulted by admission control.

- DatabaseSizeProbe: live database size via SQLAlchemy
- MigrationInspector: protocol for applied/known migration versions
- AlembicMigrationInspector: reads an Alembic script directory and the
  database's alembic_version table

Invariants:
    - Probe failures raise AdmissionProbeError / MigrationInspectionError;
      they never return a guessed value
    - Sizes are rounded up to whole megabytes
"""

from __future__ import annotations

import logging
import math
from abc import abstractmethod
from pathlib import Path
from typing import Optional, Protocol, Set, Union, runtime_checkable

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.script.revision import RevisionError
from alembic.util import CommandError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from .admission import MigrationState
from .errors import AdmissionProbeError, MigrationInspectionError

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

_SIZE_QUERIES = {
    "postgresql": "SELECT pg_database_size(current_database())",
    "sqlite": (
        "SELECT page_count * page_size "
        "FROM pragma_page_count(), pragma_page_size()"
    ),
}


def _create_probe_engine(url: Union[str, URL]) -> Engine:
    # One short-lived connection per probe; nothing to pool
    return create_engine(make_url(url), poolclass=NullPool)


def _sqlite_file_missing(url: URL) -> bool:
    # Connecting to a missing SQLite file would create an empty database
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return False
    return not Path(url.database).exists()


class DatabaseSizeProbe:
    """Measures the live size of the target database.

    Example:
        >>> DatabaseSizeProbe("postgresql://localhost/app_dev").size_mb()
        42
    """

    def __init__(self, url: Union[str, URL]) -> None:
        self.url = make_url(url)

    def size_bytes(self) -> int:
        """Return the database size in bytes.

        Raises:
            AdmissionProbeError: If the size cannot be determined
        """
        backend = self.url.get_backend_name()
        query = _SIZE_QUERIES.get(backend)
        if query is None:
            raise AdmissionProbeError(
                f"No size query for backend '{backend}'", database=self.url.database
            )

        if _sqlite_file_missing(self.url):
            raise AdmissionProbeError(
                f"Database file not found: {self.url.database}", database=self.url.database
            )

        try:
            engine = _create_probe_engine(self.url)
        except ImportError as e:
            raise AdmissionProbeError(
                f"No database driver for {backend}: {e}", database=self.url.database
            )

        try:
            with engine.connect() as conn:
                value = conn.execute(text(query)).scalar()
        except SQLAlchemyError as e:
            raise AdmissionProbeError(
                f"Failed to measure database size: {e}", database=self.url.database
            )
        finally:
            engine.dispose()

        if value is None:
            raise AdmissionProbeError("Size query returned no value", database=self.url.database)
        return int(value)

    def size_mb(self) -> int:
        """Return the database size in whole megabytes, rounded up."""
        return math.ceil(self.size_bytes() / BYTES_PER_MB)


@runtime_checkable
class MigrationInspector(Protocol):
    """Protocol for reading migration versions."""

    @abstractmethod
    def applied_versions(self) -> Set[str]:
        """Versions applied to the database."""
        ...

    @abstractmethod
    def all_known_versions(self) -> Set[str]:
        """Versions defined by the project."""
        ...

    @abstractmethod
    def current_version(self) -> Optional[str]:
        """Version the database is at, if any."""
        ...


def inspect_migrations(inspector: MigrationInspector) -> MigrationState:
    """Collect a MigrationState from an inspector."""
    return MigrationState.of(
        inspector.applied_versions(),
        inspector.all_known_versions(),
        current_version=inspector.current_version(),
    )


class AlembicMigrationInspector:
    """Migration inspector for Alembic-managed databases.

    Known versions are every revision in the script directory. Applied
    versions are the database's current heads plus all their ancestors,
    since alembic_version only stores the heads.

    Attributes:
        alembic_ini: Path to alembic.ini
        url: Database URL (overrides sqlalchemy.url in alembic.ini)
    """

    def __init__(self, alembic_ini: Path, url: Union[str, URL]) -> None:
        self.alembic_ini = Path(alembic_ini)
        self.url = make_url(url)

    def _script_directory(self) -> ScriptDirectory:
        if not self.alembic_ini.exists():
            raise MigrationInspectionError(f"Alembic config not found: {self.alembic_ini}")
        config = Config(str(self.alembic_ini))
        try:
            return ScriptDirectory.from_config(config)
        except CommandError as e:
            raise MigrationInspectionError(f"Cannot load Alembic scripts: {e}")

    def _current_heads(self) -> tuple:
        if _sqlite_file_missing(self.url):
            raise MigrationInspectionError(f"Database file not found: {self.url.database}")

        try:
            engine = _create_probe_engine(self.url)
        except ImportError as e:
            raise MigrationInspectionError(f"No database driver for {self.url.drivername}: {e}")

        try:
            with engine.connect() as conn:
                return MigrationContext.configure(conn).get_current_heads()
        except SQLAlchemyError as e:
            raise MigrationInspectionError(f"Cannot read applied migrations: {e}")
        finally:
            engine.dispose()

    def all_known_versions(self) -> Set[str]:
        script = self._script_directory()
        try:
            return {rev.revision for rev in script.walk_revisions()}
        except (CommandError, RevisionError) as e:
            raise MigrationInspectionError(f"Cannot walk Alembic revisions: {e}")

    def applied_versions(self) -> Set[str]:
        heads = self._current_heads()
        if not heads:
            return set()
        script = self._script_directory()
        try:
            return {
                rev.revision
                for rev in script.iterate_revisions(heads, "base")
                if rev is not None
            }
        except (CommandError, RevisionError) as e:
            raise MigrationInspectionError(f"Applied revision not found in scripts: {e}")

    def current_version(self) -> Optional[str]:
        heads = self._current_heads()
        if not heads:
            return None
        return ",".join(sorted(heads))
