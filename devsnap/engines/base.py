"""
Base protocol and types for dump/restore engines.

An engine turns a live database into one artifact file and back. Engines
are opaque to the snapshot core: they report an exit status and whatever
diagnostic text the underlying tool printed, and never raise for a failed
dump or restore.

Invariants:
    - dump() writes only to output_path
    - restore() fully replaces the target database's contents
    - restore() never modifies the artifact
    - A failed operation is reported through EngineResult.exit_status != 0

How to change safely:
    - New engines must implement the DumpEngine protocol
    - Register new backends in create_dump_engine()
    - Keep artifact_suffix stable; existing snapshot directories depend on it
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Protocol, Union, runtime_checkable

from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url

from ..errors import UnsupportedEnvironmentError


@dataclass(frozen=True)
class ConnectionParams:
    """Connection parameters handed to an engine.

    Attributes:
        backend: SQLAlchemy backend name (postgresql, sqlite)
        database: Database name, or file path for SQLite
        host: Server host
        port: Server port
        username: Login role
        password: Login password (never logged)
        query: Extra URL query parameters
    """

    backend: str
    database: Optional[str]
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    query: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_url(cls, url: Union[str, URL]) -> ConnectionParams:
        """Build connection parameters from a SQLAlchemy URL."""
        url = make_url(url)
        return cls(
            backend=url.get_backend_name(),
            database=url.database,
            host=url.host,
            port=url.port,
            username=url.username,
            password=url.password,
            query={k: v if isinstance(v, str) else v[-1] for k, v in url.query.items()},
        )


@dataclass(frozen=True)
class EngineResult:
    """Outcome of one dump or restore invocation.

    Attributes:
        exit_status: 0 on success
        stderr: Diagnostic output from the underlying tool
    """

    exit_status: int
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@runtime_checkable
class DumpEngine(Protocol):
    """Protocol for database dump/restore backends.

    Example:
        >>> engine = create_dump_engine("postgresql://localhost/app_dev")
        >>> result = engine.dump(params, Path(".snapshots/.staging-1.dump"))
        >>> result.ok
        True
    """

    artifact_suffix: str

    @abstractmethod
    def dump(self, params: ConnectionParams, output_path: Path) -> EngineResult:
        """Write the database to output_path.

        Args:
            params: Database connection parameters
            output_path: File to create

        Returns:
            EngineResult with the process exit status

        Raises:
            OSError: If the underlying tool cannot be started
        """
        ...

    @abstractmethod
    def restore(self, params: ConnectionParams, artifact_path: Path) -> EngineResult:
        """Replace the database's contents with artifact_path.

        Args:
            params: Database connection parameters
            artifact_path: Artifact produced by dump()

        Returns:
            EngineResult with the process exit status

        Raises:
            OSError: If the underlying tool cannot be started
        """
        ...


def create_dump_engine(url: Union[str, URL]) -> DumpEngine:
    """Factory function to create the engine for a database URL.

    Args:
        url: SQLAlchemy database URL

    Returns:
        Appropriate DumpEngine implementation

    Raises:
        UnsupportedEnvironmentError: If the backend has no engine
    """
    from .postgres import PgDumpEngine
    from .sqlite import SqliteBackupEngine

    backend = make_url(url).get_backend_name()
    if backend == "postgresql":
        return PgDumpEngine()
    elif backend == "sqlite":
        return SqliteBackupEngine()
    else:
        raise UnsupportedEnvironmentError(
            f"No dump engine for database backend '{backend}'", reason="backend"
        )
