"""
Shared fixtures for devsnap tests.

Provides:
- FakeEngine: scriptable DumpEngine that writes small artifacts
- FakeInspector / FakeSizeProbe: admission probe stand-ins
- SteppingClock: deterministic capture timestamps
- alembic_project: a throwaway Alembic project against a SQLite file
"""

import logging
import sqlite3
import textwrap
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Set

import pytest

from devsnap.engines.base import ConnectionParams, EngineResult
from devsnap.snapshot.store import SnapshotStore


class FakeEngine:
    """DumpEngine that writes a counter-stamped artifact.

    Attributes:
        fail_dump: Exit status to report from dump (0 = success)
        raise_on_dump: Exception raised by dump instead of running
        write_empty: Write a zero-byte artifact
        dump_delay: Seconds to sleep inside dump
        restore_status: Exit status to report from restore
    """

    artifact_suffix = ".dump"

    def __init__(self) -> None:
        self.fail_dump = 0
        self.raise_on_dump: Optional[BaseException] = None
        self.write_empty = False
        self.dump_delay = 0.0
        self.restore_status = 0
        self.raise_on_restore: Optional[BaseException] = None
        self.dumps = 0
        self.restored: List[Path] = []
        self._lock = threading.Lock()

    def dump(self, params: ConnectionParams, output_path: Path) -> EngineResult:
        if self.raise_on_dump is not None:
            raise self.raise_on_dump
        if self.dump_delay:
            time.sleep(self.dump_delay)
        with self._lock:
            self.dumps += 1
            n = self.dumps
        if self.fail_dump:
            # Partial output, like a tool that died halfway
            Path(output_path).write_bytes(b"partial")
            return EngineResult(exit_status=self.fail_dump, stderr="connection refused\n")
        Path(output_path).write_bytes(b"" if self.write_empty else f"dump-{n}".encode())
        return EngineResult(exit_status=0)

    def restore(self, params: ConnectionParams, artifact_path: Path) -> EngineResult:
        if self.raise_on_restore is not None:
            raise self.raise_on_restore
        self.restored.append(Path(artifact_path))
        if self.restore_status:
            return EngineResult(exit_status=self.restore_status, stderr="restore failed\n")
        return EngineResult(exit_status=0)


class FakeInspector:
    """MigrationInspector with fixed versions."""

    def __init__(
        self,
        applied: Set[str] = frozenset(),
        known: Set[str] = frozenset(),
        error: Optional[BaseException] = None,
    ) -> None:
        self.applied = set(applied)
        self.known = set(known)
        self.error = error

    def applied_versions(self) -> Set[str]:
        if self.error:
            raise self.error
        return set(self.applied)

    def all_known_versions(self) -> Set[str]:
        if self.error:
            raise self.error
        return set(self.known)

    def current_version(self) -> Optional[str]:
        if self.error:
            raise self.error
        return max(self.applied) if self.applied else None


class FakeSizeProbe:
    """Size probe returning a fixed size or raising."""

    def __init__(self, size_mb: int = 1, error: Optional[BaseException] = None) -> None:
        self._size_mb = size_mb
        self.error = error
        self.calls = 0

    def size_mb(self) -> int:
        self.calls += 1
        if self.error:
            raise self.error
        return self._size_mb


class SteppingClock:
    """Clock that advances one second per call."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


def stage_artifact(store: SnapshotStore, content: bytes = b"snapshot") -> Path:
    """Write a staged artifact the way a dump engine would."""
    path = store.staging_path()
    path.write_bytes(content)
    return path


@pytest.fixture
def snapshot_dir(tmp_path):
    """Snapshot directory (not yet created)."""
    return tmp_path / ".snapshots"


@pytest.fixture
def store(snapshot_dir):
    """Empty snapshot store."""
    return SnapshotStore(snapshot_dir)


@pytest.fixture
def engine():
    """Fake dump engine."""
    return FakeEngine()


@pytest.fixture
def params():
    """Connection parameters for a local development database."""
    return ConnectionParams(backend="postgresql", database="app_development", host="localhost")


@pytest.fixture
def restore_root_logging():
    """Put root logger handlers back after a test that reconfigures logging."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def _sqlite_tables(db_path: Path) -> Set[str]:
    conn = sqlite3.connect(str(db_path))
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    finally:
        conn.close()
    return {row[0] for row in rows}


@pytest.fixture
def sqlite_tables():
    """Return a helper listing the tables in a SQLite file."""
    return _sqlite_tables


ALEMBIC_ENV = textwrap.dedent(
    """
    from alembic import context
    from sqlalchemy import engine_from_config, pool

    config = context.config
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()
    """
)

REVISION_TEMPLATE = textwrap.dedent(
    """
    from alembic import op

    revision = {revision!r}
    down_revision = {down_revision!r}
    branch_labels = None
    depends_on = None


    def upgrade():
        op.execute("CREATE TABLE {table} (id INTEGER PRIMARY KEY)")


    def downgrade():
        op.execute("DROP TABLE {table}")
    """
)


class AlembicProject:
    """Alembic project with two revisions (0001 users, 0002 widgets)."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.db_path = root / "development.sqlite3"
        self.url = f"sqlite:///{self.db_path}"
        self.ini_path = root / "alembic.ini"
        self.script_dir = root / "migrations"

        versions = self.script_dir / "versions"
        versions.mkdir(parents=True)
        (self.script_dir / "env.py").write_text(ALEMBIC_ENV)
        (versions / "0001_users.py").write_text(
            REVISION_TEMPLATE.format(revision="0001", down_revision=None, table="users")
        )
        (versions / "0002_widgets.py").write_text(
            REVISION_TEMPLATE.format(revision="0002", down_revision="0001", table="widgets")
        )
        self.ini_path.write_text(
            "[alembic]\n"
            f"script_location = {self.script_dir}\n"
            f"sqlalchemy.url = {self.url}\n"
        )

    def create_database(self, applied: Optional[str] = "0001") -> None:
        """Create the SQLite file as if migrations up to applied had run."""
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL PRIMARY KEY)")
            if applied:
                conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY)")
                conn.execute("INSERT INTO users (id) VALUES (1), (2)")
                conn.execute("INSERT INTO alembic_version (version_num) VALUES (?)", (applied,))
            conn.commit()
        finally:
            conn.close()


@pytest.fixture
def alembic_project(tmp_path):
    """Alembic project whose database has 0001 applied and 0002 pending."""
    project = AlembicProject(tmp_path)
    project.create_database(applied="0001")
    return project


@pytest.fixture
def devsnap_env(monkeypatch, alembic_project):
    """Environment pointing devsnap at the Alembic project's database."""
    for name in ("DEVSNAP", "DEVSNAP_MAX_MB", "DEVSNAP_KEEP", "FORCE_SNAP", "APP_ENV",
                 "DEVSNAP_LOCK_TIMEOUT", "LOG_LEVEL", "LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DEVSNAP_ENV", "development")
    monkeypatch.setenv("DATABASE_URL", alembic_project.url)
    monkeypatch.setenv("ALEMBIC_CONFIG", str(alembic_project.ini_path))
    monkeypatch.setenv("DEVSNAP_DIR", str(alembic_project.root / ".snapshots"))
    return alembic_project
