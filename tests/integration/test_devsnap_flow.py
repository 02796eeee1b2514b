"""
Integration tests for the full snapshot lifecycle against SQLite + Alembic.

Tests cover:
- migrate: snapshot before upgrade, then undo via restore
- Manual capture / list / prune
- Disabled and production configurations
- Migration failures after a snapshot
"""

import sqlite3

import pytest

from devsnap.admission import AdmissionReason
from devsnap.config import DatabaseConfig, DevsnapConfig, MigrationConfig, SnapshotConfig
from devsnap.errors import DumpError, MigrationError, UnsupportedEnvironmentError
from devsnap.gate import GateState
from devsnap.main import Devsnap, run_migrations


def _version(db_path):
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute("SELECT version_num FROM alembic_version").fetchone()[0]
    finally:
        conn.close()


def _config(project, **snapshot):
    snapshot.setdefault("directory", project.root / ".snapshots")
    snapshot.setdefault("lock_timeout_seconds", 5.0)
    return DevsnapConfig(
        environment="development",
        snapshot=SnapshotConfig(**snapshot),
        database=DatabaseConfig(url=project.url),
        migrations=MigrationConfig(alembic_ini=project.ini_path),
    )


class TestDevsnapFlow:
    """End-to-end lifecycle through the Devsnap facade."""

    @pytest.fixture
    def devsnap(self, alembic_project):
        return Devsnap.from_config(_config(alembic_project))

    def test_migrate_then_restore(self, devsnap, alembic_project, sqlite_tables):
        """A snapshot taken before migrating undoes the migration."""
        result = devsnap.migrate()

        assert result.state == GateState.CAPTURED
        assert result.snapshot.migration_version == "0001"
        assert "widgets" in sqlite_tables(alembic_project.db_path)
        assert _version(alembic_project.db_path) == "0002"

        restored = devsnap.restore()

        assert restored.snapshot.id == result.snapshot.id
        assert "widgets" not in sqlite_tables(alembic_project.db_path)
        assert _version(alembic_project.db_path) == "0001"

        conn = sqlite3.connect(str(alembic_project.db_path))
        assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 2
        conn.close()

    def test_second_migrate_has_nothing_pending(self, devsnap):
        """Once up to date, the gate skips."""
        devsnap.migrate()

        result = devsnap.migrate()

        assert result.state == GateState.SKIPPED
        assert result.decision.reason == AdmissionReason.NO_PENDING_MIGRATIONS
        assert len(devsnap.list()) == 1

    def test_restore_twice(self, devsnap, alembic_project, sqlite_tables):
        """The same snapshot can be restored repeatedly."""
        devsnap.migrate()
        devsnap.restore()
        devsnap.migrate()
        devsnap.restore()

        assert "widgets" not in sqlite_tables(alembic_project.db_path)

    def test_capture_now_and_prune(self, alembic_project):
        """Manual captures are tagged with the current version and pruned on demand."""
        devsnap = Devsnap.from_config(_config(alembic_project, keep_limit=5))

        first = devsnap.capture_now()
        devsnap.capture_now()
        devsnap.capture_now()

        assert first.migration_version == "0001"
        assert first.path.suffix == ".sqlite3"
        assert len(devsnap.list()) == 3

        report = devsnap.prune(keep_limit=1)

        assert len(report.removed) == 2
        [kept] = devsnap.list()
        assert kept.id != first.id

    def test_capture_keeps_limit(self, alembic_project):
        devsnap = Devsnap.from_config(_config(alembic_project, keep_limit=2))

        for _ in range(4):
            devsnap.capture_now()

        assert len(devsnap.list()) == 2

    def test_capture_missing_sqlite_database(self, alembic_project):
        """A mistyped database path fails the capture and leaves no file behind."""
        missing = alembic_project.root / "typo.sqlite3"
        config = _config(alembic_project)
        config.database = DatabaseConfig(url=f"sqlite:///{missing}")
        devsnap = Devsnap.from_config(config)

        with pytest.raises(DumpError):
            devsnap.capture_now()

        assert not missing.exists()
        assert devsnap.list() == []

    def test_auto_skips_missing_sqlite_database(self, alembic_project):
        missing = alembic_project.root / "typo.sqlite3"
        config = _config(alembic_project)
        config.database = DatabaseConfig(url=f"sqlite:///{missing}")
        devsnap = Devsnap.from_config(config)

        result = devsnap.auto_before_migration()

        assert result.state == GateState.SKIPPED
        assert result.decision.reason == AdmissionReason.DATABASE_TOO_LARGE
        assert not missing.exists()

    def test_disabled_still_migrates(self, alembic_project, sqlite_tables):
        """DEVSNAP=off skips the snapshot but not the migration."""
        devsnap = Devsnap.from_config(_config(alembic_project, enabled=False))

        result = devsnap.migrate()

        assert result.state == GateState.SKIPPED
        assert devsnap.list() == []
        assert "widgets" in sqlite_tables(alembic_project.db_path)

    def test_forced_snapshot_when_up_to_date(self, alembic_project):
        devsnap = Devsnap.from_config(_config(alembic_project, force=True))
        devsnap.migrate()

        result = devsnap.auto_before_migration()

        assert result.state == GateState.CAPTURED
        assert result.decision.reason == AdmissionReason.FORCED
        assert result.snapshot.migration_version == "0002"

    def test_failed_migration_keeps_snapshot(self, alembic_project):
        """A snapshot taken before a failing upgrade is there to restore."""
        devsnap = Devsnap.from_config(_config(alembic_project))

        def broken_upgrade(config, revision):
            raise RuntimeError("duplicate column")

        with pytest.raises(MigrationError) as exc_info:
            devsnap.migrate(upgrade_fn=broken_upgrade)

        assert exc_info.value.code == "MIGRATION_FAILED"
        assert len(devsnap.list()) == 1

    def test_missing_alembic_ini(self, alembic_project):
        config = _config(alembic_project)
        config.migrations = MigrationConfig(alembic_ini=alembic_project.root / "missing.ini")

        with pytest.raises(MigrationError):
            run_migrations(config)

    def test_production_refused(self, alembic_project):
        config = _config(alembic_project)
        config.environment = "production"

        with pytest.raises(UnsupportedEnvironmentError):
            Devsnap.from_config(config)
