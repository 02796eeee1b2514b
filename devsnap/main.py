"""
devsnap - application wiring.

This module assembles the snapshot core from configuration:
- Dump engine for the database backend
- SnapshotStore in the snapshot directory
- SnapshotCapturer / SnapshotRestorer
- AdmissionController + MigrationGate with SQLAlchemy/Alembic probes

and exposes the outward entry points used by the command line:
capture_now, restore, list, auto_before_migration, prune and migrate.

Invariants:
    - Components receive configuration at construction; nothing below this
      module reads environment variables
    - The environment guard runs before any component is built
    - migrate() always applies migrations, whatever the snapshot gate did

How to change safely:
    - New entry points belong on Devsnap, not in the CLI
    - Keep migrate() calling the gate before the upgrade
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional

import json_log_formatter
from alembic import command
from alembic.config import Config

from .admission import AdmissionController
from .config import DevsnapConfig
from .engines.base import ConnectionParams, DumpEngine, create_dump_engine
from .errors import MigrationError, MigrationInspectionError
from .gate import GateResult, MigrationGate, SizeProbe
from .probes import (
    AlembicMigrationInspector,
    DatabaseSizeProbe,
    MigrationInspector,
)
from .snapshot.capturer import SnapshotCapturer
from .snapshot.restorer import LATEST, RestoreResult, SnapshotRestorer
from .snapshot.store import EvictionReport, Snapshot, SnapshotStore

logger = logging.getLogger(__name__)

UpgradeFn = Callable[[Config, str], None]


def setup_logging(config: DevsnapConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        config: devsnap configuration
        verbose: Force DEBUG level
    """
    level_name = "DEBUG" if verbose else config.observability.log_level.upper()
    level = getattr(logging, level_name, logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.WARNING)


def alembic_config(config: DevsnapConfig) -> Config:
    """Build an Alembic Config pointed at the configured database."""
    alembic_cfg = Config(str(config.migrations.alembic_ini))
    url = config.database.parsed_url().render_as_string(hide_password=False)
    # ConfigParser interpolation treats % specially
    alembic_cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return alembic_cfg


def run_migrations(
    config: DevsnapConfig,
    revision: str = "head",
    upgrade_fn: UpgradeFn = command.upgrade,
) -> None:
    """Apply Alembic migrations up to revision.

    Raises:
        MigrationError: If the upgrade fails
    """
    if not Path(config.migrations.alembic_ini).exists():
        raise MigrationError(
            f"Alembic config not found: {config.migrations.alembic_ini}", revision=revision
        )

    logger.info(f"Applying migrations up to {revision}")
    try:
        upgrade_fn(alembic_config(config), revision)
    except Exception as exc:
        raise MigrationError(f"Migration to '{revision}' failed: {exc}", revision=revision) from exc


class Devsnap:
    """Snapshot manager for one database.

    Attributes:
        config: devsnap configuration
        store: Snapshot registry
        capturer: Capture pipeline
        restorer: Restore pipeline
        gate: Pre-migration gate
        inspector: Migration inspector

    Example:
        >>> devsnap = Devsnap.from_config(DevsnapConfig.from_env())
        >>> devsnap.capture_now()
        >>> devsnap.restore("latest")
    """

    def __init__(
        self,
        config: DevsnapConfig,
        store: SnapshotStore,
        capturer: SnapshotCapturer,
        restorer: SnapshotRestorer,
        gate: MigrationGate,
        inspector: MigrationInspector,
    ) -> None:
        self.config = config
        self.store = store
        self.capturer = capturer
        self.restorer = restorer
        self.gate = gate
        self.inspector = inspector

    @classmethod
    def from_config(
        cls,
        config: DevsnapConfig,
        engine: Optional[DumpEngine] = None,
        size_probe: Optional[SizeProbe] = None,
        inspector: Optional[MigrationInspector] = None,
    ) -> Devsnap:
        """Build all components from configuration.

        Args:
            config: devsnap configuration
            engine: Override the dump engine (defaults by backend)
            size_probe: Override the database size probe
            inspector: Override the migration inspector

        Raises:
            UnsupportedEnvironmentError: In production or for an unsupported backend
        """
        config.check_environment()

        url = config.database.parsed_url()
        snapshot_config = config.snapshot
        engine = engine or create_dump_engine(url)
        params = ConnectionParams.from_url(url)

        store = SnapshotStore(snapshot_config.directory, suffix=engine.artifact_suffix)
        capturer = SnapshotCapturer(
            store,
            engine,
            params,
            keep_limit=snapshot_config.keep_limit,
            lock_timeout=snapshot_config.lock_timeout_seconds,
        )
        restorer = SnapshotRestorer(
            store, engine, params, lock_timeout=snapshot_config.lock_timeout_seconds
        )
        inspector = inspector or AlembicMigrationInspector(config.migrations.alembic_ini, url)
        gate = MigrationGate(
            AdmissionController(snapshot_config),
            capturer,
            size_probe or DatabaseSizeProbe(url),
            inspector,
        )

        config.log_config()
        return cls(config, store, capturer, restorer, gate, inspector)

    def capture_now(self) -> Snapshot:
        """Capture a snapshot unconditionally (no admission check).

        Raises:
            DumpError: If the dump failed
            StoreWriteError: If the artifact could not be registered
        """
        return self.capturer.capture(migration_version=self._current_version())

    def restore(self, selector: str = LATEST) -> RestoreResult:
        """Replace the database with a snapshot ("latest" or an id)."""
        return self.restorer.restore(selector)

    def list(self) -> List[Snapshot]:
        """Snapshots, oldest first."""
        return self.store.list()

    def auto_before_migration(self) -> GateResult:
        """Snapshot if admission allows; never raises."""
        return self.gate.before_migration()

    def prune(self, keep_limit: Optional[int] = None) -> EvictionReport:
        """Apply the retention limit without capturing.

        Args:
            keep_limit: Override the configured keep limit
        """
        limit = self.config.snapshot.keep_limit if keep_limit is None else keep_limit
        with self.store.lock(timeout=self.config.snapshot.lock_timeout_seconds):
            return self.store.evict(limit)

    def migrate(self, revision: str = "head", upgrade_fn: UpgradeFn = command.upgrade) -> GateResult:
        """Run the snapshot gate, then apply migrations.

        Raises:
            MigrationError: If the upgrade fails (the gate never fails it)
        """
        result = self.auto_before_migration()
        run_migrations(self.config, revision=revision, upgrade_fn=upgrade_fn)
        return result

    def _current_version(self) -> Optional[str]:
        try:
            return self.inspector.current_version()
        except MigrationInspectionError as e:
            logger.warning(f"Recording snapshot without migration version: {e.message}")
            return None
