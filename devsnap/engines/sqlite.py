"""
SQLite engine backed by the online backup API.

The backup API copies a consistent image of the database even while other
connections hold it open, in both directions: live database -> artifact on
dump, artifact -> live database on restore. Copying over the destination
replaces every page, so a restore drops tables created after the snapshot.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from .base import ConnectionParams, EngineResult

logger = logging.getLogger(__name__)


class SqliteBackupEngine:
    """Dump and restore SQLite database files."""

    artifact_suffix = ".sqlite3"

    def dump(self, params: ConnectionParams, output_path: Path) -> EngineResult:
        source = self._database_path(params)
        if source is None or not source.exists():
            return EngineResult(exit_status=1, stderr=f"database file not found: {source}")
        return self._backup(source, Path(output_path))

    def restore(self, params: ConnectionParams, artifact_path: Path) -> EngineResult:
        target = self._database_path(params)
        if target is None:
            return EngineResult(exit_status=1, stderr="in-memory databases cannot be restored")
        artifact_path = Path(artifact_path)
        if not artifact_path.exists():
            return EngineResult(exit_status=1, stderr=f"artifact not found: {artifact_path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        return self._backup(artifact_path, target, read_only_source=True)

    def _database_path(self, params: ConnectionParams) -> Path | None:
        if not params.database or params.database == ":memory:":
            return None
        return Path(params.database)

    def _backup(self, source: Path, dest: Path, read_only_source: bool = False) -> EngineResult:
        """Copy source into dest using the SQLite backup API."""
        source_uri = f"{source.resolve().as_uri()}?mode=ro" if read_only_source else str(source)
        try:
            source_conn = sqlite3.connect(source_uri, uri=read_only_source)
            try:
                dest_conn = sqlite3.connect(str(dest))
                try:
                    source_conn.backup(dest_conn)
                finally:
                    dest_conn.close()
            finally:
                source_conn.close()
        except sqlite3.Error as e:
            logger.warning(f"SQLite backup from {source} to {dest} failed: {e}")
            return EngineResult(exit_status=1, stderr=str(e))

        return EngineResult(exit_status=0)
