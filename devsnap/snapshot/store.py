"""
Filesystem-backed snapshot registry.

The SnapshotStore is the only component that creates, renames or deletes
files in the snapshot directory. Dump engines write into a staging path the
store hands out; append() moves the staged file to its final name.

Directory layout:
    <snapshot_dir>/
        20240101120000123456.dump       (artifact, named by snapshot id)
        20240101130501000042.dump
        index.json                      (id -> size_bytes, migration_version)
        .devsnap.lock                   (see lock.py)
        .staging-<pid>-<hex>.dump       (in-flight dump, never listed)

Snapshot ids are the UTC capture timestamp at microsecond resolution
(YYYYMMDDHHMMSSffffff), so lexicographic order is chronological order.

Invariants:
    - list() is sorted by created_at ascending, ties broken by id
    - Snapshot ids strictly increase in creation order; append() rejects an
      id that is not newer than every registered one (ClockCollisionError)
    - Artifacts missing from index.json are still listed (size from stat)
    - evict() deletes oldest-first and never raises for a single artifact
    - index.json is replaced atomically (temp file + os.replace)

How to change safely:
    - Keep the id format fixed-width; ordering depends on it
    - New index fields must be optional on read
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ClockCollisionError, StoreWriteError
from .lock import DirectoryLock

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
INDEX_VERSION = 1
STAGING_PREFIX = ".staging-"
SNAPSHOT_ID_FORMAT = "%Y%m%d%H%M%S%f"


def make_snapshot_id(created_at: datetime) -> str:
    """Derive a snapshot id from a capture timestamp."""
    return created_at.astimezone(timezone.utc).strftime(SNAPSHOT_ID_FORMAT)


def parse_snapshot_id(snapshot_id: str) -> datetime:
    """Recover the capture timestamp from a snapshot id."""
    return datetime.strptime(snapshot_id, SNAPSHOT_ID_FORMAT).replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Snapshot:
    """One captured database artifact.

    Attributes:
        id: Sortable unique identifier derived from created_at
        path: Artifact location on disk
        size_bytes: Artifact size at capture time
        migration_version: Highest applied migration version, if known
        created_at: Capture timestamp (UTC)
    """

    id: str
    path: Path
    size_bytes: int
    migration_version: Optional[str]
    created_at: datetime

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display or serialization."""
        return {
            "id": self.id,
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "migration_version": self.migration_version,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class EvictionReport:
    """Outcome of one eviction pass.

    Attributes:
        removed: Snapshots whose artifacts were deleted
        failures: Snapshots that could not be deleted, with the reason
    """

    removed: List[Snapshot] = field(default_factory=list)
    failures: List[Tuple[Snapshot, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class SnapshotStore:
    """Ordered, bounded set of snapshots in one directory.

    Example:
        >>> store = SnapshotStore(Path(".snapshots"))
        >>> staged = store.staging_path()
        >>> # ... dump engine writes staged ...
        >>> snap = store.append(staged, staged.stat().st_size, "20240101000002")
        >>> store.evict(keep_limit=10)
    """

    def __init__(self, directory: Path, suffix: str = ".dump") -> None:
        """Initialize the store.

        Args:
            directory: Snapshot directory (created on first write)
            suffix: Artifact file extension, including the dot
        """
        self.directory = Path(directory)
        self.suffix = suffix
        self.index_path = self.directory / INDEX_FILENAME
        self._artifact_re = re.compile(r"^(\d{20})" + re.escape(suffix) + r"$")

    def lock(self, timeout: float = 300.0) -> DirectoryLock:
        """Create a lock guarding this store's directory."""
        return DirectoryLock(self.directory, timeout=timeout)

    def artifact_path(self, snapshot_id: str) -> Path:
        return self.directory / f"{snapshot_id}{self.suffix}"

    def staging_path(self) -> Path:
        """Return a fresh path for a dump engine to write into."""
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory / f"{STAGING_PREFIX}{os.getpid()}-{uuid.uuid4().hex}{self.suffix}"

    def discard_staged(self, staged_path: Path) -> None:
        """Remove a staged (unregistered) artifact, if present."""
        try:
            Path(staged_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove partial artifact {staged_path}: {e}")

    def list(self) -> List[Snapshot]:
        """List registered snapshots, oldest first.

        Returns:
            Snapshots sorted by created_at ascending (ties by id)
        """
        if not self.directory.is_dir():
            return []

        index = self._read_index()
        snapshots = []

        for path in self.directory.iterdir():
            match = self._artifact_re.match(path.name)
            if not match:
                continue

            snapshot_id = match.group(1)
            try:
                created_at = parse_snapshot_id(snapshot_id)
            except ValueError:
                continue

            meta = index.get(snapshot_id, {})
            size_bytes = meta.get("size_bytes")
            if size_bytes is None:
                try:
                    size_bytes = path.stat().st_size
                except FileNotFoundError:
                    # Evicted by another process while we were listing
                    continue

            snapshots.append(
                Snapshot(
                    id=snapshot_id,
                    path=path,
                    size_bytes=int(size_bytes),
                    migration_version=meta.get("migration_version"),
                    created_at=created_at,
                )
            )

        return sorted(snapshots, key=lambda s: (s.created_at, s.id))

    def get(self, snapshot_id: str) -> Optional[Snapshot]:
        for snapshot in self.list():
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    def latest(self) -> Optional[Snapshot]:
        snapshots = self.list()
        return snapshots[-1] if snapshots else None

    def total_size_bytes(self) -> int:
        """Sum of size_bytes across registered snapshots."""
        return sum(s.size_bytes for s in self.list())

    def append(
        self,
        artifact_path: Path,
        size_bytes: int,
        migration_version: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> Snapshot:
        """Register a newly written artifact.

        The artifact is moved into place under its snapshot id and its
        metadata recorded in the index.

        Args:
            artifact_path: Staged artifact (normally from staging_path())
            size_bytes: Artifact size at capture time
            migration_version: Highest applied migration version, if known
            created_at: Capture timestamp (defaults to now, UTC)

        Returns:
            The registered Snapshot

        Raises:
            ClockCollisionError: If the derived id is not newer than every
                registered snapshot
            StoreWriteError: If the artifact or index cannot be written
        """
        created_at = (created_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
        snapshot_id = make_snapshot_id(created_at)
        final_path = self.artifact_path(snapshot_id)

        newest = self.latest()
        if final_path.exists() or (newest is not None and snapshot_id <= newest.id):
            raise ClockCollisionError(
                f"Snapshot id {snapshot_id} is not newer than existing snapshot "
                f"{newest.id if newest else snapshot_id}",
                snapshot_id=snapshot_id,
            )

        artifact_path = Path(artifact_path)
        try:
            os.replace(artifact_path, final_path)
        except OSError as e:
            raise StoreWriteError(f"Failed to move artifact into place: {e}", path=final_path)

        index = self._read_index()
        index[snapshot_id] = {
            "size_bytes": size_bytes,
            "migration_version": migration_version,
        }
        try:
            self._write_index(index)
        except OSError as e:
            # Put the artifact back so the caller can discard it; a
            # half-registered snapshot must not stay behind.
            try:
                os.replace(final_path, artifact_path)
            except OSError:
                logger.error(f"Failed to roll back artifact {final_path}", exc_info=True)
            raise StoreWriteError(f"Failed to write snapshot index: {e}", path=self.index_path)

        snapshot = Snapshot(
            id=snapshot_id,
            path=final_path,
            size_bytes=size_bytes,
            migration_version=migration_version,
            created_at=created_at,
        )
        logger.info(
            f"Registered snapshot {snapshot_id}",
            extra={
                "snapshot_id": snapshot_id,
                "size_bytes": size_bytes,
                "migration_version": migration_version,
            },
        )
        return snapshot

    def evict(self, keep_limit: int) -> EvictionReport:
        """Delete the oldest snapshots beyond keep_limit.

        Deletion is best effort per artifact: a failure is logged and
        reported, and the remaining deletions still run.

        Args:
            keep_limit: Number of newest snapshots to retain

        Returns:
            EvictionReport listing removed snapshots and failures

        Raises:
            ValueError: If keep_limit is negative
        """
        if keep_limit < 0:
            raise ValueError(f"keep_limit must be >= 0, got {keep_limit}")

        report = EvictionReport()
        snapshots = self.list()
        excess = len(snapshots) - keep_limit
        if excess <= 0:
            return report

        for snapshot in snapshots[:excess]:
            try:
                snapshot.path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to evict snapshot {snapshot.id}: {e}")
                report.failures.append((snapshot, str(e)))
                continue
            report.removed.append(snapshot)
            logger.info(f"Evicted snapshot {snapshot.id}", extra={"snapshot_id": snapshot.id})

        if report.removed:
            index = self._read_index()
            for snapshot in report.removed:
                index.pop(snapshot.id, None)
            try:
                self._write_index(index)
            except OSError as e:
                # Stale entries are ignored by list(), nothing to undo
                logger.warning(f"Failed to update snapshot index after eviction: {e}")

        return report

    def _read_index(self) -> Dict[str, Dict[str, Any]]:
        try:
            with open(self.index_path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable snapshot index {self.index_path}: {e}")
            return {}

        snapshots = data.get("snapshots", {}) if isinstance(data, dict) else {}
        return {k: v for k, v in snapshots.items() if isinstance(v, dict)}

    def _write_index(self, index: Dict[str, Dict[str, Any]]) -> None:
        # Drop records whose artifact is gone
        live = {
            snapshot_id: meta
            for snapshot_id, meta in index.items()
            if self.artifact_path(snapshot_id).exists()
        }
        payload = {"version": INDEX_VERSION, "snapshots": dict(sorted(live.items()))}

        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".index-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
            os.replace(tmp_name, self.index_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
