"""
Snapshot restore.

Restoring fully replaces the target database with a snapshot's contents.
This is destructive and irreversible; confirming it with the user is the
caller's job.

Invariants:
    - Restore never modifies or deletes the source artifact, so restores
      are repeatable against the same snapshot
    - The directory lock is held for the whole restore, so eviction cannot
      remove the artifact mid-restore
    - A failed restore is always an error; a half-applied restore is not
      distinguished from a failed one
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from ..engines.base import ConnectionParams, DumpEngine
from ..errors import RestoreError, SnapshotNotFoundError
from .store import Snapshot, SnapshotStore

logger = logging.getLogger(__name__)

LATEST = "latest"


@dataclass
class RestoreResult:
    """Result of a restore operation.

    Attributes:
        snapshot: Snapshot that was restored
        duration_ms: Total restore duration
    """

    snapshot: Snapshot
    duration_ms: int


class SnapshotRestorer:
    """Restores the target database from a stored snapshot.

    Example:
        >>> restorer = SnapshotRestorer(store, PgDumpEngine(), params)
        >>> result = restorer.restore("latest")
        >>> print(f"Restored {result.snapshot.id} in {result.duration_ms}ms")
    """

    def __init__(
        self,
        store: SnapshotStore,
        engine: DumpEngine,
        params: ConnectionParams,
        lock_timeout: float = 300.0,
    ) -> None:
        self.store = store
        self.engine = engine
        self.params = params
        self.lock_timeout = lock_timeout

    def select(self, selector: str = LATEST) -> Snapshot:
        """Resolve a selector to a snapshot.

        Args:
            selector: Snapshot id, or "latest"

        Returns:
            Matching Snapshot

        Raises:
            SnapshotNotFoundError: If the store is empty or nothing matches
        """
        snapshots = self.store.list()
        if not snapshots:
            raise SnapshotNotFoundError(
                f"No snapshots in {self.store.directory}", selector=selector
            )

        if selector == LATEST:
            return snapshots[-1]

        for snapshot in snapshots:
            if snapshot.id == selector:
                return snapshot

        raise SnapshotNotFoundError(f"Snapshot not found: {selector}", selector=selector)

    def restore(self, selector: str = LATEST) -> RestoreResult:
        """Replace the database with the selected snapshot.

        Args:
            selector: Snapshot id, or "latest"

        Returns:
            RestoreResult

        Raises:
            SnapshotNotFoundError: If no snapshot matches
            RestoreError: If the restore engine failed
            LockTimeoutError: If another process holds the snapshot directory
        """
        with self.store.lock(timeout=self.lock_timeout):
            snapshot = self.select(selector)
            start_time = time.time()

            logger.info(
                f"Restoring snapshot {snapshot.id}",
                extra={"snapshot_id": snapshot.id, "database": self.params.database},
            )

            try:
                result = self.engine.restore(self.params, snapshot.path)
            except OSError as e:
                raise RestoreError(
                    f"Could not start restore engine: {e}", snapshot_id=snapshot.id
                )

            if not result.ok:
                raise RestoreError(
                    f"Restore of {snapshot.id} exited with status {result.exit_status}; "
                    f"the database may be partially restored, re-run the restore: "
                    f"{result.stderr.strip()}",
                    snapshot_id=snapshot.id,
                    exit_status=result.exit_status,
                    stderr=result.stderr,
                )

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Restored snapshot {snapshot.id}",
            extra={"snapshot_id": snapshot.id, "duration_ms": duration_ms},
        )
        return RestoreResult(snapshot=snapshot, duration_ms=duration_ms)
