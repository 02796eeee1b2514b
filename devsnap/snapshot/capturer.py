"""
Snapshot capture.

The SnapshotCapturer runs the dump engine into a staging file, validates
the result, registers it with the SnapshotStore and then applies the
retention limit:

    lock -> dump -> validate -> store.append -> store.evict -> unlock

Invariants:
    - The directory lock is held from before the dump until after eviction
    - A successful capture leaves exactly one new artifact file
    - A failed capture leaves no new file (the staged dump is discarded)
    - Eviction runs only after the new snapshot is registered, so the
      fresh snapshot is never evicted in favour of older ones
    - Eviction failures are logged, never raised

How to change safely:
    - Keep append() before evict(); reversing them can empty the store
      when the dump fails
    - Any new failure mode between dump and append must discard the stage
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from ..engines.base import ConnectionParams, DumpEngine
from ..errors import ClockCollisionError, DumpError, StoreWriteError
from .store import EvictionReport, Snapshot, SnapshotStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotCapturer:
    """Creates snapshots and keeps the store within its keep limit.

    Attributes:
        store: SnapshotStore that receives artifacts
        engine: DumpEngine used to dump the database
        params: Database connection parameters
        keep_limit: Number of snapshots retained after each capture

    Example:
        >>> capturer = SnapshotCapturer(store, PgDumpEngine(), params, keep_limit=10)
        >>> snapshot = capturer.capture(migration_version="20240101000002")
    """

    def __init__(
        self,
        store: SnapshotStore,
        engine: DumpEngine,
        params: ConnectionParams,
        keep_limit: int,
        lock_timeout: float = 300.0,
        clock: Callable[[], datetime] = _utcnow,
        max_id_attempts: int = 5,
    ) -> None:
        """Initialize the capturer.

        Args:
            store: SnapshotStore that receives artifacts
            engine: DumpEngine used to dump the database
            params: Database connection parameters
            keep_limit: Number of snapshots retained after each capture
            lock_timeout: Seconds to wait for the directory lock
            clock: Source of capture timestamps
            max_id_attempts: Attempts at registering under a unique id
        """
        if keep_limit < 1:
            raise ValueError(f"keep_limit must be >= 1, got {keep_limit}")

        self.store = store
        self.engine = engine
        self.params = params
        self.keep_limit = keep_limit
        self.lock_timeout = lock_timeout
        self.clock = clock
        self.max_id_attempts = max_id_attempts
        self.last_eviction: Optional[EvictionReport] = None

    def capture(self, migration_version: Optional[str] = None) -> Snapshot:
        """Dump the database and register the artifact.

        Args:
            migration_version: Highest applied migration version, if known

        Returns:
            The registered Snapshot

        Raises:
            DumpError: If the dump failed or produced an empty artifact
            StoreWriteError: If the artifact could not be registered
            LockTimeoutError: If another process holds the snapshot directory
        """
        with self.store.lock(timeout=self.lock_timeout):
            staged = self.store.staging_path()
            try:
                snapshot = self._dump_and_register(staged, migration_version)
            except BaseException:
                self.store.discard_staged(staged)
                raise

            report = self.store.evict(self.keep_limit)
            self.last_eviction = report
            for failed, reason in report.failures:
                logger.warning(f"Could not evict snapshot {failed.id}: {reason}")

        return snapshot

    def _dump_and_register(self, staged: Path, migration_version: Optional[str]) -> Snapshot:
        logger.info(
            "Capturing snapshot",
            extra={"database": self.params.database, "migration_version": migration_version},
        )
        start_time = time.time()

        try:
            result = self.engine.dump(self.params, staged)
        except OSError as e:
            raise DumpError(f"Could not start dump engine: {e}")

        if not result.ok:
            raise DumpError(
                f"Dump exited with status {result.exit_status}: {result.stderr.strip()}",
                exit_status=result.exit_status,
                stderr=result.stderr,
            )

        try:
            size_bytes = staged.stat().st_size
        except FileNotFoundError:
            raise DumpError("Dump reported success but produced no artifact", exit_status=0)
        if size_bytes == 0:
            raise DumpError("Dump produced an empty artifact", exit_status=0)

        snapshot = self._register(staged, size_bytes, migration_version)

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Captured snapshot {snapshot.id}",
            extra={
                "snapshot_id": snapshot.id,
                "size_bytes": size_bytes,
                "duration_ms": duration_ms,
            },
        )
        return snapshot

    def _register(self, staged: Path, size_bytes: int, migration_version: Optional[str]) -> Snapshot:
        created_at = self.clock().astimezone(timezone.utc)
        last_error: Optional[ClockCollisionError] = None

        for _ in range(self.max_id_attempts):
            try:
                return self.store.append(staged, size_bytes, migration_version, created_at=created_at)
            except ClockCollisionError as e:
                last_error = e
                newest = self.store.latest()
                floor = newest.created_at if newest else created_at
                created_at = max(created_at, floor) + timedelta(microseconds=1)
                logger.debug(f"Snapshot id {e.snapshot_id} taken, retrying at {created_at}")

        raise StoreWriteError(
            f"Could not allocate a unique snapshot id after {self.max_id_attempts} attempts: "
            f"{last_error}",
            path=staged,
        )
