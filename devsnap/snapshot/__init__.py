"""
Snapshot lifecycle for devsnap.

This module handles local database snapshots:
- SnapshotStore: ordered, bounded registry of artifacts on disk
- SnapshotCapturer: dump -> register -> evict
- SnapshotRestorer: select -> restore
- DirectoryLock: inter-process mutual exclusion per snapshot directory

Invariants:
    - Only the store creates, renames or deletes artifact files
    - Retention is applied after a successful capture, never before
    - Failed captures leave no files behind
"""

from .capturer import SnapshotCapturer
from .lock import DirectoryLock
from .restorer import LATEST, RestoreResult, SnapshotRestorer
from .store import EvictionReport, Snapshot, SnapshotStore, make_snapshot_id

__all__ = [
    "Snapshot",
    "SnapshotStore",
    "EvictionReport",
    "SnapshotCapturer",
    "SnapshotRestorer",
    "RestoreResult",
    "DirectoryLock",
    "LATEST",
    "make_snapshot_id",
]
