"""
Error types for devsnap.

This module defines every exception raised by the snapshot lifecycle:
- DevsnapError: Base exception
- ConfigurationError / UnsupportedEnvironmentError: Tool cannot run here
- AdmissionProbeError / MigrationInspectionError: Collaborator probes failed
- MigrationError: Alembic upgrade failed
- DumpError / StoreWriteError / ClockCollisionError: Capture failures
- RestoreError / SnapshotNotFoundError: Restore failures
- LockTimeoutError: Snapshot directory is held by another process

Admission outcomes (disabled, no pending migrations, database too large)
are NOT errors; they are AdmissionDecision values.

Invariants:
    - All errors inherit from DevsnapError
    - Every error carries a stable code for programmatic handling
    - Messages name the snapshot or path involved
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional


class DevsnapError(Exception):
    """Base exception for all devsnap errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DEVSNAP_ERROR"
        self.details = details or {}


class ConfigurationError(DevsnapError):
    """Configuration value is missing or invalid."""

    def __init__(self, message: str, setting: Optional[str] = None) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details={"setting": setting})
        self.setting = setting


class UnsupportedEnvironmentError(DevsnapError):
    """devsnap refuses to run in this environment.

    Raised when:
    - The environment is production
    - The database backend has no dump engine
    """

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message, code="UNSUPPORTED_ENVIRONMENT", details={"reason": reason})
        self.reason = reason


class AdmissionProbeError(DevsnapError):
    """The database size probe failed.

    Admission treats this as "too large" (fail closed).
    """

    def __init__(self, message: str, database: Optional[str] = None) -> None:
        super().__init__(message, code="ADMISSION_PROBE_FAILED", details={"database": database})
        self.database = database


class MigrationInspectionError(DevsnapError):
    """Applied or known migration versions could not be read."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="MIGRATION_INSPECTION_FAILED")


class MigrationError(DevsnapError):
    """Applying migrations failed (after the snapshot gate ran)."""

    def __init__(self, message: str, revision: Optional[str] = None) -> None:
        super().__init__(message, code="MIGRATION_FAILED", details={"revision": revision})
        self.revision = revision


class DumpError(DevsnapError):
    """The dump engine failed or produced an unusable artifact.

    Raised when:
    - The dump process exits with non-zero status
    - The dump process could not be started
    - The artifact is missing or zero bytes
    """

    def __init__(
        self,
        message: str,
        exit_status: Optional[int] = None,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="DUMP_FAILED",
            details={"exit_status": exit_status, "stderr": stderr},
        )
        self.exit_status = exit_status
        self.stderr = stderr


class StoreWriteError(DevsnapError):
    """A dumped artifact could not be registered with the store."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(
            message,
            code="STORE_WRITE_FAILED",
            details={"path": str(path) if path else None},
        )
        self.path = path


class ClockCollisionError(DevsnapError):
    """Two captures derived the same snapshot id.

    The caller should retry with a perturbed timestamp.
    """

    def __init__(self, message: str, snapshot_id: str) -> None:
        super().__init__(message, code="CLOCK_COLLISION", details={"snapshot_id": snapshot_id})
        self.snapshot_id = snapshot_id


class RestoreError(DevsnapError):
    """The restore engine failed.

    A failed restore may have partially replaced the database; re-run it.
    """

    def __init__(
        self,
        message: str,
        snapshot_id: Optional[str] = None,
        exit_status: Optional[int] = None,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="RESTORE_FAILED",
            details={"snapshot_id": snapshot_id, "exit_status": exit_status, "stderr": stderr},
        )
        self.snapshot_id = snapshot_id
        self.exit_status = exit_status
        self.stderr = stderr


class SnapshotNotFoundError(DevsnapError):
    """No snapshot matches the selector, or the store is empty."""

    def __init__(self, message: str, selector: Optional[str] = None) -> None:
        super().__init__(message, code="NO_SNAPSHOT_FOUND", details={"selector": selector})
        self.selector = selector


class LockTimeoutError(DevsnapError):
    """The snapshot directory lock could not be acquired in time."""

    def __init__(self, message: str, lock_path: Path, timeout: float) -> None:
        super().__init__(
            message,
            code="LOCK_TIMEOUT",
            details={"lock_path": str(lock_path), "timeout": timeout},
        )
        self.lock_path = lock_path
        self.timeout = timeout
