"""
Admission control for automatic snapshots.

Decides, before a migration runs, whether a snapshot is worth taking:
- Never when the feature is disabled
- Never when the database exceeds the configured size ceiling
- Not when there are no pending migrations (unless forced)

Invariants:
    - Disabled overrides every other check
    - The size ceiling is checked even when force is set
    - An unknown database size (probe failure) is treated as too large
    - force only bypasses the pending-migration check
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import AbstractSet, FrozenSet, Optional

from .config import SnapshotConfig


class AdmissionReason(Enum):
    """Why a capture was or was not admitted."""

    NO_PENDING_MIGRATIONS = "no_pending_migrations"
    DATABASE_TOO_LARGE = "database_too_large"
    FORCED = "forced"
    APPROVED = "approved"
    DISABLED = "disabled"


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check.

    Attributes:
        proceed: Whether a capture should run
        reason: Why
        detail: Human-readable context for logs
    """

    proceed: bool
    reason: AdmissionReason
    detail: Optional[str] = None


@dataclass(frozen=True)
class MigrationState:
    """Migration versions as reported by the migration inspector.

    Attributes:
        applied_versions: Versions applied to the database
        all_known_versions: Versions defined by the project
        current_version: Version the database is at, as reported by the
            inspector (None if unknown or nothing is applied)
    """

    applied_versions: FrozenSet[str] = field(default_factory=frozenset)
    all_known_versions: FrozenSet[str] = field(default_factory=frozenset)
    current_version: Optional[str] = None

    @classmethod
    def of(
        cls,
        applied: AbstractSet[str],
        known: AbstractSet[str],
        current_version: Optional[str] = None,
    ) -> MigrationState:
        return cls(
            applied_versions=frozenset(str(v) for v in applied),
            all_known_versions=frozenset(str(v) for v in known),
            current_version=current_version,
        )

    @property
    def pending_versions(self) -> FrozenSet[str]:
        return self.all_known_versions - self.applied_versions

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_versions)


def decide(
    config: SnapshotConfig,
    migration_state: Optional[MigrationState],
    database_size_mb: Optional[float],
) -> AdmissionDecision:
    """Decide whether a capture should proceed.

    Args:
        config: Snapshot configuration (enabled, max_mb, force)
        migration_state: Applied/known versions, or None when they could not
            be determined (treated as "migrations may be pending")
        database_size_mb: Live database size, or None when the probe failed

    Returns:
        AdmissionDecision
    """
    if not config.enabled:
        return AdmissionDecision(False, AdmissionReason.DISABLED, "snapshots disabled")

    if database_size_mb is None:
        return AdmissionDecision(
            False,
            AdmissionReason.DATABASE_TOO_LARGE,
            "database size unknown (size probe failed)",
        )

    if config.max_mb > 0 and database_size_mb > config.max_mb:
        return AdmissionDecision(
            False,
            AdmissionReason.DATABASE_TOO_LARGE,
            f"database is {database_size_mb}MB, limit is {config.max_mb}MB",
        )

    pending = migration_state is None or migration_state.has_pending
    if not pending:
        if config.force:
            return AdmissionDecision(True, AdmissionReason.FORCED, "no pending migrations, forced")
        return AdmissionDecision(
            False, AdmissionReason.NO_PENDING_MIGRATIONS, "no pending migrations"
        )

    if migration_state is None:
        detail = "migration state unknown"
    else:
        detail = f"{len(migration_state.pending_versions)} pending migration(s)"
    return AdmissionDecision(True, AdmissionReason.APPROVED, detail)


class AdmissionController:
    """Admission policy bound to one snapshot configuration."""

    def __init__(self, config: SnapshotConfig) -> None:
        self.config = config

    def decide(
        self,
        migration_state: Optional[MigrationState],
        database_size_mb: Optional[float],
    ) -> AdmissionDecision:
        return decide(self.config, migration_state, database_size_mb)
