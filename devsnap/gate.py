"""
Pre-migration snapshot gate.

The MigrationGate runs immediately before migrations are applied. It asks
the AdmissionController whether a snapshot is worthwhile and, if so, takes
one. Whatever happens, the migration itself must still run:

    Start -> Deciding -> Skipped                      -> Done
                      -> Capturing -> Captured        -> Done
                                   -> CaptureFailed   -> Done

Invariants:
    - before_migration() never raises
    - A disabled gate does not touch the database at all
    - Probe failures are logged as warnings; a failed size probe fails
      closed (no capture), a failed migration inspection counts as
      "migrations may be pending"
    - There is no retry within one invocation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .admission import AdmissionController, AdmissionDecision, MigrationState
from .errors import AdmissionProbeError, DevsnapError, MigrationInspectionError
from .probes import MigrationInspector, inspect_migrations
from .snapshot.capturer import SnapshotCapturer
from .snapshot.store import Snapshot

logger = logging.getLogger(__name__)


class SizeProbe(Protocol):
    def size_mb(self) -> int: ...


class GateState(Enum):
    """Terminal state of one gate invocation."""

    SKIPPED = "skipped"
    CAPTURED = "captured"
    CAPTURE_FAILED = "capture_failed"


@dataclass
class GateResult:
    """Result of one before_migration() call.

    Attributes:
        state: Terminal state
        decision: Admission decision that led there
        snapshot: Captured snapshot (CAPTURED only)
        error: Capture error (CAPTURE_FAILED only)
    """

    state: GateState
    decision: AdmissionDecision
    snapshot: Optional[Snapshot] = None
    error: Optional[BaseException] = None


class MigrationGate:
    """Snapshot-before-migrate policy.

    Example:
        >>> gate = MigrationGate(AdmissionController(config), capturer, probe, inspector)
        >>> gate.before_migration()
        >>> run_migrations()  # always, whatever the gate did
    """

    def __init__(
        self,
        controller: AdmissionController,
        capturer: SnapshotCapturer,
        size_probe: SizeProbe,
        inspector: MigrationInspector,
    ) -> None:
        self.controller = controller
        self.capturer = capturer
        self.size_probe = size_probe
        self.inspector = inspector

    def before_migration(self) -> GateResult:
        """Take a snapshot if admission allows it.

        Returns:
            GateResult describing what happened
        """
        if not self.controller.config.enabled:
            decision = self.controller.decide(None, None)
            logger.info("Snapshot skipped: snapshots disabled")
            return GateResult(state=GateState.SKIPPED, decision=decision)

        size_mb = self._probe_size()
        state = self._inspect_migrations()
        decision = self.controller.decide(state, size_mb)

        if not decision.proceed:
            logger.info(
                f"Snapshot skipped: {decision.detail}",
                extra={"reason": decision.reason.value},
            )
            return GateResult(state=GateState.SKIPPED, decision=decision)

        logger.info(
            f"Snapshot admitted: {decision.detail}",
            extra={"reason": decision.reason.value, "database_size_mb": size_mb},
        )

        try:
            snapshot = self.capturer.capture(
                migration_version=state.current_version if state else None
            )
        except DevsnapError as e:
            logger.error(f"Snapshot failed, migration will continue: {e.message}")
            return GateResult(state=GateState.CAPTURE_FAILED, decision=decision, error=e)
        except Exception as e:
            logger.error(f"Snapshot failed, migration will continue: {e}", exc_info=True)
            return GateResult(state=GateState.CAPTURE_FAILED, decision=decision, error=e)

        return GateResult(state=GateState.CAPTURED, decision=decision, snapshot=snapshot)

    def _probe_size(self) -> Optional[float]:
        try:
            return self.size_probe.size_mb()
        except AdmissionProbeError as e:
            logger.warning(f"Database size unknown, not taking a snapshot: {e.message}")
            return None
        except Exception as e:
            logger.warning(f"Database size probe crashed, not taking a snapshot: {e}", exc_info=True)
            return None

    def _inspect_migrations(self) -> Optional[MigrationState]:
        try:
            return inspect_migrations(self.inspector)
        except MigrationInspectionError as e:
            logger.warning(f"Pending migrations unknown, assuming some are pending: {e.message}")
            return None
        except Exception as e:
            logger.warning(f"Migration inspection crashed, assuming some are pending: {e}", exc_info=True)
            return None
