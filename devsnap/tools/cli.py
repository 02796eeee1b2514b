"""
Command line interface for devsnap.

Usage:
    devsnap capture                  Snapshot the database now
    devsnap restore [ID|latest]      Replace the database with a snapshot
    devsnap list                     Show snapshots, oldest first
    devsnap auto                     Snapshot if a migration is pending
    devsnap prune [--keep N]         Apply the retention limit
    devsnap migrate [--revision R]   auto, then alembic upgrade

Configuration comes from environment variables (see devsnap.config).

Invariants:
    - auto always exits 0; a skipped or failed snapshot never blocks a migration
    - migrate applies migrations even when devsnap cannot run here
    - capture and restore exit 1 on failure
    - restore asks for confirmation unless --yes is given
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, List, Optional

from ..config import DevsnapConfig
from ..errors import DevsnapError, UnsupportedEnvironmentError
from ..gate import GateResult, GateState
from ..main import Devsnap, run_migrations, setup_logging
from ..snapshot.restorer import LATEST
from ..snapshot.store import Snapshot

logger = logging.getLogger(__name__)

DevsnapFactory = Callable[[DevsnapConfig], Devsnap]


def _format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f}{unit}" if unit != "B" else f"{int(size)}B"
        size /= 1024
    return f"{size:.1f}GB"


def _print_snapshots(snapshots: List[Snapshot], total_bytes: int) -> None:
    if not snapshots:
        print("No snapshots.")
        return

    print(f"{'ID':<22} {'CREATED (UTC)':<20} {'SIZE':>10}  MIGRATION")
    for snapshot in snapshots:
        print(
            f"{snapshot.id:<22} "
            f"{snapshot.created_at.strftime('%Y-%m-%d %H:%M:%S'):<20} "
            f"{_format_size(snapshot.size_bytes):>10}  "
            f"{snapshot.migration_version or '-'}"
        )
    print(f"{len(snapshots)} snapshot(s), {_format_size(total_bytes)} total")


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devsnap",
        description="Snapshot and restore your development database around migrations",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("capture", help="Snapshot the database now")

    restore = subparsers.add_parser("restore", help="Replace the database with a snapshot")
    restore.add_argument(
        "selector", nargs="?", default=LATEST, help="Snapshot id or 'latest' (default)"
    )
    restore.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    subparsers.add_parser("list", help="List snapshots")
    subparsers.add_parser("auto", help="Snapshot if migrations are pending")

    prune = subparsers.add_parser("prune", help="Delete snapshots beyond the keep limit")
    prune.add_argument("--keep", type=int, help="Keep this many snapshots (default DEVSNAP_KEEP)")

    migrate = subparsers.add_parser("migrate", help="Run 'auto', then apply Alembic migrations")
    migrate.add_argument("--revision", default="head", help="Target revision (default head)")

    return parser


def _cmd_capture(devsnap: Devsnap, args: argparse.Namespace) -> int:
    snapshot = devsnap.capture_now()
    print(f"Captured snapshot {snapshot.id} ({_format_size(snapshot.size_bytes)})")
    return 0


def _cmd_restore(devsnap: Devsnap, args: argparse.Namespace) -> int:
    snapshot = devsnap.restorer.select(args.selector)
    if not args.yes and not _confirm(
        f"Replace database '{devsnap.restorer.params.database}' with snapshot {snapshot.id}?"
    ):
        print("Restore cancelled.")
        return 1

    result = devsnap.restore(snapshot.id)
    print(f"Restored snapshot {result.snapshot.id} in {result.duration_ms}ms")
    return 0


def _cmd_list(devsnap: Devsnap, args: argparse.Namespace) -> int:
    snapshots = devsnap.list()
    _print_snapshots(snapshots, sum(s.size_bytes for s in snapshots))
    return 0


def _print_gate_result(result: GateResult) -> None:
    if result.state == GateState.CAPTURED and result.snapshot is not None:
        print(f"Captured snapshot {result.snapshot.id}")
    elif result.state == GateState.CAPTURE_FAILED:
        print(f"Snapshot failed ({result.error}); continuing")
    else:
        print(f"Snapshot skipped: {result.decision.detail}")


def _cmd_auto(devsnap: Devsnap, args: argparse.Namespace) -> int:
    _print_gate_result(devsnap.auto_before_migration())
    return 0


def _cmd_prune(devsnap: Devsnap, args: argparse.Namespace) -> int:
    report = devsnap.prune(args.keep)
    print(f"Removed {len(report.removed)} snapshot(s)")
    for snapshot, reason in report.failures:
        print(f"  could not remove {snapshot.id}: {reason}")
    return 0 if report.ok else 1


def _cmd_migrate(devsnap: Devsnap, args: argparse.Namespace) -> int:
    result = devsnap.migrate(args.revision)
    _print_gate_result(result)
    print(f"Migrated to {args.revision}")
    return 0


_COMMANDS = {
    "capture": _cmd_capture,
    "restore": _cmd_restore,
    "list": _cmd_list,
    "auto": _cmd_auto,
    "prune": _cmd_prune,
    "migrate": _cmd_migrate,
}


def main(
    argv: Optional[List[str]] = None,
    devsnap_factory: DevsnapFactory = Devsnap.from_config,
) -> int:
    """CLI entry point.

    Args:
        argv: Arguments (defaults to sys.argv[1:])
        devsnap_factory: Builds the Devsnap instance from configuration

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    try:
        config = DevsnapConfig.from_env()
    except DevsnapError as e:
        print(f"devsnap: {e.message}", file=sys.stderr)
        return 0 if args.command == "auto" else 2

    setup_logging(config, verbose=args.verbose)

    try:
        devsnap = devsnap_factory(config)
    except UnsupportedEnvironmentError as e:
        if args.command == "auto":
            print(f"Snapshot skipped: {e.message}")
            return 0
        if args.command == "migrate":
            print(f"Snapshot skipped: {e.message}")
            return _run_migrations_only(config, args.revision)
        print(f"devsnap: {e.message}", file=sys.stderr)
        return 2

    try:
        return _COMMANDS[args.command](devsnap, args)
    except DevsnapError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"devsnap {args.command} failed: {e.message}", file=sys.stderr)
        return 1


def _run_migrations_only(config: DevsnapConfig, revision: str) -> int:
    try:
        run_migrations(config, revision=revision)
    except DevsnapError as e:
        print(f"devsnap migrate failed: {e.message}", file=sys.stderr)
        return 1
    print(f"Migrated to {revision}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
