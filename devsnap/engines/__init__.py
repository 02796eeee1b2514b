"""
Dump/restore engines for devsnap.

This module provides a pluggable engine interface supporting:
- PostgreSQL (pg_dump / pg_restore client tools)
- SQLite (online backup API)

Invariants:
    - Engines report failure through EngineResult, not exceptions
    - Engines never delete or rename files; the SnapshotStore owns artifacts
"""

from .base import ConnectionParams, DumpEngine, EngineResult, create_dump_engine
from .postgres import PgDumpEngine
from .sqlite import SqliteBackupEngine

__all__ = [
    # Protocol and types
    "DumpEngine",
    "EngineResult",
    "ConnectionParams",
    # Factory
    "create_dump_engine",
    # Implementations
    "PgDumpEngine",
    "SqliteBackupEngine",
]
