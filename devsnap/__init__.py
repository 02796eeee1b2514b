"""
devsnap - development database snapshots around schema migrations.

Before migrations run, devsnap dumps the local development database into
a snapshot directory so a bad migration can be undone by restoring the
previous state. Snapshots can also be captured, listed and restored by
hand.

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌─────────────────┐
    │ devsnap CLI │────▶│   Devsnap    │────▶│  MigrationGate  │
    │  (tools/)   │     │  (main.py)   │     │   (gate.py)     │
    └─────────────┘     └──────┬───────┘     └────────┬────────┘
                               │                      │
              ┌────────────────┼──────────┐           ▼
              │                │          │   ┌───────────────┐
              ▼                ▼          │   │ Admission +   │
       ┌────────────┐   ┌────────────┐    │   │ size/migration│
       │  Capturer  │   │  Restorer  │    │   │ probes        │
       └─────┬──────┘   └─────┬──────┘    │   └───────────────┘
             │                │           │
             ▼                ▼           ▼
       ┌─────────────────────────┐  ┌───────────┐
       │ DumpEngine              │  │ Snapshot  │
       │ (pg_dump / SQLite)      │  │ Store     │
       └─────────────────────────┘  └───────────┘

Invariants:
    - devsnap never runs in production
    - A snapshot failure never blocks a migration
    - The snapshot directory never holds more than keep_limit snapshots
      after a successful capture

How to change safely:
    - New database backends go in engines/ and create_dump_engine()
    - Keep environment variable names stable
"""

from ._version import __version__

__all__ = ["__version__"]
