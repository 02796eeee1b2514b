"""
CLI tools for devsnap.

This module provides the `devsnap` command:
- capture / restore / list: manual snapshot management
- auto / migrate: snapshot-before-migrate hook
- prune: standalone retention

Invariants:
    - Tools work offline against the local database only
    - Destructive commands ask for confirmation
"""

from .cli import build_parser, main

__all__ = ["build_parser", "main"]
