"""
devsnap test suite.

This package contains:
- unit/: Unit tests (fake engines and probes, temp directories)
- integration/: Integration tests (SQLite database, real Alembic project, CLI)
- e2e/: End-to-end tests (PostgreSQL server and client tools)
"""
