"""
PostgreSQL engine backed by pg_dump / pg_restore.

Artifacts use pg_dump's custom format (compressed, restorable with
pg_restore). A restore drops and recreates the database before loading the
artifact, so tables created after the snapshot do not survive it.

Invariants:
    - The password is passed through PGPASSWORD, never on the command line
    - A restore needs no other sessions on the database; dropdb --force
      terminates them (PostgreSQL 13+)
    - Ownership and privileges are not dumped (local developer databases
      usually run under a different role than the one that created them)
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .base import ConnectionParams, EngineResult

logger = logging.getLogger(__name__)


class PgDumpEngine:
    """Dump and restore PostgreSQL databases with the client tools.

    Attributes:
        pg_dump: pg_dump executable
        pg_restore: pg_restore executable
        dropdb: dropdb executable (restore recreates the database)
        createdb: createdb executable
        extra_dump_args: Additional arguments appended to pg_dump
        extra_restore_args: Additional arguments appended to pg_restore
    """

    artifact_suffix = ".dump"

    def __init__(
        self,
        pg_dump: str = "pg_dump",
        pg_restore: str = "pg_restore",
        dropdb: str = "dropdb",
        createdb: str = "createdb",
        extra_dump_args: Optional[Sequence[str]] = None,
        extra_restore_args: Optional[Sequence[str]] = None,
    ) -> None:
        self.pg_dump = pg_dump
        self.pg_restore = pg_restore
        self.dropdb = dropdb
        self.createdb = createdb
        self.extra_dump_args = list(extra_dump_args or [])
        self.extra_restore_args = list(extra_restore_args or [])

    def dump(self, params: ConnectionParams, output_path: Path) -> EngineResult:
        cmd = [
            self.pg_dump,
            "--format=custom",
            "--no-owner",
            "--no-acl",
            f"--file={output_path}",
            *self._connection_args(params),
            *self.extra_dump_args,
            params.database or "",
        ]
        return self._run(cmd, params)

    def restore(self, params: ConnectionParams, artifact_path: Path) -> EngineResult:
        database = params.database or ""
        connection_args = self._connection_args(params)
        steps = [
            [self.dropdb, "--if-exists", "--force", *connection_args, database],
            [self.createdb, *connection_args, database],
            [
                self.pg_restore,
                "--no-owner",
                "--no-acl",
                "--exit-on-error",
                "--single-transaction",
                f"--dbname={database}",
                *connection_args,
                *self.extra_restore_args,
                str(artifact_path),
            ],
        ]

        for cmd in steps:
            result = self._run(cmd, params)
            if not result.ok:
                return result
        return result

    def _connection_args(self, params: ConnectionParams) -> List[str]:
        args = []
        if params.host:
            args.append(f"--host={params.host}")
        if params.port:
            args.append(f"--port={params.port}")
        if params.username:
            args.append(f"--username={params.username}")
        args.append("--no-password")
        return args

    def _env(self, params: ConnectionParams) -> Dict[str, str]:
        env = dict(os.environ)
        if params.password:
            env["PGPASSWORD"] = params.password
        sslmode = params.query.get("sslmode")
        if sslmode:
            env["PGSSLMODE"] = sslmode
        return env

    def _run(self, cmd: List[str], params: ConnectionParams) -> EngineResult:
        logger.debug(f"Running {cmd[0]}", extra={"database": params.database, "host": params.host})
        completed = subprocess.run(
            cmd,
            env=self._env(params),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
        )
        if completed.returncode != 0:
            logger.warning(
                f"{cmd[0]} exited with status {completed.returncode}",
                extra={"stderr": completed.stderr.strip()},
            )
        return EngineResult(exit_status=completed.returncode, stderr=completed.stderr)
