"""
Inter-process lock for a snapshot directory.

Capture (dump, append, evict) and restore hold this lock so that two
migration commands launched against the same database never interleave
their append/evict sequences or evict an artifact that is being restored.

Invariants:
    - The lock is an exclusive fcntl advisory lock on <dir>/.devsnap.lock
    - The lock is released on every exit path, including exceptions
    - The lock file itself is left in place (unlinking it would let a
      waiting process lock a stale inode)
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from pathlib import Path
from types import TracebackType
from typing import IO, Optional, Type

from ..errors import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".devsnap.lock"


class DirectoryLock:
    """Exclusive lock scoped to one snapshot directory.

    Example:
        >>> with DirectoryLock(Path(".snapshots"), timeout=30):
        ...     store.append(...)
        ...     store.evict(keep_limit)
    """

    def __init__(
        self,
        directory: Path,
        timeout: float = 300.0,
        poll_interval: float = 0.05,
    ) -> None:
        """Initialize the lock.

        Args:
            directory: Snapshot directory to guard
            timeout: Seconds to wait before giving up (0 = try once)
            poll_interval: Seconds between attempts while waiting
        """
        self.directory = Path(directory)
        self.lock_path = self.directory / LOCK_FILENAME
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._lock_file: Optional[IO[str]] = None

    @property
    def is_held(self) -> bool:
        return self._lock_file is not None

    def acquire(self) -> None:
        """Acquire the lock, waiting up to the timeout.

        Raises:
            LockTimeoutError: If another process keeps the lock past the timeout
        """
        if self._lock_file is not None:
            raise RuntimeError(f"Lock already held: {self.lock_path}")

        self.directory.mkdir(parents=True, exist_ok=True)
        lock_file = open(self.lock_path, "a+")
        deadline = time.monotonic() + self.timeout
        waited = False

        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    lock_file.close()
                    raise LockTimeoutError(
                        f"Timed out after {self.timeout}s waiting for {self.lock_path}",
                        lock_path=self.lock_path,
                        timeout=self.timeout,
                    )
                if not waited:
                    logger.info(f"Waiting for snapshot lock held by another process: {self.lock_path}")
                    waited = True
                time.sleep(self.poll_interval)
            except OSError:
                lock_file.close()
                raise

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"pid={os.getpid()}\n")
        lock_file.flush()
        self._lock_file = lock_file
        logger.debug(f"Acquired snapshot lock: {self.lock_path}")

    def release(self) -> None:
        """Release the lock if held."""
        if self._lock_file is None:
            return
        try:
            fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            self._lock_file.close()
            self._lock_file = None
            logger.debug(f"Released snapshot lock: {self.lock_path}")

    def __enter__(self) -> DirectoryLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.release()
