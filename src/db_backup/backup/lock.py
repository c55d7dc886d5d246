"""Exclusive advisory lock on a backup directory.

Two processes sweeping, creating or restoring in the same directory at
once would race on deletes and snapshots.  Every mutating operation holds
``<directory>/.lock`` with a non-blocking ``flock``; the loser gets
``DirectoryLockedError`` immediately.

Usage:
    with DirectoryLock(Path("backups")):
        manager.sweep()
"""

import fcntl
import logging
import os
from pathlib import Path

from db_backup.errors import DirectoryLockedError

logger = logging.getLogger(__name__)

LOCK_NAME = ".lock"


class DirectoryLock:
    """Context manager around ``fcntl.flock(LOCK_EX | LOCK_NB)``.

    The lock is released when the file descriptor is closed, including
    when the process dies.  The lock file itself is left in place.
    """

    def __init__(self, directory: Path) -> None:
        self.path = Path(directory) / LOCK_NAME
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise DirectoryLockedError(
                f"Another db-backup process is using {self.path.parent}",
                stage="lock",
                recovery_hint="Wait for the other operation to finish and retry.",
            ) from e
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug(f"Acquired {self.path}")

    def release(self) -> None:
        if self._fd is None:
            return
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None
        logger.debug(f"Released {self.path}")

    def __enter__(self) -> "DirectoryLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
