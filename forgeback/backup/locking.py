"""
Per-repository locking.

Two runs against the same storage root must not race on the .tmp -> .std
promotion of one repository, so each pipeline holds an exclusive lock on
'{name}.lock' while it works.
"""

import fcntl
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class RepositoryLock:
    """Exclusive advisory lock on a lock file. Blocks until acquired."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd = None

    def acquire(self):
        """Acquire the lock, waiting for any other holder."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o664)

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            logger.info("Waiting for lock %s", self.path)
            fcntl.flock(fd, fcntl.LOCK_EX)

        self._fd = fd

    def release(self):
        """Release the lock if held."""
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
