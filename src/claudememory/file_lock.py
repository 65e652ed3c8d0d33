"""Advisory cross-process locks on sidecar lock files.

Shared documents (the memory index and timeline, the instance registry) are
updated with read-modify-write cycles. Those cycles are serialized through an
exclusive lock on a separate ``*.lock`` file in the runtime ``locks/``
directory. The document itself is still replaced atomically, so readers never
need the lock.

The OS releases a flock/msvcrt lock when the holding process dies, so a
crashed instance never leaves a stale lock behind.

Example:
    with FileLock(locks_dir / "index.lock", timeout=5.0):
        index = load_index()
        ...
        save_index(index)
"""

from __future__ import annotations

import os
import platform
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .logging_config import get_logger

__all__ = [
    "FileLock",
    "FileLockError",
    "FileLockTimeout",
    "FileLockUnsupported",
    "advisory_lock",
    "DEFAULT_LOCK_TIMEOUT_SECONDS",
]

logger = get_logger(__name__)

LOCK_RETRY_INTERVAL = 0.05  # 50ms between lock attempts
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0

_system = platform.system()
if _system == "Windows":
    import msvcrt

    _LOCK_MODULE = "msvcrt"
elif _system in ("Linux", "Darwin") or os.name == "posix":
    import fcntl

    _LOCK_MODULE = "fcntl"
else:
    _LOCK_MODULE = None
    logger.warning(f"File locking not supported on platform: {_system}")


class FileLockError(Exception):
    """Base exception for file locking errors."""

    pass


class FileLockTimeout(FileLockError):
    """Raised when file lock acquisition times out."""

    pass


class FileLockUnsupported(FileLockError):
    """Raised when file locking is not supported on this platform."""

    pass


class FileLock:
    """Exclusive advisory lock held on a dedicated lock file.

    Args:
        file_path: Lock file path (created with its parent directories if missing)
        timeout: Maximum seconds to wait for the lock (None = block forever)

    Raises:
        FileLockTimeout: If the lock cannot be acquired within timeout
        FileLockUnsupported: If the platform has no usable locking primitive
        FileLockError: On re-entry or when the lock file cannot be created
    """

    def __init__(self, file_path: Path | str, timeout: float | None = DEFAULT_LOCK_TIMEOUT_SECONDS):
        if _LOCK_MODULE is None:
            raise FileLockUnsupported(f"File locking not supported on platform: {_system}")

        self.file_path = Path(file_path)
        self.timeout = timeout
        self._lock_file = None
        self._is_locked = False

    @property
    def is_locked(self) -> bool:
        return self._is_locked

    def __enter__(self) -> FileLock:
        if self._is_locked:
            raise FileLockError(
                f"Lock on {self.file_path} is already acquired. "
                "Reentrancy is not supported to prevent deadlocks."
            )
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def acquire(self) -> None:
        """Acquire the lock, retrying until the timeout elapses."""
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            # "a+b" creates the file without truncating a concurrent holder's file
            lock_file = open(self.file_path, "a+b")
        except OSError as e:
            raise FileLockError(f"Cannot open lock file {self.file_path}: {e}") from e

        start_time = time.monotonic()
        while True:
            try:
                self._lock_fd(lock_file.fileno())
                break
            except OSError as e:
                if self.timeout is not None and time.monotonic() - start_time >= self.timeout:
                    lock_file.close()
                    raise FileLockTimeout(
                        f"Could not acquire lock on {self.file_path} within {self.timeout}s"
                    ) from e
                time.sleep(LOCK_RETRY_INTERVAL)

        self._lock_file = lock_file
        self._is_locked = True
        logger.debug(f"Acquired lock on {self.file_path}")

    def release(self) -> None:
        """Release the lock. Safe to call when not held."""
        if self._lock_file is None:
            return

        try:
            self._unlock_fd(self._lock_file.fileno())
            logger.debug(f"Released lock on {self.file_path}")
        except OSError as e:
            logger.warning(f"Error releasing lock on {self.file_path}: {e}")
        finally:
            self._lock_file.close()
            self._lock_file = None
            self._is_locked = False

    @staticmethod
    def _lock_fd(fd: int) -> None:
        if _LOCK_MODULE == "fcntl":
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        else:
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)

    @staticmethod
    def _unlock_fd(fd: int) -> None:
        if _LOCK_MODULE == "fcntl":
            fcntl.flock(fd, fcntl.LOCK_UN)
        else:
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)


@contextmanager
def advisory_lock(
    file_path: Path | str, timeout: float | None = DEFAULT_LOCK_TIMEOUT_SECONDS
) -> Iterator[bool]:
    """Hold an exclusive lock for a read-modify-write cycle, if possible.

    Never blocks past ``timeout``. When the lock cannot be obtained the body
    still runs unlocked and a warning is logged; concurrent writers then fall
    back to last-writer-wins.

    Yields:
        True if the lock is held, False if running unlocked
    """
    try:
        lock = FileLock(file_path, timeout=timeout)
        lock.acquire()
    except FileLockError as e:
        logger.warning(f"Proceeding without lock on {file_path}: {e}")
        yield False
        return

    try:
        yield True
    finally:
        lock.release()
