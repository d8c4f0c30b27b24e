"""File locking and atomic write utilities."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

import portalocker

from .errors import AlreadyRunning, StorageError

logger = logging.getLogger(__name__)

INSTANCE_LOCK_NAME = ".instance.lock"


@contextmanager
def file_lock(path: Path, timeout: float = 10.0) -> Generator[None, None, None]:
    """Acquire an exclusive lock on a file.

    Creates a .lock file alongside the target file.

    Args:
        path: File to lock
        timeout: Seconds to wait for lock

    Raises:
        StorageError: If lock cannot be acquired
    """
    lock_path = path.with_suffix(path.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    if not lock_path.exists():
        lock_path.touch()

    try:
        lock = portalocker.Lock(lock_path, timeout=timeout)
        lock.acquire()
    except portalocker.LockException as e:
        raise StorageError(f"Could not lock {path} within {timeout}s") from e
    try:
        yield
    finally:
        lock.release()


def temp_path_for(path: Path) -> Path:
    return path.with_suffix(path.suffix + ".tmp")


@contextmanager
def atomic_write(path: Path, mode: str = "w", encoding: str = "utf-8") -> Generator:
    """Write to a file atomically.

    Writes to a temporary file, flushes it to disk, then renames it over the
    target. The rename is the only commit point: on any failure the temp file
    is removed and the target is left as it was.

    Args:
        path: Target file path
        mode: Write mode ('w' for text, 'wb' for binary)
        encoding: Text encoding (ignored for binary mode)

    Yields:
        File handle for writing
    """
    tmp_path = temp_path_for(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        if "b" in mode:
            with open(tmp_path, mode) as f:
                yield f
                f.flush()
                os.fsync(f.fileno())
        else:
            with open(tmp_path, mode, encoding=encoding, newline="\n") as f:
                yield f
                f.flush()
                os.fsync(f.fileno())

        os.replace(tmp_path, path)

    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def discard_stale_temp(path: Path) -> bool:
    """Remove a temp file left behind by a process killed before its rename.

    Returns:
        True if a stale temp file was removed
    """
    tmp_path = temp_path_for(path)
    if tmp_path.exists():
        logger.warning("Discarding uncommitted write %s", tmp_path)
        tmp_path.unlink()
        return True
    return False


class InstanceLock:
    """Single-writer lock on a data directory.

    Only one process may own a data directory at a time. The lock is taken
    without waiting; a second owner fails with AlreadyRunning instead of
    interleaving writes. Create it at startup, pass it to the ledger, release
    it at shutdown (or use it as a context manager).
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / INSTANCE_LOCK_NAME
        self._lock: Optional[portalocker.Lock] = None

    @property
    def is_held(self) -> bool:
        return self._lock is not None

    def acquire(self) -> InstanceLock:
        """Take the lock.

        Raises:
            AlreadyRunning: If another instance holds it
        """
        if self._lock is not None:
            return self
        self.data_dir.mkdir(parents=True, exist_ok=True)
        lock = portalocker.Lock(self.path, mode="a", timeout=0, fail_when_locked=True)
        try:
            lock.acquire()
        except portalocker.LockException as e:
            raise AlreadyRunning(f"Another instance owns {self.data_dir}") from e
        self._lock = lock
        logger.info("Acquired instance lock %s", self.path)
        return self

    def release(self) -> None:
        if self._lock is None:
            return
        self._lock.release()
        self._lock = None
        logger.info("Released instance lock %s", self.path)

    def __enter__(self) -> InstanceLock:
        return self.acquire()

    def __exit__(self, *exc_info) -> None:
        self.release()
