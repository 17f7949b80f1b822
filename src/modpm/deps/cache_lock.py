"""Advisory file lock guarding the package cache across processes."""

import os
import time
from pathlib import Path
from typing import Callable, Optional, Union

if os.name == "nt":
    import msvcrt
else:
    import fcntl

from ..utils.console import _rich_warning


class CacheLock:
    """Exclusive advisory lock on the ``package-cache`` file.

    Use as a context manager around anything that mutates the cache::

        with CacheLock(settings.package_cache_lock_file):
            client.update(package)

    The lock is released on every exit path, including exceptions.
    """

    def __init__(self, path: Union[str, Path], poll_interval: float = 0.002,
                 on_wait: Optional[Callable[[str], None]] = _rich_warning):
        self.path = Path(path)
        self.poll_interval = poll_interval
        self.on_wait = on_wait
        self._fd: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def try_lock(self) -> bool:
        """Attempt to take the lock without blocking."""
        if self._fd is not None:
            return True
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            if os.name == "nt":
                msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            return False
        self._fd = fd
        return True

    def acquire(self) -> None:
        """Take the lock, polling until any other holder releases it."""
        if self.try_lock():
            return
        if self.on_wait is not None:
            self.on_wait("waiting for package-cache lock...")
        while not self.try_lock():
            time.sleep(self.poll_interval)

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            if os.name == "nt":
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def __enter__(self) -> "CacheLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
