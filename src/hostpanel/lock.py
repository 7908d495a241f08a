"""Host-wide exclusive lock so only one pass runs at a time."""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path

from hostpanel.errors import InfrastructureError, LockHeld

log = logging.getLogger(__name__)


class HostLock:
    """Non-blocking ``flock`` on a lock file.

    Usage:
        with HostLock(path):
            run_the_pass()
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as exc:
            raise InfrastructureError(f"Cannot open lock file {self.path}: {exc}") from exc
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockHeld(f"Another pass holds {self.path}") from None
        except OSError as exc:
            os.close(fd)
            raise InfrastructureError(f"Cannot lock {self.path}: {exc}") from exc
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        log.debug("Acquired %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        log.debug("Released %s", self.path)

    def __enter__(self) -> HostLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


def lock_is_held(path: Path) -> bool:
    """Check whether a pass currently holds the lock (used by ``doctor``)."""
    candidate = HostLock(path)
    try:
        candidate.acquire()
    except LockHeld:
        return True
    candidate.release()
    return False
