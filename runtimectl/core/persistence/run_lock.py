"""
Run lock — one deploy-style run per project at a time.

The lock is a ``filelock.SoftFileLock`` (exclusive create of the lock
file, removed on release) stamped with the owner's PID. A lock whose PID
no longer exists is stale and is taken over.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from filelock import SoftFileLock, Timeout

logger = logging.getLogger(__name__)


class LockTimeoutError(RuntimeError):
    """Raised when the run lock cannot be acquired in time."""


class RunLock:
    """Advisory inter-process lock.

    Usage::

        with RunLock(settings.run_lock_path, timeout=30):
            ...
    """

    def __init__(self, path: Path, timeout: float = 30.0, poll_interval: float = 0.2):
        self.path = path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._lock = SoftFileLock(str(path))

    @property
    def held(self) -> bool:
        return self._lock.is_locked

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                self._lock.acquire(timeout=self.poll_interval, poll_interval=self.poll_interval)
            except Timeout:
                if self._remove_if_stale():
                    continue
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        f"Another run holds {self.path} (pid {self._owner() or '?'})"
                    ) from None
                continue
            self.path.write_text(f"{os.getpid()}\n", encoding="utf-8")
            logger.debug("Acquired run lock %s", self.path)
            return

    def release(self) -> None:
        if not self._lock.is_locked:
            return
        self._lock.release(force=True)
        logger.debug("Released run lock %s", self.path)

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def _owner(self) -> int | None:
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def _remove_if_stale(self) -> bool:
        pid = self._owner()
        if pid is None:
            # Holder may still be writing its PID
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return self._discard_stale(pid)
        except PermissionError:
            pass  # alive, owned by another user
        return False

    def _discard_stale(self, pid: int) -> bool:
        """Move the lock aside and drop it only if it still names ``pid``."""
        aside = self.path.with_name(f"{self.path.name}.stale.{os.getpid()}")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return True  # another waiter already removed it
        try:
            current = int(aside.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            current = None
        if current != pid:
            # A new owner took the lock between the PID check and the rename
            try:
                os.link(aside, self.path)
            except FileExistsError:
                logger.warning("Run lock %s was replaced while restoring it", self.path)
            aside.unlink(missing_ok=True)
            return False
        logger.warning("Removing stale run lock %s (pid %d is gone)", self.path, pid)
        aside.unlink(missing_ok=True)
        return True
