"""
Single-instance lock for a project directory.

The lock is a JSON file created with O_EXCL, so creation either succeeds
or fails atomically. A lock older than the staleness threshold is assumed
to belong to a dead process and is reclaimed.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional, Union

from .. import __version__
from .models import LockRecord

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".doc-migrator.lock"
DEFAULT_STALE_THRESHOLD_MS = 60 * 60 * 1000  # 1 hour


class LockError(Exception):
    """Another run holds the lock."""


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class LockManager:
    """Process-exclusion guard for one working directory.

    Usable as a context manager; the lock is released on every exit path.
    """

    def __init__(
        self,
        working_dir: Union[str, Path, None] = None,
        stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS,
        clock_ms: Callable[[], int] = _epoch_ms,
    ):
        if stale_threshold_ms <= 0:
            raise ValueError("stale_threshold_ms must be > 0")
        self.working_dir = Path(working_dir) if working_dir is not None else Path.cwd()
        self.lock_path = self.working_dir / LOCK_FILE_NAME
        self.stale_threshold_ms = stale_threshold_ms
        self._clock_ms = clock_ms
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> LockRecord:
        """Create the lock file.

        Raises:
            LockError: If a live lock is held by another process
        """
        record = self._try_create()
        if record is not None:
            return record

        existing = self.read()
        if not self._is_stale(existing):
            pid = existing.pid if existing is not None else "unknown"
            raise LockError(f"Migration already in progress (PID: {pid})")

        if existing is not None:
            age_s = (self._clock_ms() - existing.timestamp) / 1000
            logger.warning("Removing stale lock from PID %s (%.0fs old)", existing.pid, age_s)
        else:
            logger.warning("Removing unreadable stale lock %s", self.lock_path)
        self.force_release()

        record = self._try_create()
        if record is None:
            existing = self.read()
            pid = existing.pid if existing is not None else "unknown"
            raise LockError(f"Migration already in progress (PID: {pid})")
        return record

    def _try_create(self) -> Optional[LockRecord]:
        self.working_dir.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return None

        record = LockRecord(pid=os.getpid(), timestamp=self._clock_ms(), version=__version__)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f)
        self._held = True
        return record

    def read(self) -> Optional[LockRecord]:
        """Read the current lock record, or None if absent or unreadable."""
        try:
            with open(self.lock_path, "r", encoding="utf-8") as f:
                return LockRecord.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.debug("Unreadable lock file %s: %s", self.lock_path, e)
            return None

    def _is_stale(self, record: Optional[LockRecord]) -> bool:
        if record is not None:
            return self._clock_ms() - record.timestamp > self.stale_threshold_ms
        # Corrupt or vanished lock: judge by file age
        try:
            mtime_ms = int(self.lock_path.stat().st_mtime * 1000)
        except FileNotFoundError:
            return True
        return self._clock_ms() - mtime_ms > self.stale_threshold_ms

    def release(self) -> None:
        """Delete the lock if this instance holds it. Repeated calls are no-ops."""
        if not self._held:
            return
        self.lock_path.unlink(missing_ok=True)
        self._held = False

    def force_release(self) -> None:
        """Delete the lock regardless of owner."""
        self.lock_path.unlink(missing_ok=True)
        self._held = False

    def is_locked(self) -> bool:
        return self.lock_path.exists()

    def __enter__(self) -> "LockManager":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
