"""Advisory ingestion lease backed by a pid file.

The lease file holds the owner's process id; its modification time is the
acquisition time. A lease is reclaimable when it is older than the stale
threshold or when its owner process is no longer alive. Creation uses
exclusive-create so two processes cannot both win the same free lease.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from pathlib import Path
from types import TracebackType

import structlog

from ragkb.errors import IngestionLockedError

logger = structlog.get_logger(logger_name=__name__)


def pid_alive(pid: int) -> bool:
    """Return True if a process with *pid* exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user.
        return True
    return True


class IngestionLease:
    """Process-wide mutual exclusion for ingestion runs.

    Usage::

        with IngestionLease(path):
            ...  # lease held; file removed on exit

    Args:
        path: Lock file location.
        stale_after: Age in seconds after which an existing lease is reclaimable.
        clock: Returns the current time as epoch seconds.
        is_alive: Liveness check for a recorded pid.
    """

    def __init__(
        self,
        path: Path,
        stale_after: float = 15 * 60,
        clock: Callable[[], float] = time.time,
        is_alive: Callable[[int], bool] = pid_alive,
    ) -> None:
        self.path = Path(path)
        self.stale_after = stale_after
        self._clock = clock
        self._is_alive = is_alive
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def read_owner(self) -> int | None:
        """Return the pid recorded in the lease file, or None if unreadable."""
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def is_stale(self) -> bool:
        """True if the existing lease may be reclaimed."""
        try:
            acquired_at = self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        if self._clock() - acquired_at > self.stale_after:
            return True
        pid = self.read_owner()
        return pid is None or not self._is_alive(pid)

    def acquire(self) -> None:
        """Take the lease, reclaiming a stale one.

        Raises:
            IngestionLockedError: A live, non-stale lease is held by another run.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            if not self.is_stale():
                raise IngestionLockedError(
                    f"Ingestion already running (pid {self.read_owner()}, lock {self.path})."
                )
            logger.warning("stale_lock_reclaimed", path=str(self.path), pid=self.read_owner())
            self.path.unlink(missing_ok=True)

        try:
            with open(self.path, "x", encoding="utf-8") as fh:
                fh.write(str(os.getpid()))
        except FileExistsError:
            raise IngestionLockedError(
                f"Ingestion already running (lock {self.path} was just taken)."
            ) from None
        self._held = True
        logger.debug("lock_acquired", path=str(self.path), pid=os.getpid())

    def release(self) -> None:
        """Remove the lease file if this instance holds it."""
        if not self._held:
            return
        self.path.unlink(missing_ok=True)
        self._held = False
        logger.debug("lock_released", path=str(self.path))

    def __enter__(self) -> IngestionLease:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
