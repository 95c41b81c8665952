"""Expiring advisory lock stored in the job database.

Example::

    semaphore = Semaphore("create_dump", locked_for=300)
    if semaphore.acquire(retries=2):
        try:
            ...
        finally:
            semaphore.release()
"""
import time
from typing import Callable

import structlog

from dbdump_core.jobs.repo import get_conn

logger = structlog.get_logger()

LOCK_PREFIX = "dbdump_lock_"


class Semaphore:
    """A named lock that expires ``locked_for`` seconds after acquisition.

    Instantiating does not lock anything. A holder that already acquired the
    lock gets it again without touching the store.
    """

    def __init__(
        self,
        name: str,
        locked_for: int = 300,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.name = LOCK_PREFIX + name
        self.locked_for = locked_for
        self.clock = clock
        self.sleep = sleep
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    def _try_acquire(self) -> bool:
        now = int(self.clock())
        with get_conn() as conn:
            cur = conn.execute(
                "UPDATE locks SET locked_until = ? WHERE name = ? AND locked_until < ?",
                (now + self.locked_for, self.name, now),
            )
            return cur.rowcount == 1

    def _ensure_row(self) -> int:
        """0 on failure, 1 if the row already existed, 2 if it was created."""
        with get_conn() as conn:
            row = conn.execute("SELECT 1 FROM locks WHERE name = ?", (self.name,)).fetchone()
            if row is not None:
                return 1
            cur = conn.execute(
                "INSERT OR IGNORE INTO locks (name, locked_until) VALUES (?, 0)",
                (self.name,),
            )
            return 2 if cur.rowcount > 0 else 0

    def acquire(self, retries: int = 0) -> bool:
        """Try to take the lock, sleeping a second between ``retries`` extra attempts."""
        if self._acquired:
            return True
        if self._try_acquire():
            self._acquired = True
            return True

        # The update may have failed only because the row does not exist yet.
        if not self._ensure_row():
            return False

        while True:
            if self._try_acquire():
                self._acquired = True
                logger.debug("lock_acquired", name=self.name)
                return True
            retries -= 1
            if retries < 0:
                logger.info("lock_busy", name=self.name)
                return False
            self.sleep(1)

    def release(self) -> bool:
        """Release a lock this instance holds. False if it did not hold it."""
        if not self._acquired:
            return False
        with get_conn() as conn:
            cur = conn.execute("UPDATE locks SET locked_until = 0 WHERE name = ?", (self.name,))
            released = cur.rowcount == 1
        self._acquired = False
        return released

    def force_clear(self):
        """Remove the lock row entirely, whoever holds it."""
        self._acquired = False
        with get_conn() as conn:
            conn.execute("DELETE FROM locks WHERE name = ?", (self.name,))
