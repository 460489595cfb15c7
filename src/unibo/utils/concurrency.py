"""
unibo.utils.concurrency

Thread synchronization for business objects.

Responsibilities:
- Let many readers inspect a BO while mutators get exclusive access.
- Expose lock occupancy for tests and diagnostics.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class RWLock:
    """Shared/exclusive lock backed by ``threading.Condition``.

    Any number of readers may hold the lock together; a writer holds it alone. Waiting
    writers block new readers so a steady stream of reads cannot starve a write.
    The lock is not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read called without a matching acquire_read")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            if not self._writer:
                raise RuntimeError("release_write called without a matching acquire_write")
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def shared(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    def snapshot(self) -> dict[str, int]:
        with self._cond:
            return {
                "readers": self._readers,
                "writer": int(self._writer),
                "writers_waiting": self._writers_waiting,
            }


# --- Module Notes -----------------------------------------------------------
# BO methods never nest lock acquisitions; reading a dirty BO syncs first, then takes
# the shared lock (see `UniversalBo._read_synced`).
