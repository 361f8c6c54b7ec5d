"""Locking primitives for the certificate store.

:class:`CertificateLocks` hands out one non-blocking mutex per
certificate: a second task asking for a held certificate gets
:class:`~certwarden.core.errors.BusyError` immediately instead of
queueing.  :class:`ReadWriteLock` guards the store's index.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from certwarden.core.errors import BusyError

if TYPE_CHECKING:
    from collections.abc import Generator


class CertificateLocks:
    """Per-certificate mutexes keyed by fingerprint."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._holders: dict[str, tuple[str, float]] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str, task: str = "operation") -> Generator[None, None, None]:
        """Hold the mutex for *key*; raise :class:`BusyError` if taken."""
        lock = self._lock_for(key)
        if not lock.acquire(blocking=False):
            with self._guard:
                holder = self._holders.get(key, ("unknown", 0.0))[0]
            raise BusyError(f"Certificate {key} is busy ({holder} in progress)")
        with self._guard:
            self._holders[key] = (task, time.time())
        try:
            yield
        finally:
            with self._guard:
                self._holders.pop(key, None)
            lock.release()

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._holders

    def running_tasks(self) -> dict[str, dict[str, object]]:
        with self._guard:
            return {
                key: {"task": task, "since": started}
                for key, (task, started) in self._holders.items()
            }

    def discard(self, key: str) -> None:
        """Forget the mutex of a deleted certificate (if idle)."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is not None and key not in self._holders:
                del self._locks[key]


class ReadWriteLock:
    """Many readers or one writer; writers are preferred once waiting."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Generator[None, None, None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Generator[None, None, None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
