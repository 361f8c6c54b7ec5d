"""Time-bounded set of paths the directory watcher must not act on."""

from __future__ import annotations

import os
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class IgnoreList:
    """Paths with an expiry, checked on every watcher event.

    Parameters
    ----------
    default_ttl:
        Seconds a path stays ignored when :meth:`add` gets no *ttl*.

    """

    def __init__(self, default_ttl: float = 150.0) -> None:
        self._default_ttl = default_ttl
        self._lock = threading.Lock()
        self._entries: dict[str, float] = {}

    @staticmethod
    def _normalize(path: str | os.PathLike) -> str:
        return os.path.abspath(os.fspath(path))

    def add(self, paths: Iterable[str | os.PathLike], ttl: float | None = None) -> None:
        expires = time.monotonic() + (self._default_ttl if ttl is None else ttl)
        with self._lock:
            for path in paths:
                self._entries[self._normalize(path)] = expires

    def is_ignored(self, path: str | os.PathLike) -> bool:
        now = time.monotonic()
        key = self._normalize(path)
        with self._lock:
            for expired in [p for p, exp in self._entries.items() if exp <= now]:
                del self._entries[expired]
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
