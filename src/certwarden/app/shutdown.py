"""Graceful stop for a running certwarden process.

API handlers wrap renewals, deploys and forced checks in
:meth:`ShutdownCoordinator.track`.  On SIGTERM/SIGINT (or an explicit
:meth:`~ShutdownCoordinator.initiate`) background services are stopped
first, then the coordinator blocks until the tracked work drains or
``graceful_timeout`` runs out::

    coordinator = ShutdownCoordinator(graceful_timeout=30, on_shutdown=container.stop_services)
    with coordinator.track("renewal"):
        store.renew(fp)
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections import Counter
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

log = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Counts running operations by kind and waits for them at exit.

    Parameters
    ----------
    graceful_timeout:
        Seconds :meth:`initiate` waits for tracked work before giving up.
    on_shutdown:
        Run once, before waiting, so that no new scheduled or watcher
        work is started.

    """

    def __init__(
        self,
        graceful_timeout: float = 30,
        on_shutdown: Callable[[], None] | None = None,
    ) -> None:
        self._graceful_timeout = graceful_timeout
        self._on_shutdown = on_shutdown
        self._stopping = threading.Event()
        self._running: Counter[str] = Counter()
        self._idle = threading.Condition()

    @property
    def is_shutting_down(self) -> bool:
        return self._stopping.is_set()

    @property
    def in_flight_count(self) -> int:
        with self._idle:
            return sum(self._running.values())

    @contextmanager
    def track(self, kind: str) -> Iterator[None]:
        """Count the enclosed block as one running *kind* operation."""
        if self._stopping.is_set():
            log.warning("%s operation starting during shutdown", kind)
        with self._idle:
            self._running[kind] += 1
        try:
            yield
        finally:
            with self._idle:
                self._running[kind] -= 1
                self._running += Counter()  # drops zero counts
                if not self._running:
                    self._idle.notify_all()

    def initiate(self) -> None:
        """Stop background services and wait for tracked work; runs once."""
        if self._stopping.is_set():
            return
        self._stopping.set()
        log.info("Graceful shutdown initiated")

        if self._on_shutdown is not None:
            try:
                self._on_shutdown()
            except Exception:
                log.exception("Error stopping background services")

        deadline = time.monotonic() + self._graceful_timeout
        with self._idle:
            drained = self._idle.wait_for(
                lambda: not self._running,
                timeout=max(0.0, deadline - time.monotonic()),
            )
            if drained:
                log.info("All in-flight operations completed")
            else:
                log.warning(
                    "Shutdown timeout expired with operations in flight: %s",
                    dict(self._running),
                )

    def register_signals(self) -> None:
        """Install SIGTERM/SIGINT handlers (possible from the main thread only)."""
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                signal.signal(signum, self._signal_handler)
            except (ValueError, OSError):
                log.debug("Cannot install %s handler outside the main thread", signum)
                return

    def _signal_handler(self, signum: int, frame) -> None:
        log.info("Received %s, initiating graceful shutdown", signal.Signals(signum).name)
        # initiate() blocks; keep the signal handler short
        threading.Thread(target=self.initiate, name="shutdown-coordinator", daemon=True).start()
