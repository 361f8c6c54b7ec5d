"""Cron-driven renewal scheduler.

A daemon timer thread sleeps until the next cron fire and hands the
pass to a single background worker, so renewal I/O never runs on the
timer thread.  Passes are single-flight: a fire that arrives while the
previous pass is still running is dropped.

Usage::

    scheduler = RenewalScheduler(store, settings.renewal)
    scheduler.start()
    ...
    scheduler.stop()
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from croniter import croniter

from certwarden.core.errors import BusyError, CertError
from certwarden.logging.setup import operation_context

if TYPE_CHECKING:
    from collections.abc import Callable

    from certwarden.config.settings import RenewalSettings
    from certwarden.store.store import CertificateStore

log = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class RenewalScheduler:
    """Runs renewal passes on a cron schedule and on demand.

    Parameters
    ----------
    store:
        The certificate store to check.
    settings:
        Schedule, initial delay and history length.
    watcher_active:
        Optional callable reporting whether the directory watcher runs;
        only used by :meth:`status`.

    """

    def __init__(
        self,
        store: CertificateStore,
        settings: RenewalSettings,
        watcher_active: Callable[[], bool] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._watcher_active = watcher_active
        self._pass_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._worker: ThreadPoolExecutor | None = None
        self._last_check: datetime | None = None
        self._next_check: datetime | None = None
        self._last_result: dict[str, Any] | None = None
        self.recent_renewals: deque[dict[str, Any]] = deque(maxlen=settings.recent_history)

    # -- lifecycle -----------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    def start(self) -> None:
        """Start the timer thread."""
        if not self._settings.enabled:
            log.info("Renewal scheduler disabled by configuration")
            return
        if self.active:
            return
        self._stop_event.clear()
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="renewal")
        self._thread = threading.Thread(target=self._run, name="renewal-scheduler", daemon=True)
        self._thread.start()
        log.info(
            "Renewal scheduler started (schedule=%r, initial delay=%ss)",
            self._settings.schedule,
            self._settings.initial_delay_seconds,
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the timer; a pass in progress runs to completion."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self._worker is not None:
            self._worker.shutdown(wait=False)
            self._worker = None
        self._next_check = None
        log.info("Renewal scheduler stopped")

    def next_fire(self, after: datetime | None = None) -> datetime:
        base = after or datetime.now(UTC)
        return croniter(self._settings.schedule, base).get_next(datetime)

    def _run(self) -> None:
        first = True
        while not self._stop_event.is_set():
            now = datetime.now(UTC)
            if first:
                delay = float(self._settings.initial_delay_seconds)
                first = False
            else:
                self._next_check = self.next_fire(now)
                delay = max((self._next_check - now).total_seconds(), 0.0)
            if self._stop_event.wait(timeout=delay):
                break
            self._fire()

    def _fire(self) -> None:
        if self.running:
            log.warning("Previous renewal pass still running; dropping this fire")
            return
        if self._worker is not None:
            self._worker.submit(self._scheduled_pass)

    def _scheduled_pass(self) -> None:
        try:
            self.check_for_renewals()
        except BusyError:
            log.warning("Renewal pass already in progress; skipped")
        except Exception:
            log.exception("Scheduled renewal pass failed")

    # -- passes --------------------------------------------------------------

    def check_for_renewals(self, force_all: bool = False) -> dict[str, Any]:
        """Run one renewal pass and return its summary.

        Raises :class:`BusyError` if another pass is in progress.
        """
        if not self._pass_lock.acquire(blocking=False):
            raise BusyError("A renewal check is already running")
        try:
            with operation_context(task="renewal-check"):
                return self._check(force_all)
        finally:
            self._pass_lock.release()

    def _check(self, force_all: bool) -> dict[str, Any]:
        started = datetime.now(UTC)
        self._last_check = started
        renewed: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []

        try:
            certs = self._store.load(force_refresh=True)
        except CertError as exc:
            log.error("Store refresh failed before renewal pass: %s", exc.detail)
            result = {
                "success": False,
                "checkTime": started.isoformat(),
                "total": 0,
                "checked": 0,
                "renewalNeeded": 0,
                "renewedCount": 0,
                "renewalErrors": 1,
                "renewed": [],
                "failed": [{"name": None, "fingerprint": None, "error": exc.detail}],
            }
            self._last_result = result
            return result

        needed = [c for c in certs if force_all or c.is_due(started)]
        log.info(
            "Renewal pass: %d certificate(s), %d need renewal%s",
            len(certs),
            len(needed),
            " (forced)" if force_all else "",
        )

        for cert in needed:
            entry = {"name": cert.name, "fingerprint": cert.fingerprint}
            try:
                outcome = self._store.renew(cert.fingerprint, scheduled=not force_all)
            except CertError as exc:
                log.warning("Renewal of %s failed: %s", cert.name, exc.detail)
                failed.append({**entry, "error": exc.detail, "type": exc.error_class.value})
                self._remember(entry, success=False, error=exc.detail)
                continue
            except Exception as exc:
                log.exception("Unexpected error renewing %s", cert.name)
                failed.append({**entry, "error": str(exc), "type": "INTERNAL"})
                self._remember(entry, success=False, error=str(exc))
                continue
            if not outcome.renewed:
                continue
            done = {
                **entry,
                "newFingerprint": outcome.new_fingerprint,
                "deploySuccess": outcome.deploy["success"] if outcome.deploy else None,
            }
            renewed.append(done)
            self._remember(done, success=True)

        result = {
            "success": not failed,
            "checkTime": started.isoformat(),
            "total": len(certs),
            "checked": len(certs),
            "renewalNeeded": len(needed),
            "renewedCount": len(renewed),
            "renewalErrors": len(failed),
            "renewed": renewed,
            "failed": failed,
        }
        self._last_result = result
        log.info("Renewal pass finished: %d renewed, %d failed", len(renewed), len(failed))
        return result

    def _remember(self, entry: dict[str, Any], *, success: bool, error: str | None = None) -> None:
        record = {**entry, "success": success, "time": datetime.now(UTC).isoformat()}
        if error is not None:
            record["error"] = error
        self.recent_renewals.append(record)

    # -- status ----------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        next_check = self._next_check
        if next_check is None and self.active:
            next_check = self.next_fire()
        return {
            "active": self._settings.enabled,
            "cronActive": self.active,
            "watcherActive": bool(self._watcher_active and self._watcher_active()),
            "lastCheckTime": _iso(self._last_check),
            "nextScheduledCheck": _iso(next_check),
            "renewalSchedule": self._settings.schedule,
            "recentRenewals": list(self.recent_renewals),
            "runningTasks": self._store.running_tasks(),
            "running": self.running,
            "lastResult": self._last_result,
        }
