"""Debounced watcher over the certificates directory.

Filesystem events from :mod:`watchdog` are coalesced per path: each
new event restarts that path's stability timer (about 2 s for primary
files, 1 s for companions) and only the settled event is handled.
Handling happens on the timer thread, never on the observer's dispatch
thread.

Paths on the store's ignore list (files written by renewal, archive
copies, convert output) are dropped on arrival and again when the
timer fires.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from certwarden.core.errors import BusyError, CertError
from certwarden.logging.setup import operation_context
from certwarden.store.scanner import is_companion, is_excluded, is_primary

if TYPE_CHECKING:
    from certwarden.config.settings import WatcherSettings
    from certwarden.store.store import CertificateStore

log = logging.getLogger(__name__)

ADD = "add"
CHANGE = "change"
UNLINK = "unlink"


class _Forwarder(FileSystemEventHandler):
    """Translate watchdog events into ``(path, kind)`` calls."""

    def __init__(self, watcher: DirectoryWatcher) -> None:
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.queue_event(event.src_path, ADD)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.queue_event(event.src_path, CHANGE)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.queue_event(event.src_path, UNLINK)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.queue_event(event.src_path, UNLINK)
            self._watcher.queue_event(event.dest_path, ADD)


class DirectoryWatcher:
    """Keeps the store in step with files dropped into the directory.

    Parameters
    ----------
    store:
        The certificate store; its ``certs_dir`` is watched recursively
        and its ``ignore_list`` is consulted on every event.
    settings:
        Stability windows and extra exclusion patterns.

    """

    def __init__(self, store: CertificateStore, settings: WatcherSettings) -> None:
        self._store = store
        self._settings = settings
        self._root = Path(store.certs_dir)
        self._lock = threading.Lock()
        self._pending: dict[str, tuple[str, threading.Timer]] = {}
        self._observer: Observer | None = None

    @property
    def active(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> None:
        if not self._settings.enabled:
            log.info("Directory watcher disabled by configuration")
            return
        if self.active:
            return
        self._root.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(_Forwarder(self), str(self._root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        log.info("Watching %s for certificate changes", self._root)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop observing and drop events that have not settled yet."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=timeout)
            self._observer = None
        with self._lock:
            for _, timer in self._pending.values():
                timer.cancel()
            self._pending.clear()
        log.info("Directory watcher stopped")

    # -- debounce ------------------------------------------------------------

    def _relevant(self, path: str) -> bool:
        if not (is_primary(path) or is_companion(path)):
            return False
        if is_excluded(path, self._root, self._settings.extra_ignored):
            return False
        return True

    def stability_for(self, path: str) -> float:
        if is_primary(path):
            return self._settings.stability_ms / 1000.0
        return self._settings.companion_stability_ms / 1000.0

    def queue_event(self, path: str, kind: str) -> None:
        """Record an event; it is handled once *path* has been quiet long enough."""
        if not self._relevant(path):
            return
        if self._store.ignore_list.is_ignored(path):
            log.debug("Ignoring %s event for %s", kind, path)
            return
        with self._lock:
            pending = self._pending.pop(path, None)
            if pending is not None:
                previous_kind, timer = pending
                timer.cancel()
                # A file created then written is still a new file
                if previous_kind == ADD and kind == CHANGE:
                    kind = ADD
            timer = threading.Timer(self.stability_for(path), self._settled, args=(path,))
            timer.daemon = True
            self._pending[path] = (kind, timer)
            timer.start()

    def _settled(self, path: str) -> None:
        with self._lock:
            pending = self._pending.pop(path, None)
        if pending is None:
            return
        kind, _ = pending
        try:
            self.handle_event(path, kind)
        except Exception:
            log.exception("Unhandled error processing %s event for %s", kind, path)

    # -- handling --------------------------------------------------------------

    def handle_event(self, path: str, kind: str) -> None:
        """Apply one settled event to the store."""
        if self._store.ignore_list.is_ignored(path):
            log.debug("Dropping %s event for ignored path %s", kind, path)
            return
        with operation_context(task="watcher"):
            try:
                if kind == UNLINK:
                    log.info("File removed: %s (recorded on next load)", path)
                elif is_companion(path) and not is_primary(path):
                    self._companion_added(path)
                elif kind == ADD:
                    self._primary_added(path)
                elif kind == CHANGE:
                    self._primary_changed(path)
            except BusyError as exc:
                log.info("Skipped %s event for %s: %s", kind, path, exc.detail)
            except CertError as exc:
                log.warning("Could not process %s event for %s: %s", kind, path, exc.detail)

    def _primary_added(self, path: str) -> None:
        self._store.load(hint_path=path)
        cert = self._store.find_by_path(path)
        if cert is None:
            log.warning("New file %s did not yield a certificate", path)
            return
        log.info("Discovered certificate %s (%s) at %s", cert.name, cert.fingerprint, path)
        self._store.persist()

    def _companion_added(self, path: str) -> None:
        owner = self._store.attach_path(path)
        if owner is None:
            log.debug("No certificate owns companion file %s", path)

    def _primary_changed(self, path: str) -> None:
        self._store.load(force_refresh=True)
        cert = self._store.find_by_path(path)
        if cert is None:
            log.warning("Changed file %s is not a known certificate", path)
            return
        if not cert.deploy_actions:
            return
        log.info("Certificate %s changed on disk; re-running deploy actions", cert.name)
        self._store.deploy(cert.fingerprint)
