"""Hook registry: owns the configured hooks and fans lifecycle events out to them.

The store calls :meth:`HookRegistry.dispatch` after a certificate is
created, renewed or deleted and after every deploy run.  Delivery happens
on a small thread pool so the caller never waits on a hook; each hook
receives its own deep copy of the event context, and a failing hook is
retried, logged and counted but never surfaces to the caller.

Usage::

    registry = HookRegistry(settings.hooks)
    registry.register(MyHook(), events=["certificate.renewed"])
    registry.dispatch("certificate.renewed", {"name": "api", ...})
"""

from __future__ import annotations

import copy
import importlib
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from certwarden.hooks.base import Hook
from certwarden.hooks.events import EVENT_METHOD_MAP, KNOWN_EVENTS

if TYPE_CHECKING:
    from collections.abc import Iterable

    from certwarden.config.settings import HookEntrySettings, HookSettings

log = logging.getLogger(__name__)

_DOTTED_NAME = re.compile(r"^[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)+$")

_RETRY_BASE_DELAY = 0.5


def resolve_hook_class(class_path: str) -> type[Hook]:
    """Import ``package.module.ClassName`` and check it is a :class:`Hook`."""
    if not _DOTTED_NAME.match(class_path):
        raise ValueError(
            f"Invalid hook class path '{class_path}': expected 'package.module.ClassName'"
        )
    module_name, _, attr = class_path.rpartition(".")
    target = getattr(importlib.import_module(module_name), attr)
    if not isinstance(target, type) or not issubclass(target, Hook):
        raise TypeError(f"Hook '{class_path}' must be a subclass of certwarden.hooks.Hook")
    return target


@dataclass(frozen=True)
class _Subscription:
    hook: Hook
    name: str
    events: frozenset
    timeout_seconds: int


@dataclass(frozen=True)
class HookOutcome:
    """Result of delivering one event to one hook."""

    hook_name: str
    event: str
    attempts: int
    duration_ms: float
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def log_extra(self) -> dict:
        return {
            "hook_name": self.hook_name,
            "event": self.event,
            "outcome": "success" if self.ok else "error",
            "duration_ms": self.duration_ms,
        }


class HookRegistry:
    """Loaded hooks plus the pool that delivers events to them.

    Parameters
    ----------
    settings:
        The ``hooks`` section of :class:`CertwardenSettings`.  Every
        enabled entry is imported and instantiated immediately; a hook
        that cannot be loaded raises, which stops startup.

    """

    def __init__(self, settings: HookSettings) -> None:
        self._settings = settings
        self._subscriptions: list[_Subscription] = []
        self._pool: ThreadPoolExecutor | None = None
        self._shutdown_event = threading.Event()
        self._counter_lock = threading.Lock()
        self._delivered = 0
        self._failed = 0
        for entry in settings.registered:
            self._load_entry(entry)

    def __len__(self) -> int:
        return len(self._subscriptions)

    @property
    def dispatch_count(self) -> int:
        """Deliveries finished so far, successful or not."""
        with self._counter_lock:
            return self._delivered

    @property
    def error_count(self) -> int:
        with self._counter_lock:
            return self._failed

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown_event.is_set()

    # -- registration ------------------------------------------------------

    def _load_entry(self, entry: HookEntrySettings) -> None:
        if not entry.enabled:
            log.debug("Skipping disabled hook %s", entry.class_path)
            return
        try:
            hook_cls = resolve_hook_class(entry.class_path)
            hook_cls.validate_config(entry.config)
            instance = hook_cls(config=entry.config)
        except Exception:
            log.critical("Cannot load hook %s", entry.class_path, exc_info=True)
            raise
        self.register(
            instance,
            events=entry.events,
            timeout_seconds=entry.timeout_seconds,
            name=entry.class_path,
        )

    def register(
        self,
        hook: Hook,
        *,
        events: Iterable[str] | None = None,
        timeout_seconds: int | None = None,
        name: str | None = None,
    ) -> None:
        """Subscribe an already constructed *hook* to *events* (all when empty)."""
        if not isinstance(hook, Hook):
            raise TypeError("hook must be an instance of certwarden.hooks.Hook")
        label = name or f"{type(hook).__module__}.{type(hook).__qualname__}"

        wanted = frozenset(events or ()) or KNOWN_EVENTS
        unknown = wanted - KNOWN_EVENTS
        if unknown:
            raise ValueError(
                f"Hook '{label}' subscribes to unknown events {sorted(unknown)}; "
                f"choose from {sorted(KNOWN_EVENTS)}"
            )

        self._subscriptions.append(
            _Subscription(
                hook=hook,
                name=label,
                events=wanted,
                timeout_seconds=(
                    timeout_seconds if timeout_seconds is not None else self._settings.timeout_seconds
                ),
            )
        )
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._settings.max_workers,
                thread_name_prefix="certwarden-hook",
            )
        log.info(
            "Registered hook %s for %s",
            label,
            "all events" if wanted == KNOWN_EVENTS else ", ".join(sorted(wanted)),
        )

    # -- delivery ----------------------------------------------------------

    def dispatch(self, event: str, context: dict) -> None:
        """Queue *event* for every subscribed hook and return immediately."""
        if self._shutdown_event.is_set():
            return
        if event not in EVENT_METHOD_MAP:
            raise ValueError(f"Unknown hook event '{event}'. Known events: {sorted(KNOWN_EVENTS)}")

        targets = [s for s in self._subscriptions if event in s.events]
        if not targets or self._pool is None:
            return

        snapshot = copy.deepcopy(context)
        for sub in targets:
            try:
                self._pool.submit(self._deliver, sub, event, copy.deepcopy(snapshot))
            except RuntimeError:
                # pool closed between the shutdown check and submit
                log.warning("Dropped %s for hook %s: executor is shut down", event, sub.name)

    def _deliver(self, sub: _Subscription, event: str, context: dict) -> HookOutcome:
        handler = getattr(sub.hook, EVENT_METHOD_MAP[event])
        retries = self._settings.max_retries
        started = time.monotonic()
        error: str | None = None
        attempt = 0
        while True:
            attempt += 1
            try:
                handler(context)
                error = None
                break
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                if attempt > retries:
                    break
                time.sleep(_RETRY_BASE_DELAY * 2 ** (attempt - 1))

        outcome = HookOutcome(
            hook_name=sub.name,
            event=event,
            attempts=attempt,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
            error=error,
        )
        self._record(outcome, sub.timeout_seconds)
        return outcome

    def _record(self, outcome: HookOutcome, timeout_seconds: int) -> None:
        with self._counter_lock:
            self._delivered += 1
            if not outcome.ok:
                self._failed += 1

        extra = outcome.log_extra()
        if not outcome.ok:
            log.error(
                "Hook %s failed on %s after %d attempt(s): %s",
                outcome.hook_name,
                outcome.event,
                outcome.attempts,
                outcome.error,
                extra=extra,
            )
        elif outcome.duration_ms > timeout_seconds * 1000:
            log.warning(
                "Hook %s took %.1fms on %s, over its %ds budget",
                outcome.hook_name,
                outcome.duration_ms,
                outcome.event,
                timeout_seconds,
                extra=extra,
            )
        else:
            log.debug(
                "Hook %s handled %s in %.1fms",
                outcome.hook_name,
                outcome.event,
                outcome.duration_ms,
                extra=extra,
            )

    # -- lifecycle ---------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events and drain the pool; later calls do nothing."""
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()
        if self._pool is None:
            return
        self._pool.shutdown(wait=wait)
        log.info("Hook pool stopped: %d delivered, %d failed", self.dispatch_count, self.error_count)
