"""Logging configuration for certwarden.

Renewal, deploy and watcher work runs on background threads, so log
lines are tagged with the certificate and task being processed via a
thread-local *operation context* rather than a request object.  Two
output formats are available: one JSON object per line for collectors,
and a compact text line for terminals.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from certwarden.config.settings import LoggingSettings

CONTEXT_FIELDS = ("certificate", "task")

# Everything a bare LogRecord carries; other attributes came from ``extra``.
_BUILTIN_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message",
    "asctime",
    *CONTEXT_FIELDS,
}

# Third-party loggers capped at WARNING.
NOISY_LOGGERS = (
    "werkzeug",
    "gunicorn",
    "gunicorn.access",
    "gunicorn.error",
    "watchdog",
    "paramiko",
    "docker",
    "urllib3",
)

_local = threading.local()


def current_operation() -> dict[str, str | None]:
    """The certificate and task this thread is currently working on."""
    return {name: getattr(_local, name, None) for name in CONTEXT_FIELDS}


@contextmanager
def operation_context(certificate: str | None = None, task: str | None = None) -> Iterator[None]:
    """Tag this thread's log records with *certificate* and/or *task*.

    Omitted values are inherited from an enclosing context, and the outer
    values come back when the block exits, even on error.
    """
    saved = current_operation()
    for name, value in (("certificate", certificate), ("task", task)):
        if value is not None:
            setattr(_local, name, value)
    try:
        yield
    finally:
        for name, value in saved.items():
            setattr(_local, name, value)


class OperationContextFilter(logging.Filter):
    """Copy the thread's operation context onto each record.

    A value passed explicitly through ``extra`` is left alone; anything
    still missing becomes ``"-"`` so the text format never breaks.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        ambient = current_operation()
        for name in CONTEXT_FIELDS:
            if getattr(record, name, None) is None:
                setattr(record, name, ambient[name] or "-")
        return True


class StructuredFormatter(logging.Formatter):
    """Render each record as a single-line JSON object.

    The object always has ``timestamp``, ``level``, ``logger`` and
    ``message``; operation context and caller ``extra`` fields follow,
    then ``exception``/``stack_info`` when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        payload.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _BUILTIN_RECORD_ATTRS and not key.startswith("_") and key not in payload
        )
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """``time level [task:certificate] logger: message`` for terminals."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [%(task)s:%(certificate)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Send the ``certwarden`` logger tree to stderr in the configured format.

    Handlers from an earlier call are dropped, so calling this twice is
    safe.  Returns the ``certwarden`` logger.
    """
    package_logger = logging.getLogger("certwarden")
    package_logger.setLevel(logging.getLevelName(settings.level.upper()))
    package_logger.handlers.clear()
    package_logger.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter() if settings.format == "json" else TextFormatter())
    handler.addFilter(OperationContextFilter())
    package_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return package_logger
