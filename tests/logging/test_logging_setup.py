"""Tests for certwarden.logging.setup -- formatters and operation context."""

from __future__ import annotations

import json
import logging
import sys
import threading

from certwarden.config.settings import LoggingSettings
from certwarden.logging.setup import (
    OperationContextFilter,
    StructuredFormatter,
    TextFormatter,
    configure_logging,
    current_operation,
    operation_context,
)


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("certwarden.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestOperationContext:
    def test_sets_and_restores(self):
        assert current_operation() == {"certificate": None, "task": None}
        with operation_context(certificate="web", task="renewal"):
            assert current_operation() == {"certificate": "web", "task": "renewal"}
            with operation_context(task="deploy"):
                assert current_operation() == {"certificate": "web", "task": "deploy"}
            assert current_operation()["task"] == "renewal"
        assert current_operation() == {"certificate": None, "task": None}

    def test_thread_local(self):
        seen = {}

        def _worker():
            seen.update(current_operation())

        with operation_context(certificate="web"):
            t = threading.Thread(target=_worker)
            t.start()
            t.join()
        assert seen["certificate"] is None

    def test_restored_on_exception(self):
        try:
            with operation_context(certificate="web"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert current_operation()["certificate"] is None


class TestFilter:
    def test_injects_context(self):
        record = _record()
        with operation_context(certificate="web", task="renewal"):
            OperationContextFilter().filter(record)
        assert record.certificate == "web"
        assert record.task == "renewal"

    def test_defaults_to_dash(self):
        record = _record()
        OperationContextFilter().filter(record)
        assert record.certificate == "-"
        assert record.task == "-"

    def test_explicit_extra_wins(self):
        record = _record(certificate="explicit")
        with operation_context(certificate="ctx"):
            OperationContextFilter().filter(record)
        assert record.certificate == "explicit"


class TestFormatters:
    def test_structured_is_single_json_line(self):
        record = _record("renewed web", fingerprint="ABC")
        OperationContextFilter().filter(record)
        out = StructuredFormatter().format(record)
        assert "\n" not in out
        data = json.loads(out)
        assert data["message"] == "renewed web"
        assert data["level"] == "INFO"
        assert data["fingerprint"] == "ABC"
        assert data["certificate"] == "-"

    def test_structured_includes_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "certwarden.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        data = json.loads(StructuredFormatter().format(record))
        assert "ValueError: bad" in data["exception"]

    def test_text_formatter_renders_context(self):
        record = _record()
        with operation_context(certificate="web", task="deploy"):
            OperationContextFilter().filter(record)
        out = TextFormatter().format(record)
        assert "[deploy:web]" in out
        assert "hello" in out


class TestConfigureLogging:
    def test_json_handler(self):
        root = configure_logging(LoggingSettings(level="DEBUG", format="json"))
        assert root.name == "certwarden"
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert root.propagate is False

    def test_text_handler_replaces_previous(self):
        configure_logging(LoggingSettings(level="INFO", format="json"))
        root = configure_logging(LoggingSettings(level="WARNING", format="text"))
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)
        assert root.level == logging.WARNING
