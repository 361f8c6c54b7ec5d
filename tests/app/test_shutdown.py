"""Tests for certwarden.app.shutdown."""

from __future__ import annotations

import signal
import threading
import time
from unittest.mock import MagicMock, patch

from certwarden.app.shutdown import ShutdownCoordinator


class TestTracking:
    def test_counts_in_flight(self):
        coordinator = ShutdownCoordinator()

        with coordinator.track("renewal"):
            with coordinator.track("renewal"):
                assert coordinator.in_flight_count == 2
            assert coordinator.in_flight_count == 1

        assert coordinator.in_flight_count == 0

    def test_released_on_error(self):
        coordinator = ShutdownCoordinator()

        try:
            with coordinator.track("deploy"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert coordinator.in_flight_count == 0

    def test_work_during_shutdown_still_runs(self, caplog):
        coordinator = ShutdownCoordinator(graceful_timeout=0)
        coordinator.initiate()
        ran = []

        with coordinator.track("deploy"):
            ran.append(True)

        assert ran == [True]
        assert "starting during shutdown" in caplog.text


class TestInitiate:
    def test_calls_hook_once(self):
        on_shutdown = MagicMock()
        coordinator = ShutdownCoordinator(on_shutdown=on_shutdown)

        coordinator.initiate()
        coordinator.initiate()

        assert coordinator.is_shutting_down
        on_shutdown.assert_called_once_with()

    def test_hook_failure_does_not_block(self, caplog):
        coordinator = ShutdownCoordinator(on_shutdown=MagicMock(side_effect=RuntimeError("x")))

        coordinator.initiate()

        assert coordinator.is_shutting_down
        assert "Error stopping background services" in caplog.text

    def test_waits_for_in_flight(self):
        coordinator = ShutdownCoordinator(graceful_timeout=5)
        started = threading.Event()
        finished = threading.Event()

        def work():
            with coordinator.track("renewal"):
                started.set()
                time.sleep(0.2)
                finished.set()

        worker = threading.Thread(target=work)
        worker.start()
        started.wait(1)

        coordinator.initiate()

        assert finished.is_set()
        worker.join()

    def test_gives_up_after_timeout(self, caplog):
        coordinator = ShutdownCoordinator(graceful_timeout=0.1)
        release = threading.Event()
        started = threading.Event()

        def work():
            with coordinator.track("deploy"):
                started.set()
                release.wait(5)

        worker = threading.Thread(target=work)
        worker.start()
        started.wait(1)

        begin = time.monotonic()
        coordinator.initiate()
        elapsed = time.monotonic() - begin
        release.set()
        worker.join()

        assert elapsed < 2
        assert "operations in flight" in caplog.text


class TestSignals:
    def test_registers_handlers(self):
        coordinator = ShutdownCoordinator()

        with patch("certwarden.app.shutdown.signal.signal") as mock_signal:
            coordinator.register_signals()

        registered = {c.args[0] for c in mock_signal.call_args_list}
        assert registered == {signal.SIGTERM, signal.SIGINT}

    def test_outside_main_thread_is_tolerated(self):
        coordinator = ShutdownCoordinator()

        with patch(
            "certwarden.app.shutdown.signal.signal",
            side_effect=ValueError("main thread only"),
        ):
            coordinator.register_signals()

    def test_handler_starts_shutdown(self):
        coordinator = ShutdownCoordinator(graceful_timeout=0)

        coordinator._signal_handler(signal.SIGTERM, None)

        deadline = time.monotonic() + 2
        while not coordinator.is_shutting_down and time.monotonic() < deadline:
            time.sleep(0.01)
        assert coordinator.is_shutting_down
