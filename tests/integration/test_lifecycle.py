"""End-to-end flows across the store, scheduler, watcher and deploy pipeline."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from certwarden.config.settings import WatcherSettings, build_settings
from certwarden.deploy.executors.local import CommandExecutor, CopyExecutor
from certwarden.deploy.pipeline import DeployPipeline
from certwarden.services.scheduler import RenewalScheduler
from certwarden.services.watcher import DirectoryWatcher
from tests.conftest import fingerprint_of, write_certificate


@pytest.fixture()
def settings():
    return build_settings({})


class TestScheduledRenewal:
    def test_expiring_certificate_renewed_and_deployed(self, make_store, certs_dir, tmp_path, settings):
        cert, _ = write_certificate(certs_dir / "web.crt", "web", days=10, key_path=certs_dir / "web.key")
        old_fp = fingerprint_of(cert)
        pipeline = DeployPipeline(settings.deploy, [CopyExecutor(), CommandExecutor()])
        store = make_store(pipeline=pipeline)
        store.load()
        out = tmp_path / "out"
        store.update_config(
            old_fp,
            {
                "autoRenew": True,
                "renewDaysBeforeExpiry": 30,
                "deployActions": [
                    {"type": "copy", "source": "crt", "destination": str(out / "current")},
                    {"type": "copy", "source": "key", "destination": str(out / "current")},
                    {"type": "command", "command": f"cp {out / 'current'} {out / 'snapshot'}"},
                ],
            },
        )
        scheduler = RenewalScheduler(store, settings.renewal)

        result = scheduler.check_for_renewals()

        assert result["success"] is True
        assert result["renewalNeeded"] == 1
        assert result["renewedCount"] == 1
        entry = result["renewed"][0]
        assert entry["fingerprint"] == old_fp
        assert entry["deploySuccess"] is True

        renewed = store.get(entry["newFingerprint"])
        assert [v.fingerprint for v in renewed.history()] == [old_fp]
        assert renewed.days_until_expiry() > 300
        # The key copy ran after the certificate copy, then the command saw it.
        key_bytes = (certs_dir / "web.key").read_bytes()
        assert (out / "current").read_bytes() == key_bytes
        assert (out / "snapshot").read_bytes() == key_bytes

    def test_certificate_outside_window_left_alone(self, make_store, certs_dir, settings):
        cert, _ = write_certificate(certs_dir / "web.crt", "web", days=90, key_path=certs_dir / "web.key")
        store = make_store()
        store.load()
        store.update_config(fingerprint_of(cert), {"autoRenew": True})

        result = RenewalScheduler(store, settings.renewal).check_for_renewals()

        assert result["renewalNeeded"] == 0
        assert store.find(fingerprint_of(cert)) is not None


class TestWatcherDiscovery:
    def test_new_file_is_discovered(self, store, certs_dir):
        store.load()
        watcher = DirectoryWatcher(
            store,
            WatcherSettings(
                enabled=True,
                stability_ms=200,
                companion_stability_ms=100,
                extra_ignored=(),
            ),
        )
        watcher.start()
        try:
            target = certs_dir / "fresh.crt"
            cert, _ = write_certificate(target, "fresh")
            fp = fingerprint_of(cert)

            deadline = time.monotonic() + 0.2 + 2 + 3
            found = None
            while found is None and time.monotonic() < deadline:
                found = store.find(fp)
                time.sleep(0.05)
        finally:
            watcher.stop()

        assert found is not None
        assert Path(found.primary_path).resolve() == target.resolve()
        assert found.fingerprint == fingerprint_of(store.crypto.load_certificate(target))
