"""Tests for certwarden.store.archive -- versioned archive and restore."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from tests.conftest import write_certificate

from certwarden.core.errors import NotFoundError
from certwarden.models.certificate import Certificate
from certwarden.store.archive import ArchiveManager, archive_file_name, safe_dir_name

VALID_FROM = datetime(2025, 3, 4, 12, 0, tzinfo=UTC)


@pytest.fixture()
def manager(tmp_path, crypto):
    return ArchiveManager(tmp_path / "archive", crypto)


@pytest.fixture()
def cert(tmp_path):
    write_certificate(tmp_path / "web.crt", "web", key_path=tmp_path / "web.key")
    return Certificate(
        name="web",
        fingerprint="AB",
        valid_from=VALID_FROM,
        paths={"crt": str(tmp_path / "web.crt"), "key": str(tmp_path / "web.key")},
    )


class TestNames:
    def test_archive_file_name(self):
        assert archive_file_name("/c/web.crt", VALID_FROM) == "web.2025-03-04.crt"
        assert archive_file_name("/c/web.crt", VALID_FROM, 2) == "web.2025-03-04-2.crt"

    def test_safe_dir_name(self):
        assert safe_dir_name("api / internal") == "api_internal"
        assert safe_dir_name("..") == "certificate"


class TestArchive:
    def test_copies_every_file(self, manager, cert, tmp_path):
        result = manager.archive(cert)
        names = sorted(p.name for p in (tmp_path / "archive" / "web").iterdir())
        assert names == ["web.2025-03-04.crt", "web.2025-03-04.key"]
        assert {f.type for f in result.files} == {"crt", "key"}
        assert all(f.relative_path.startswith("web/") for f in result.files)
        # originals stay in place
        assert (tmp_path / "web.crt").is_file()

    def test_identical_content_not_duplicated(self, manager, cert, tmp_path):
        manager.archive(cert)
        manager.archive(cert)
        assert len(list((tmp_path / "archive" / "web").iterdir())) == 2

    def test_changed_content_gets_counter(self, manager, cert, tmp_path):
        manager.archive(cert)
        (tmp_path / "web.key").write_text("rotated")
        result = manager.archive(cert)
        key_entry = next(f for f in result.files if f.type == "key")
        assert key_entry.path.endswith("web.2025-03-04-1.key")

    def test_missing_files_skipped(self, manager, cert, tmp_path):
        (tmp_path / "web.key").unlink()
        result = manager.archive(cert)
        assert [f.type for f in result.files] == ["crt"]


class TestRestore:
    def test_prefers_bak(self, manager, cert, tmp_path, crypto):
        original = (tmp_path / "web.crt").read_bytes()
        (tmp_path / "web.crt.bak").write_bytes(original)
        (tmp_path / "web.crt").write_text("corrupted")
        source = manager.restore(cert)
        assert source == tmp_path / "web.crt.bak"
        assert (tmp_path / "web.crt").read_bytes() == original

    def test_invalid_bak_falls_back_to_archive(self, manager, cert, tmp_path):
        original = (tmp_path / "web.crt").read_bytes()
        manager.archive(cert)
        (tmp_path / "web.crt.bak").write_text("also broken")
        (tmp_path / "web.crt").write_text("corrupted")
        source = manager.restore(cert)
        assert source.name == "web.2025-03-04.crt"
        assert (tmp_path / "web.crt").read_bytes() == original

    def test_newest_valid_archive_copy(self, manager, cert, tmp_path):
        target = tmp_path / "archive" / "web"
        target.mkdir(parents=True)
        write_certificate(target / "web.2025-01-01.crt", "old")
        write_certificate(target / "web.2025-01-01-2.crt", "newer")
        (target / "web.2025-01-01-10.crt").write_text("broken")
        (tmp_path / "web.crt").write_text("corrupted")
        source = manager.restore(cert)
        assert source.name == "web.2025-01-01-2.crt"

    def test_other_stems_ignored(self, manager, cert, tmp_path):
        target = tmp_path / "archive" / "web"
        target.mkdir(parents=True)
        write_certificate(target / "other.2025-01-01.crt", "other")
        assert manager.candidates(cert, cert.paths["crt"]) == []

    def test_nothing_to_restore(self, manager, cert, tmp_path):
        (tmp_path / "web.crt").write_text("corrupted")
        with pytest.raises(NotFoundError):
            manager.restore(cert)

    def test_unknown_kind(self, manager, cert):
        with pytest.raises(NotFoundError):
            manager.restore(cert, "chain")

    def test_key_restore_checks_non_empty(self, manager, cert, tmp_path):
        key = (tmp_path / "web.key").read_bytes()
        manager.archive(cert)
        (tmp_path / "web.key").write_text("")
        manager.restore(cert, "key")
        assert (tmp_path / "web.key").read_bytes() == key

    def test_restore_backup(self, manager, tmp_path):
        (tmp_path / "x.crt").write_text("new")
        assert manager.restore_backup(tmp_path / "x.crt") is False
        (tmp_path / "x.crt.bak").write_text("old")
        assert manager.restore_backup(tmp_path / "x.crt") is True
        assert (tmp_path / "x.crt").read_text() == "old"


class TestDelete:
    def test_removes_subtree(self, manager, cert, tmp_path):
        manager.archive(cert)
        manager.delete("web")
        assert not (tmp_path / "archive" / "web").exists()

    def test_missing_is_noop(self, manager):
        manager.delete("never-archived")
