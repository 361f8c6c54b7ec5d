"""Tests for certwarden.vault.passphrases."""

from __future__ import annotations

import json
import os

import pytest

from certwarden.core.errors import ConfigError
from certwarden.vault.passphrases import PassphraseVault, load_or_create_master_secret


def _vault(path, secret="master"):
    return PassphraseVault(path, secret, iterations=1000)


class TestPassphraseVault:
    def test_store_and_get(self, tmp_path):
        vault = _vault(tmp_path / "v.enc")
        vault.store("AA", "one")
        assert vault.get("AA") == "one"
        assert vault.has("AA")
        assert vault.get("BB") is None
        assert len(vault) == 1

    def test_encrypted_on_disk(self, tmp_path):
        path = tmp_path / "v.enc"
        _vault(path).store("AA", "very-secret-passphrase")
        raw = path.read_text()
        assert "very-secret-passphrase" not in raw
        doc = json.loads(raw)
        assert doc["version"] == 1
        assert doc["iterations"] == 1000
        if os.name != "nt":
            assert path.stat().st_mode & 0o777 == 0o600

    def test_reopen_with_same_secret(self, tmp_path):
        path = tmp_path / "v.enc"
        _vault(path).store("AA", "one")
        assert _vault(path).get("AA") == "one"

    def test_wrong_secret(self, tmp_path):
        path = tmp_path / "v.enc"
        _vault(path).store("AA", "one")
        with pytest.raises(ConfigError, match="wrong master secret"):
            _vault(path, "other")

    def test_empty_secret(self, tmp_path):
        with pytest.raises(ConfigError):
            PassphraseVault(tmp_path / "v.enc", "")

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "v.enc"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            _vault(path)

    def test_delete(self, tmp_path):
        vault = _vault(tmp_path / "v.enc")
        vault.store("AA", "one")
        assert vault.delete("AA") is True
        assert vault.delete("AA") is False
        assert _vault(tmp_path / "v.enc").get("AA") is None

    def test_rekey(self, tmp_path):
        vault = _vault(tmp_path / "v.enc")
        vault.store("OLD", "one")
        assert vault.rekey("OLD", "NEW") is True
        assert vault.get("NEW") == "one"
        assert vault.get("OLD") is None
        assert vault.rekey("OLD", "NEW") is False
        assert vault.rekey("NEW", "NEW") is False

    def test_no_file_until_first_write(self, tmp_path):
        _vault(tmp_path / "v.enc")
        assert not (tmp_path / "v.enc").exists()


class TestMasterSecret:
    def test_created_once(self, tmp_path):
        key_file = tmp_path / "keys" / "master.key"
        first = load_or_create_master_secret(key_file)
        assert first
        assert load_or_create_master_secret(key_file) == first
        if os.name != "nt":
            assert key_file.stat().st_mode & 0o777 == 0o600

    def test_existing_value_used(self, tmp_path):
        key_file = tmp_path / "master.key"
        key_file.write_text("  provided\n")
        assert load_or_create_master_secret(key_file) == "provided"
