"""Tests for certwarden.models.certificate."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from certwarden.core.errors import ValidationError
from certwarden.core.types import CertType
from certwarden.models.actions import parse_action
from certwarden.models.certificate import (
    Certificate,
    CertificateConfig,
    PreviousVersion,
    validate_domain,
    validate_ip,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _cert(**kwargs) -> Certificate:
    kwargs.setdefault("name", "web")
    kwargs.setdefault("fingerprint", "AA" * 32)
    return Certificate(**kwargs)


class TestValidators:
    def test_domain_normalized(self):
        assert validate_domain(" WWW.Example.com. ") == "www.example.com"

    def test_wildcard_domain(self):
        assert validate_domain("*.example.com") == "*.example.com"

    @pytest.mark.parametrize("bad", ["", "exa mple.com", "-bad.example", "a..b"])
    def test_invalid_domain(self, bad):
        with pytest.raises(ValidationError):
            validate_domain(bad)

    def test_ip_normalized(self):
        assert validate_ip("2001:0db8::0001") == "2001:db8::1"

    def test_invalid_ip(self):
        with pytest.raises(ValidationError):
            validate_ip("300.1.1.1")


class TestExpiry:
    def test_days_truncate(self):
        cert = _cert(valid_to=NOW + timedelta(days=10, hours=23))
        assert cert.days_until_expiry(NOW) == 10

    def test_negative_when_expired(self):
        cert = _cert(valid_to=NOW - timedelta(days=2, hours=1))
        assert cert.days_until_expiry(NOW) == -2
        assert cert.is_expired(NOW) is True

    def test_is_due_boundaries(self):
        cfg = CertificateConfig(auto_renew=True, renew_days_before_expiry=30)
        assert _cert(valid_to=NOW + timedelta(days=30, hours=1), config=cfg).is_due(NOW)
        assert not _cert(valid_to=NOW + timedelta(days=31, hours=1), config=cfg).is_due(NOW)

    def test_expired_is_not_due(self):
        cfg = CertificateConfig(auto_renew=True, renew_days_before_expiry=30)
        assert not _cert(valid_to=NOW - timedelta(days=3), config=cfg).is_due(NOW)

    def test_auto_renew_off_is_never_due(self):
        assert not _cert(valid_to=NOW + timedelta(days=1)).is_due(NOW)

    def test_unknown_expiry_is_never_due(self):
        cert = _cert(config=CertificateConfig(auto_renew=True, renew_days_before_expiry=30))
        assert cert.days_until_expiry(NOW) == -1
        assert not cert.is_due(NOW)


class TestPaths:
    def test_primary_preference(self):
        cert = _cert(paths={"pem": "/c/a.pem", "crt": "/c/a.crt"})
        assert cert.primary_path == "/c/a.crt"

    def test_add_path_requires_file(self, tmp_path):
        cert = _cert()
        with pytest.raises(ValidationError):
            cert.add_path("key", str(tmp_path / "missing.key"))
        (tmp_path / "a.key").write_text("k")
        cert.add_path("key", str(tmp_path / "a.key"))
        assert cert.key_path == str(tmp_path / "a.key")

    def test_add_path_unknown_kind(self, tmp_path):
        (tmp_path / "a.zip").write_text("z")
        with pytest.raises(ValidationError):
            _cert().add_path("zip", str(tmp_path / "a.zip"))

    def test_verify_paths_drops_missing(self, tmp_path):
        (tmp_path / "a.crt").write_text("c")
        cert = _cert(paths={"crt": str(tmp_path / "a.crt"), "key": str(tmp_path / "gone.key")})
        assert cert.verify_paths() == ["key"]
        assert list(cert.paths) == ["crt"]

    def test_resolve_source(self):
        cert = _cert(paths={"crt": "/c/a.crt", "pfx": "/c/a.pfx"})
        assert cert.resolve_source("cert") == "/c/a.crt"
        assert cert.resolve_source("p12") == "/c/a.pfx"
        assert cert.resolve_source("key") is None
        assert cert.resolve_source("/abs/file.pem") == "/abs/file.pem"


class TestSans:
    def test_promote_idle(self):
        cert = _cert(domains=["a.example"], idle_domains=["b.example", "a.example"], idle_ips=["10.0.0.1"])
        cert.promote_idle()
        assert cert.domains == ["a.example", "b.example"]
        assert cert.ips == ["10.0.0.1"]
        assert cert.idle_domains == []
        assert cert.idle_ips == []

    def test_san_view(self):
        cert = _cert(domains=["a"], ips=["1.1.1.1"], idle_domains=["b"])
        assert cert.san_view() == {
            "domains": ["a"], "ips": ["1.1.1.1"], "idleDomains": ["b"], "idleIps": [],
        }


class TestHistory:
    def _version(self, fp: str, version: int) -> PreviousVersion:
        return PreviousVersion(
            fingerprint=fp, subject="CN=web", issuer="CN=web",
            valid_from=NOW, valid_to=NOW, version=version, archived_at=NOW,
        )

    def test_next_version(self):
        cert = _cert()
        assert cert.next_version() == 1
        cert.previous_versions = {"X": self._version("X", 1), "Y": self._version("Y", 2)}
        assert cert.next_version() == 3
        assert [v.fingerprint for v in cert.history()] == ["X", "Y"]

    def test_version_round_trip(self):
        v = self._version("X", 4)
        assert PreviousVersion.from_dict("X", v.to_dict()) == v


class TestRecords:
    def test_record_round_trip(self):
        cert = _cert(
            description="edge proxy",
            group="prod",
            tags=["a", "b"],
            idle_domains=["new.example"],
            config=CertificateConfig(auto_renew=True, renew_days_before_expiry=14, validity_days=90),
            deploy_actions=[parse_action({"type": "command", "command": "true"})],
        )
        other = _cert(name="renamed-by-scan")
        other.apply_record(cert.to_record())
        assert other.name == "web"
        assert other.description == "edge proxy"
        assert other.group == "prod"
        assert other.tags == ["a", "b"]
        assert other.idle_domains == ["new.example"]
        assert other.config == cert.config
        assert [a.to_dict() for a in other.deploy_actions] == [{"type": "command", "command": "true"}]

    def test_apply_record_drops_idle_already_active(self):
        cert = _cert(domains=["a.example"])
        cert.apply_record({"idleDomains": ["a.example", "b.example"]})
        assert cert.idle_domains == ["b.example"]

    def test_apply_record_default_days(self):
        cert = _cert()
        cert.apply_record({}, default_days=21)
        assert cert.config.renew_days_before_expiry == 21

    def test_to_dict_masks_action_secrets(self):
        cert = _cert(
            deploy_actions=[
                parse_action({"type": "ftp-copy", "host": "h", "source": "crt",
                              "destination": "/x", "password": "pw"})
            ]
        )
        out = cert.to_dict(NOW)
        assert out["deployActions"][0]["password"] == "[REDACTED]"
        assert out["certType"] == CertType.STANDARD.value

    def test_placeholders(self):
        cert = _cert(domains=["a.example", "b.example"], paths={"crt": "/c/web.crt"},
                     valid_to=NOW + timedelta(days=5))
        tokens = cert.placeholders(NOW)
        assert tokens["name"] == "web"
        assert tokens["cert_path"] == "/c/web.crt"
        assert tokens["pem_path"] == "/c/web.crt"
        assert tokens["domain"] == "a.example"
        assert tokens["domains"] == "a.example,b.example"
        assert tokens["days_until_expiry"] == "5"
        assert tokens["key_path"] == ""
