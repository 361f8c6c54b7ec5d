"""Root conftest for the certwarden test suite."""

from __future__ import annotations

import datetime
import ipaddress
import sys
from pathlib import Path

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from certwarden.crypto.provider import CryptoProvider  # noqa: E402
from certwarden.services.ignore_list import IgnoreList  # noqa: E402
from certwarden.store.archive import ArchiveManager  # noqa: E402
from certwarden.store.sidecar import Sidecar  # noqa: E402
from certwarden.store.store import CertificateStore  # noqa: E402
from certwarden.vault.passphrases import PassphraseVault  # noqa: E402

# ---------------------------------------------------------------------------
# Certificate helpers (real keys, real signatures)
# ---------------------------------------------------------------------------


def _key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def write_certificate(
    path: Path,
    common_name: str,
    *,
    days: float = 365,
    domains: tuple[str, ...] = (),
    ips: tuple[str, ...] = (),
    is_ca: bool = False,
    issuer: tuple[x509.Certificate, rsa.RSAPrivateKey] | None = None,
    key_path: Path | None = None,
    passphrase: str | None = None,
    der: bool = False,
    not_before_days: float = 1,
) -> tuple[x509.Certificate, rsa.RSAPrivateKey]:
    """Write a certificate (and optionally its key) and return both."""
    key = _key()
    now = datetime.datetime.now(datetime.UTC)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    if issuer is None:
        issuer_name, signing_key = subject, key
        aki = x509.AuthorityKeyIdentifier.from_issuer_public_key(key.public_key())
    else:
        issuer_name, signing_key = issuer[0].subject, issuer[1]
        aki = x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer[1].public_key())
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=not_before_days))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(aki, critical=False)
    )
    sans: list[x509.GeneralName] = [x509.DNSName(d) for d in domains]
    sans += [x509.IPAddress(ipaddress.ip_address(i)) for i in ips]
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
    cert = builder.sign(signing_key, hashes.SHA256())

    encoding = serialization.Encoding.DER if der else serialization.Encoding.PEM
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(cert.public_bytes(encoding))
    if key_path is not None:
        write_key(key_path, key, passphrase)
    return cert, key


def write_key(path: Path, key: rsa.RSAPrivateKey, passphrase: str | None = None) -> None:
    encryption = (
        serialization.BestAvailableEncryption(passphrase.encode())
        if passphrase
        else serialization.NoEncryption()
    )
    path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            encryption,
        )
    )


def fingerprint_of(cert: x509.Certificate) -> str:
    return cert.fingerprint(hashes.SHA256()).hex().upper()


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def crypto() -> CryptoProvider:
    return CryptoProvider()


@pytest.fixture()
def certs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "certs"
    path.mkdir()
    return path


@pytest.fixture()
def vault(tmp_path: Path) -> PassphraseVault:
    return PassphraseVault(tmp_path / "config" / ".passphrases.enc", "test-secret", iterations=1000)


@pytest.fixture()
def make_store(tmp_path: Path, certs_dir: Path, crypto: CryptoProvider, vault: PassphraseVault):
    """Factory building a :class:`CertificateStore` over ``tmp_path``.

    Usage::

        def test_x(make_store):
            store = make_store(pipeline=my_pipeline)
    """

    def _factory(**kwargs) -> CertificateStore:
        kwargs.setdefault("ignore_list", IgnoreList(150))
        return CertificateStore(
            certs_dir,
            Sidecar(tmp_path / "config" / "certificates.json"),
            crypto,
            vault,
            ArchiveManager(certs_dir / "archive", crypto),
            **kwargs,
        )

    return _factory


@pytest.fixture()
def store(make_store) -> CertificateStore:
    return make_store()


# ---------------------------------------------------------------------------
# Config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data(tmp_path: Path) -> dict:
    """Return a config mapping rooted in ``tmp_path``."""
    return {
        "paths": {
            "certs_dir": str(tmp_path / "certs"),
            "config_dir": str(tmp_path / "config"),
        },
        "renewal": {"enabled": False},
        "watcher": {"enabled": False},
        "vault": {"master_secret": "test-secret", "iterations": 100000},
        "logging": {"level": "DEBUG", "format": "text"},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Logger cleanup -- configure_logging() detaches the package logger
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_certwarden_logger():
    """Restore propagation so ``caplog`` sees records in every test."""
    import logging

    logger = logging.getLogger("certwarden")
    yield
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Flask application
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(minimal_config_data: dict):
    """A fully wired application over ``tmp_path``; services not started."""
    from certwarden.app import create_app
    from certwarden.config.loader import CertwardenConfig

    application = create_app(CertwardenConfig(data=minimal_config_data))
    application.config["TESTING"] = True
    yield application
    application.extensions["container"].stop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def container(app):
    return app.extensions["container"]
