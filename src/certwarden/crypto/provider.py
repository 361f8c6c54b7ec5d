"""Crypto Provider: the narrow interface the core uses for X.509 work.

Everything that touches key material, CSRs, signatures, or encodings
goes through :class:`CryptoProvider`.  The implementation is built on
``cryptography``; nothing else in the package constructs PEM.

Usage::

    crypto = CryptoProvider()
    info = crypto.parse_certificate("/certs/api.crt")
    info.fingerprint   # 'A1B2...'
"""

from __future__ import annotations

import datetime
import ipaddress
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import pkcs7, pkcs12
from cryptography.x509.oid import ExtensionOID, NameOID, SignatureAlgorithmOID

from certwarden.core.errors import (
    CryptoError,
    PassphraseRequiredError,
    StoreIOError,
    ValidationError,
)
from certwarden.core.types import CertificateFormat, KeyType
from certwarden.crypto.extensions import ExtensionConfig, build_eku, build_key_usage

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
        PrivateKeyTypes,
    )

log = logging.getLogger(__name__)

_SIG_ALG_NAMES = {
    SignatureAlgorithmOID.RSA_WITH_SHA1: "sha1WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA224: "sha224WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA256: "sha256WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA384: "sha384WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA512: "sha512WithRSAEncryption",
    SignatureAlgorithmOID.RSASSA_PSS: "rsassaPss",
    SignatureAlgorithmOID.ECDSA_WITH_SHA256: "ecdsa-with-SHA256",
    SignatureAlgorithmOID.ECDSA_WITH_SHA384: "ecdsa-with-SHA384",
    SignatureAlgorithmOID.ECDSA_WITH_SHA512: "ecdsa-with-SHA512",
    SignatureAlgorithmOID.DSA_WITH_SHA256: "dsa_with_SHA256",
    SignatureAlgorithmOID.ED25519: "ED25519",
    SignatureAlgorithmOID.ED448: "ED448",
}

_CURVES = {
    "secp256r1": ec.SECP256R1,
    "prime256v1": ec.SECP256R1,
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}

_DN_SHORT_NAMES = {
    NameOID.COUNTRY_NAME: "C",
    NameOID.STATE_OR_PROVINCE_NAME: "ST",
    NameOID.LOCALITY_NAME: "L",
    NameOID.ORGANIZATION_NAME: "O",
    NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    NameOID.COMMON_NAME: "CN",
    NameOID.EMAIL_ADDRESS: "emailAddress",
}

# Backdate notBefore slightly so freshly issued certs are valid on hosts
# with minor clock skew.
_BACKDATE = datetime.timedelta(minutes=1)


# ---------------------------------------------------------------------------
# Parsed certificate info
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertInfo:
    """Everything the store derives from a certificate's bytes."""

    fingerprint: str
    subject: str
    issuer: str
    common_name: str | None
    issuer_cn: str | None
    valid_from: datetime.datetime
    valid_to: datetime.datetime
    is_ca: bool
    path_len_constraint: int | None
    domains: tuple[str, ...]
    ips: tuple[str, ...]
    serial_number: str
    subject_key_id: str | None
    authority_key_id: str | None
    key_type: str
    key_size: int | None
    signature_algorithm: str
    self_signed: bool
    is_pem: bool = True
    extra: dict = field(default_factory=dict, compare=False)


def format_name(name: x509.Name) -> str:
    """Render a DN as ``"C=US, O=Example, CN=host"`` in encoded order."""
    parts = []
    for attr in name:
        key = _DN_SHORT_NAMES.get(attr.oid, attr.oid.dotted_string)
        parts.append(f"{key}={attr.value}")
    return ", ".join(parts)


def normalize_dn(dn: str | None) -> str:
    """Canonical form of a DN string: components sorted by key.

    Tolerates both ``", "``-separated and OpenSSL ``/``-separated forms,
    so ``"/O=Ex/CN=a"`` and ``"CN=a, O=Ex"`` normalize identically.
    """
    if not dn:
        return ""
    pairs = []
    for part in dn.replace("/", ",").split(","):
        key, sep, value = part.partition("=")
        if sep and key.strip():
            pairs.append(f"{key.strip().upper()}={value.strip()}")
    pairs.sort()
    return ",".join(pairs)


def _first_cn(name: x509.Name) -> str | None:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return None
    value = attrs[0].value
    return value if isinstance(value, str) else value.decode("utf-8", "replace")


def _key_type_and_size(cert: x509.Certificate) -> tuple[str, int | None]:
    try:
        key = cert.public_key()
    except (UnsupportedAlgorithm, ValueError):
        return "unknown", None
    if isinstance(key, rsa.RSAPublicKey):
        return KeyType.RSA.value, key.key_size
    if isinstance(key, ec.EllipticCurvePublicKey):
        return KeyType.EC.value, key.curve.key_size
    if isinstance(key, dsa.DSAPublicKey):
        return KeyType.DSA.value, key.key_size
    if isinstance(key, ed25519.Ed25519PublicKey):
        return KeyType.ED25519.value, 256
    if isinstance(key, ed448.Ed448PublicKey):
        return KeyType.ED448.value, 456
    return "unknown", None


def _signing_hash(key) -> hashes.HashAlgorithm | None:
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return hashes.SHA256()


def _write_bytes(path: str | Path, data: bytes, mode: int | None = None) -> None:
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        if mode is not None and os.name != "nt":
            target.chmod(mode)
    except OSError as exc:
        raise StoreIOError(f"Cannot write {target}: {exc}") from exc


def _read_bytes(path: str | Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise StoreIOError(f"Cannot read {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class CryptoProvider:
    """Key generation, CSR, signing, parsing and format conversion.

    Stateless; one instance is shared by the whole process.
    """

    # -- parsing -----------------------------------------------------------

    def load_certificate(self, path: str | Path) -> x509.Certificate:
        """Load the first certificate from a PEM or DER file."""
        data = _read_bytes(path)
        if not data.strip():
            raise CryptoError(f"Certificate file is empty: {path}")
        try:
            if b"-----BEGIN" in data:
                return x509.load_pem_x509_certificate(data)
            return x509.load_der_x509_certificate(data)
        except ValueError as exc:
            raise CryptoError(f"Cannot parse certificate {path}: {exc}") from exc

    def parse_certificate(self, path: str | Path) -> CertInfo:
        """Extract :class:`CertInfo` from a PEM or DER certificate file."""
        data = _read_bytes(path)
        cert = self.load_certificate(path)
        return self.describe(cert, is_pem=b"-----BEGIN" in data)

    def describe(self, cert: x509.Certificate, *, is_pem: bool = True) -> CertInfo:
        subject = format_name(cert.subject)
        issuer = format_name(cert.issuer)

        is_ca = False
        path_len = None
        try:
            bc = cert.extensions.get_extension_for_oid(ExtensionOID.BASIC_CONSTRAINTS).value
            is_ca = bool(bc.ca)
            path_len = bc.path_length
        except x509.ExtensionNotFound:
            pass

        domains: list[str] = []
        ips: list[str] = []
        try:
            san = cert.extensions.get_extension_for_oid(
                ExtensionOID.SUBJECT_ALTERNATIVE_NAME
            ).value
            domains = san.get_values_for_type(x509.DNSName)
            ips = [str(ip) for ip in san.get_values_for_type(x509.IPAddress)]
        except x509.ExtensionNotFound:
            pass

        ski = None
        try:
            ski = (
                cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_KEY_IDENTIFIER)
                .value.digest.hex()
                .upper()
            )
        except x509.ExtensionNotFound:
            pass

        aki = None
        try:
            key_id = cert.extensions.get_extension_for_oid(
                ExtensionOID.AUTHORITY_KEY_IDENTIFIER
            ).value.key_identifier
            if key_id:
                aki = key_id.hex().upper()
        except x509.ExtensionNotFound:
            pass

        key_type, key_size = _key_type_and_size(cert)
        sig_oid = cert.signature_algorithm_oid

        return CertInfo(
            fingerprint=cert.fingerprint(hashes.SHA256()).hex().upper(),
            subject=subject,
            issuer=issuer,
            common_name=_first_cn(cert.subject),
            issuer_cn=_first_cn(cert.issuer),
            valid_from=cert.not_valid_before_utc,
            valid_to=cert.not_valid_after_utc,
            is_ca=is_ca,
            path_len_constraint=path_len,
            domains=tuple(domains),
            ips=tuple(ips),
            serial_number=format(cert.serial_number, "X"),
            subject_key_id=ski,
            authority_key_id=aki,
            key_type=key_type,
            key_size=key_size,
            signature_algorithm=_SIG_ALG_NAMES.get(sig_oid, sig_oid.dotted_string),
            self_signed=normalize_dn(subject) == normalize_dn(issuer),
            is_pem=is_pem,
        )

    def validate_certificate_file(self, path: str | Path) -> bool:
        """True when *path* is a non-empty, parseable PEM or DER certificate."""
        try:
            if Path(path).stat().st_size == 0:
                return False
            cert = self.load_certificate(path)
            format_name(cert.subject)
        except (OSError, CryptoError, StoreIOError, ValueError):
            return False
        return True

    # -- keys --------------------------------------------------------------

    def generate_key(
        self,
        path: str | Path,
        bits: int = 2048,
        *,
        key_type: str = KeyType.RSA.value,
        curve: str = "secp256r1",
        passphrase: str | None = None,
    ) -> PrivateKeyTypes:
        """Generate a private key and write it as PKCS#8 PEM (mode 0600)."""
        kt = key_type.upper()
        if kt == KeyType.RSA.value:
            if bits < 2048:
                raise ValidationError(f"RSA key size must be at least 2048 bits (got {bits})")
            key: PrivateKeyTypes = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        elif kt == KeyType.EC.value:
            curve_cls = _CURVES.get(curve.lower())
            if curve_cls is None:
                raise ValidationError(f"Unsupported EC curve: {curve}")
            key = ec.generate_private_key(curve_cls())
        else:
            raise ValidationError(f"Unsupported key type: {key_type}")

        encryption: serialization.KeySerializationEncryption
        if passphrase:
            encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
        else:
            encryption = serialization.NoEncryption()
        pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            encryption,
        )
        _write_bytes(path, pem, 0o600)
        log.debug("Generated %s key at %s", kt, path)
        return key

    def load_private_key(
        self,
        path: str | Path,
        passphrase: str | None = None,
    ) -> PrivateKeyTypes:
        data = _read_bytes(path)
        password = passphrase.encode("utf-8") if passphrase else None
        try:
            if b"-----BEGIN" in data:
                return serialization.load_pem_private_key(data, password=password)
            return serialization.load_der_private_key(data, password=password)
        except TypeError as exc:
            # Raised both for "encrypted but no password" and the reverse.
            if password is None:
                raise PassphraseRequiredError(f"Private key {path} is encrypted") from exc
            raise CryptoError(f"Cannot load private key {path}: {exc}") from exc
        except ValueError as exc:
            if password is not None:
                raise PassphraseRequiredError(
                    f"Passphrase for {path} is incorrect"
                ) from exc
            raise CryptoError(f"Cannot load private key {path}: {exc}") from exc

    def is_key_encrypted(self, key_path: str | Path) -> bool:
        data = _read_bytes(key_path)
        if b"ENCRYPTED" in data:
            return True
        try:
            if b"-----BEGIN" in data:
                serialization.load_pem_private_key(data, password=None)
            else:
                serialization.load_der_private_key(data, password=None)
        except TypeError:
            return True
        except (ValueError, UnsupportedAlgorithm):
            return False
        return False

    def verify_key_match(
        self,
        cert_path: str | Path,
        key_path: str | Path,
        passphrase: str | None = None,
    ) -> bool:
        """Compare the certificate's SPKI with the private key's public half."""
        cert = self.load_certificate(cert_path)
        key = self.load_private_key(key_path, passphrase)
        spki = serialization.PublicFormat.SubjectPublicKeyInfo
        return cert.public_key().public_bytes(
            serialization.Encoding.DER, spki
        ) == key.public_key().public_bytes(serialization.Encoding.DER, spki)

    # -- issuance ----------------------------------------------------------

    def create_csr(
        self,
        config_path: str | Path,
        key_path: str | Path,
        out_csr_path: str | Path,
        *,
        key_passphrase: str | None = None,
    ) -> x509.CertificateSigningRequest:
        cfg = ExtensionConfig.read(config_path)
        key = self.load_private_key(key_path, key_passphrase)
        builder = x509.CertificateSigningRequestBuilder().subject_name(cfg.subject_name())
        san = cfg.san_extension()
        if san is not None:
            builder = builder.add_extension(san, critical=False)
        builder = builder.add_extension(
            x509.BasicConstraints(ca=cfg.is_ca, path_length=cfg.path_length),
            critical=True,
        )
        try:
            csr = builder.sign(key, _signing_hash(key))  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise CryptoError(f"CSR signing failed: {exc}") from exc
        _write_bytes(out_csr_path, csr.public_bytes(serialization.Encoding.PEM))
        return csr

    def create_self_signed(
        self,
        config_path: str | Path,
        key_path: str | Path,
        out_cert_path: str | Path,
        days: int,
        *,
        key_passphrase: str | None = None,
    ) -> x509.Certificate:
        cfg = ExtensionConfig.read(config_path)
        key = self.load_private_key(key_path, key_passphrase)
        name = cfg.subject_name()
        public_key = key.public_key()
        builder = self._base_builder(cfg, name, name, public_key, days)
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key),  # type: ignore[arg-type]
            critical=False,
        )
        cert = self._sign(builder, key)
        _write_bytes(out_cert_path, cert.public_bytes(serialization.Encoding.PEM), 0o644)
        log.debug("Self-signed certificate written to %s", out_cert_path)
        return cert

    def sign_with_ca(
        self,
        csr_path: str | Path,
        ca_cert_path: str | Path,
        ca_key_path: str | Path,
        out_cert_path: str | Path,
        days: int,
        ext_config_path: str | Path,
        *,
        ca_passphrase: str | None = None,
    ) -> x509.Certificate:
        cfg = ExtensionConfig.read(ext_config_path)
        try:
            csr = x509.load_pem_x509_csr(_read_bytes(csr_path))
        except ValueError as exc:
            raise CryptoError(f"Cannot parse CSR {csr_path}: {exc}") from exc
        if not csr.is_signature_valid:
            raise CryptoError(f"CSR signature is invalid: {csr_path}")

        ca_cert = self.load_certificate(ca_cert_path)
        ca_key = self.load_private_key(ca_key_path, ca_passphrase)

        spki = serialization.PublicFormat.SubjectPublicKeyInfo
        if ca_cert.public_key().public_bytes(
            serialization.Encoding.DER, spki
        ) != ca_key.public_key().public_bytes(serialization.Encoding.DER, spki):
            raise CryptoError("CA certificate and CA key do not match")

        builder = self._base_builder(
            cfg, csr.subject, ca_cert.subject, csr.public_key(), days
        )
        try:
            ca_ski = ca_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
            aki = x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ca_ski.value)
        except x509.ExtensionNotFound:
            aki = x509.AuthorityKeyIdentifier.from_issuer_public_key(
                ca_cert.public_key()  # type: ignore[arg-type]
            )
        builder = builder.add_extension(aki, critical=False)
        cert = self._sign(builder, ca_key)
        _write_bytes(out_cert_path, cert.public_bytes(serialization.Encoding.PEM), 0o644)
        log.debug("CA-signed certificate written to %s", out_cert_path)
        return cert

    def _base_builder(
        self,
        cfg: ExtensionConfig,
        subject: x509.Name,
        issuer: x509.Name,
        public_key,
        days: int,
    ) -> x509.CertificateBuilder:
        if days <= 0:
            raise ValidationError(f"Validity days must be positive (got {days})")
        now = datetime.datetime.now(datetime.UTC)
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - _BACKDATE)
            .not_valid_after(now + datetime.timedelta(days=days))
            .add_extension(
                x509.BasicConstraints(ca=cfg.is_ca, path_length=cfg.path_length),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        )
        if cfg.key_usage:
            builder = builder.add_extension(build_key_usage(cfg.key_usage), critical=True)
        if cfg.extended_key_usage:
            builder = builder.add_extension(build_eku(cfg.extended_key_usage), critical=False)
        san = cfg.san_extension()
        if san is not None:
            builder = builder.add_extension(san, critical=False)
        return builder

    def _sign(
        self,
        builder: x509.CertificateBuilder,
        key: CertificateIssuerPrivateKeyTypes,
    ) -> x509.Certificate:
        try:
            return builder.sign(key, _signing_hash(key))  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise CryptoError(f"Certificate signing failed: {exc}") from exc

    # -- conversion --------------------------------------------------------

    def convert(
        self,
        source_cert_path: str | Path,
        fmt: str,
        out_path: str | Path,
        *,
        password: str | None = None,
        key_path: str | Path | None = None,
        key_passphrase: str | None = None,
        chain_paths: tuple[str, ...] = (),
        friendly_name: str | None = None,
    ) -> Path:
        """Write *source_cert_path* re-encoded as *fmt* to *out_path*.

        ``pem``/``crt`` and ``der``/``cer`` are always re-emitted from the
        parsed certificate, never copied.  ``p12``/``pfx`` need a password
        and the private key.
        """
        try:
            target_fmt = CertificateFormat(fmt.lower())
        except ValueError as exc:
            raise ValidationError(f"Unsupported format: {fmt}") from exc

        cert = self.load_certificate(source_cert_path)

        if target_fmt in (CertificateFormat.PEM, CertificateFormat.CRT):
            data = cert.public_bytes(serialization.Encoding.PEM)
        elif target_fmt in (CertificateFormat.DER, CertificateFormat.CER):
            data = cert.public_bytes(serialization.Encoding.DER)
        elif target_fmt is CertificateFormat.P7B:
            chain = [cert] + [self.load_certificate(p) for p in chain_paths]
            data = pkcs7.serialize_certificates(chain, serialization.Encoding.PEM)
        else:
            if not password:
                raise ValidationError(f"A password is required for {target_fmt.value} export")
            if key_path is None:
                raise ValidationError(f"A private key is required for {target_fmt.value} export")
            key = self.load_private_key(key_path, key_passphrase)
            cas = [self.load_certificate(p) for p in chain_paths]
            data = pkcs12.serialize_key_and_certificates(
                (friendly_name or "certificate").encode("utf-8"),
                key,  # type: ignore[arg-type]
                cert,
                cas or None,
                serialization.BestAvailableEncryption(password.encode("utf-8")),
            )
        _write_bytes(out_path, data)
        return Path(out_path)


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True
