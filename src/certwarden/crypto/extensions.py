"""OpenSSL-style extension configuration files.

Renewal and creation compose a small ``req``-format config describing
the subject, basic constraints, key usage, and SANs of the certificate
to be issued.  The file is what :class:`~certwarden.crypto.provider.CryptoProvider`
consumes, and it is kept next to a created certificate as ``<name>.ext``
so an operator can reproduce the issuance with ``openssl`` by hand.

Example output::

    [req]
    prompt = no
    distinguished_name = dn
    req_extensions = v3_ext
    x509_extensions = v3_ext

    [dn]
    CN = api-internal

    [v3_ext]
    basicConstraints = critical, CA:FALSE
    keyUsage = critical, digitalSignature, keyEncipherment
    extendedKeyUsage = serverAuth, clientAuth
    subjectAltName = @alt_names

    [alt_names]
    DNS.1 = api.example.com
    IP.1 = 10.0.0.1
"""

from __future__ import annotations

import configparser
import ipaddress
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from certwarden.core.errors import CryptoError

if TYPE_CHECKING:
    from certwarden.models.certificate import Certificate

# ---------------------------------------------------------------------------
# Key usage / EKU mappings
# ---------------------------------------------------------------------------

_KEY_USAGE_NAMES = {
    "digitalSignature": "digital_signature",
    "nonRepudiation": "content_commitment",
    "keyEncipherment": "key_encipherment",
    "dataEncipherment": "data_encipherment",
    "keyAgreement": "key_agreement",
    "keyCertSign": "key_cert_sign",
    "cRLSign": "crl_sign",
    "encipherOnly": "encipher_only",
    "decipherOnly": "decipher_only",
}

_EKU_OIDS = {
    "serverAuth": ExtendedKeyUsageOID.SERVER_AUTH,
    "clientAuth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "codeSigning": ExtendedKeyUsageOID.CODE_SIGNING,
    "emailProtection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "timeStamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "OCSPSigning": ExtendedKeyUsageOID.OCSP_SIGNING,
}

_DN_FIELDS = (
    ("C", NameOID.COUNTRY_NAME),
    ("ST", NameOID.STATE_OR_PROVINCE_NAME),
    ("L", NameOID.LOCALITY_NAME),
    ("O", NameOID.ORGANIZATION_NAME),
    ("OU", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("CN", NameOID.COMMON_NAME),
)

CA_KEY_USAGE = ("keyCertSign", "cRLSign", "digitalSignature")
LEAF_KEY_USAGE = ("digitalSignature", "keyEncipherment")
LEAF_EXTENDED_KEY_USAGE = ("serverAuth", "clientAuth")


def build_key_usage(usages: tuple[str, ...]) -> x509.KeyUsage:
    """Build an :class:`x509.KeyUsage` extension from OpenSSL names."""
    unknown = set(usages) - set(_KEY_USAGE_NAMES)
    if unknown:
        raise CryptoError(f"Unknown keyUsage value(s): {sorted(unknown)}")
    flags = {attr: False for attr in _KEY_USAGE_NAMES.values()}
    for usage in usages:
        flags[_KEY_USAGE_NAMES[usage]] = True
    if not flags["key_agreement"]:
        flags["encipher_only"] = False
        flags["decipher_only"] = False
    return x509.KeyUsage(**flags)


def build_eku(ekus: tuple[str, ...]) -> x509.ExtendedKeyUsage:
    """Build an :class:`x509.ExtendedKeyUsage` extension from OpenSSL names."""
    oids = []
    for name in ekus:
        oid = _EKU_OIDS.get(name)
        if oid is None:
            raise CryptoError(f"Unknown extendedKeyUsage value: {name}")
        oids.append(oid)
    return x509.ExtendedKeyUsage(oids)


# ---------------------------------------------------------------------------
# Extension config
# ---------------------------------------------------------------------------


@dataclass
class ExtensionConfig:
    """Subject and extension set for one issuance."""

    common_name: str
    organization: str | None = None
    organizational_unit: str | None = None
    country: str | None = None
    state: str | None = None
    locality: str | None = None
    domains: list[str] = field(default_factory=list)
    ips: list[str] = field(default_factory=list)
    is_ca: bool = False
    path_length: int | None = None
    key_usage: tuple[str, ...] = LEAF_KEY_USAGE
    extended_key_usage: tuple[str, ...] = LEAF_EXTENDED_KEY_USAGE

    @classmethod
    def for_certificate(
        cls,
        cert: Certificate,
        *,
        include_idle: bool = True,
    ) -> ExtensionConfig:
        """Compose the config for renewing *cert*.

        Active SANs come first, followed by staged (idle) entries, with
        duplicates removed and order preserved.
        """
        domains = list(cert.domains)
        ips = list(cert.ips)
        if include_idle:
            domains += [d for d in cert.idle_domains if d not in domains]
            ips += [i for i in cert.idle_ips if i not in ips]
        subject = parse_dn(cert.subject) if cert.subject else {}
        is_ca = cert.is_ca
        return cls(
            common_name=cert.name,
            organization=subject.get("O"),
            organizational_unit=subject.get("OU"),
            country=subject.get("C"),
            state=subject.get("ST"),
            locality=subject.get("L"),
            domains=domains,
            ips=ips,
            is_ca=is_ca,
            path_length=cert.path_len_constraint if is_ca else None,
            key_usage=CA_KEY_USAGE if is_ca else LEAF_KEY_USAGE,
            extended_key_usage=() if is_ca else LEAF_EXTENDED_KEY_USAGE,
        )

    # -- rendering ---------------------------------------------------------

    def render(self) -> str:
        lines = [
            "[req]",
            "prompt = no",
            "distinguished_name = dn",
            "req_extensions = v3_ext",
            "x509_extensions = v3_ext",
            "",
            "[dn]",
        ]
        values = {
            "C": self.country,
            "ST": self.state,
            "L": self.locality,
            "O": self.organization,
            "OU": self.organizational_unit,
            "CN": self.common_name,
        }
        for key, _oid in _DN_FIELDS:
            if values[key]:
                lines.append(f"{key} = {values[key]}")

        lines += ["", "[v3_ext]"]
        constraint = "critical, CA:TRUE" if self.is_ca else "critical, CA:FALSE"
        if self.is_ca and self.path_length is not None:
            constraint += f", pathlen:{self.path_length}"
        lines.append(f"basicConstraints = {constraint}")
        if self.key_usage:
            lines.append(f"keyUsage = critical, {', '.join(self.key_usage)}")
        if self.extended_key_usage:
            lines.append(f"extendedKeyUsage = {', '.join(self.extended_key_usage)}")
        lines.append("subjectKeyIdentifier = hash")
        if self.domains or self.ips:
            lines.append("subjectAltName = @alt_names")
            lines += ["", "[alt_names]"]
            for idx, domain in enumerate(self.domains, start=1):
                lines.append(f"DNS.{idx} = {domain}")
            for idx, ip in enumerate(self.ips, start=1):
                lines.append(f"IP.{idx} = {ip}")
        return "\n".join(lines) + "\n"

    def write(self, path: str | Path) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.render(), encoding="utf-8")
        return target

    # -- parsing -----------------------------------------------------------

    @classmethod
    def parse(cls, text: str) -> ExtensionConfig:
        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str  # type: ignore[assignment,method-assign]
        try:
            parser.read_string(text)
        except configparser.Error as exc:
            raise CryptoError(f"Malformed extension config: {exc}") from exc

        req = parser["req"] if parser.has_section("req") else {}
        dn_section = req.get("distinguished_name", "dn")
        ext_section = req.get("x509_extensions", req.get("req_extensions", "v3_ext"))
        dn = parser[dn_section] if parser.has_section(dn_section) else {}
        common_name = dn.get("CN", "")
        if not common_name:
            raise CryptoError("Extension config has no CN")

        ext = parser[ext_section] if parser.has_section(ext_section) else {}
        is_ca, path_length = _parse_basic_constraints(ext.get("basicConstraints", ""))
        key_usage = _split_values(ext.get("keyUsage", ""))
        eku = _split_values(ext.get("extendedKeyUsage", ""))

        domains: list[str] = []
        ips: list[str] = []
        san_ref = ext.get("subjectAltName", "")
        if san_ref.startswith("@") and parser.has_section(san_ref[1:]):
            for key, value in parser[san_ref[1:]].items():
                prefix = key.split(".", 1)[0].upper()
                if prefix == "DNS":
                    domains.append(value.strip())
                elif prefix == "IP":
                    ips.append(value.strip())

        return cls(
            common_name=common_name,
            organization=dn.get("O"),
            organizational_unit=dn.get("OU"),
            country=dn.get("C"),
            state=dn.get("ST"),
            locality=dn.get("L"),
            domains=domains,
            ips=ips,
            is_ca=is_ca,
            path_length=path_length,
            key_usage=tuple(key_usage),
            extended_key_usage=tuple(eku),
        )

    @classmethod
    def read(cls, path: str | Path) -> ExtensionConfig:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise CryptoError(f"Cannot read extension config {path}: {exc}") from exc
        return cls.parse(text)

    # -- x509 building blocks ---------------------------------------------

    def subject_name(self) -> x509.Name:
        values = {
            "C": self.country,
            "ST": self.state,
            "L": self.locality,
            "O": self.organization,
            "OU": self.organizational_unit,
            "CN": self.common_name,
        }
        return x509.Name(
            [x509.NameAttribute(oid, values[key]) for key, oid in _DN_FIELDS if values[key]]
        )

    def san_extension(self) -> x509.SubjectAlternativeName | None:
        names: list[x509.GeneralName] = [x509.DNSName(d) for d in self.domains]
        for ip in self.ips:
            try:
                names.append(x509.IPAddress(ipaddress.ip_address(ip)))
            except ValueError as exc:
                raise CryptoError(f"Invalid IP address in SANs: {ip}") from exc
        if not names:
            return None
        return x509.SubjectAlternativeName(names)


def parse_dn(dn: str) -> dict[str, str]:
    """Split ``"CN=a, O=b"`` into ``{"CN": "a", "O": "b"}``."""
    result: dict[str, str] = {}
    for part in dn.replace("/", ",").split(","):
        key, sep, value = part.partition("=")
        if sep and key.strip():
            result[key.strip().upper()] = value.strip()
    return result


def _split_values(raw: str) -> list[str]:
    return [v.strip() for v in raw.split(",") if v.strip() and v.strip() != "critical"]


def _parse_basic_constraints(raw: str) -> tuple[bool, int | None]:
    is_ca = False
    path_length = None
    for item in _split_values(raw):
        upper = item.upper()
        if upper == "CA:TRUE":
            is_ca = True
        elif upper.startswith("PATHLEN:"):
            try:
                path_length = int(item.split(":", 1)[1])
            except ValueError as exc:
                raise CryptoError(f"Invalid pathlen in basicConstraints: {item}") from exc
    return is_ca, path_length
