"""Certificate entity.

A :class:`Certificate` is the in-memory record for one X.509
certificate known to the store: crypto-derived fields (refreshed from
disk on every load), the path map of its on-disk files, staged SANs,
user metadata, deploy actions, and version history.

Only user metadata and non-derivable fields are persisted to the
sidecar (:meth:`Certificate.to_record`); everything else is re-parsed.
"""

from __future__ import annotations

import dataclasses
import ipaddress
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from certwarden.core.errors import ValidationError
from certwarden.core.types import CertType, PathKind
from certwarden.models.actions import DeployAction, load_actions

if TYPE_CHECKING:
    from certwarden.crypto.provider import CertInfo, CryptoProvider

log = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400

# Hostname, optionally with a leading wildcard label
_DOMAIN_RE = re.compile(
    r"^(\*\.)?([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)*[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$",
    re.IGNORECASE,
)

# Primary-file preference when a caller asks for "the" certificate file
PRIMARY_KINDS = (PathKind.CRT, PathKind.PEM, PathKind.CER)

# ``source`` aliases used by deploy actions
SOURCE_KINDS = {
    "cert": PRIMARY_KINDS,
    "crt": (PathKind.CRT, PathKind.PEM, PathKind.CER),
    "pem": (PathKind.PEM, PathKind.CRT),
    "key": (PathKind.KEY,),
    "chain": (PathKind.CHAIN,),
    "fullchain": (PathKind.FULLCHAIN,),
    "p12": (PathKind.P12, PathKind.PFX),
    "pfx": (PathKind.PFX, PathKind.P12),
}


def validate_domain(value: str) -> str:
    domain = value.strip().lower().rstrip(".")
    if not domain or len(domain) > 253 or not _DOMAIN_RE.match(domain):
        raise ValidationError(f"Invalid domain name: {value!r}")
    return domain


def validate_ip(value: str) -> str:
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError as exc:
        raise ValidationError(f"Invalid IP address: {value!r}") from exc


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _dedupe(items) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass
class CertificateConfig:
    """User-controlled renewal settings."""

    auto_renew: bool = False
    renew_days_before_expiry: int = 30
    sign_with_ca: bool = False
    ca_fingerprint: str | None = None
    validity_days: int | None = None

    PATCH_KEYS: ClassVar[dict[str, str]] = {
        "autoRenew": "auto_renew",
        "renewDaysBeforeExpiry": "renew_days_before_expiry",
        "signWithCA": "sign_with_ca",
        "caFingerprint": "ca_fingerprint",
        "validityDays": "validity_days",
    }

    @classmethod
    def from_dict(cls, data: dict | None, *, default_days: int = 30) -> CertificateConfig:
        d = data or {}
        return cls(
            auto_renew=bool(d.get("autoRenew", False)),
            renew_days_before_expiry=int(d.get("renewDaysBeforeExpiry", default_days)),
            sign_with_ca=bool(d.get("signWithCA", False)),
            ca_fingerprint=d.get("caFingerprint") or None,
            validity_days=int(d["validityDays"]) if d.get("validityDays") else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out = {
            "autoRenew": self.auto_renew,
            "renewDaysBeforeExpiry": self.renew_days_before_expiry,
            "signWithCA": self.sign_with_ca,
            "caFingerprint": self.ca_fingerprint,
        }
        if self.validity_days:
            out["validityDays"] = self.validity_days
        return out


@dataclass
class ArchivedFile:
    type: str
    path: str
    relative_path: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "path": self.path, "relativePath": self.relative_path}

    @classmethod
    def from_dict(cls, data: dict) -> ArchivedFile:
        return cls(
            type=data.get("type", ""),
            path=data.get("path", ""),
            relative_path=data.get("relativePath", ""),
        )


@dataclass
class PreviousVersion:
    """History entry for a superseded certificate."""

    fingerprint: str
    subject: str | None
    issuer: str | None
    valid_from: datetime | None
    valid_to: datetime | None
    version: int
    archived_at: datetime
    archived_files: list[ArchivedFile] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "subject": self.subject,
            "issuer": self.issuer,
            "validFrom": _iso(self.valid_from),
            "validTo": _iso(self.valid_to),
            "version": self.version,
            "archivedAt": _iso(self.archived_at),
            "archivedFiles": [f.to_dict() for f in self.archived_files],
        }

    @classmethod
    def from_dict(cls, fingerprint: str, data: dict) -> PreviousVersion:
        return cls(
            fingerprint=fingerprint,
            subject=data.get("subject"),
            issuer=data.get("issuer"),
            valid_from=_parse_dt(data.get("validFrom")),
            valid_to=_parse_dt(data.get("validTo")),
            version=int(data.get("version", 0)),
            archived_at=_parse_dt(data.get("archivedAt")) or datetime.now(UTC),
            archived_files=[ArchivedFile.from_dict(f) for f in data.get("archivedFiles") or []],
        )


# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Certificate:
    """One certificate and everything certwarden knows about it."""

    name: str
    fingerprint: str = ""
    subject: str | None = None
    issuer: str | None = None
    issuer_cn: str | None = None
    serial_number: str | None = None
    key_id: str | None = None
    authority_key_id: str | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    key_type: str | None = None
    key_size: int | None = None
    sig_alg: str | None = None
    cert_type: CertType = CertType.STANDARD
    is_ca: bool = False
    path_len_constraint: int | None = None
    self_signed: bool = False
    domains: list[str] = field(default_factory=list)
    ips: list[str] = field(default_factory=list)
    idle_domains: list[str] = field(default_factory=list)
    idle_ips: list[str] = field(default_factory=list)
    paths: dict[str, str] = field(default_factory=dict)
    config: CertificateConfig = field(default_factory=CertificateConfig)
    description: str = ""
    group: str = ""
    tags: list[str] = field(default_factory=list)
    deploy_actions: list[DeployAction] = field(default_factory=list)
    previous_versions: dict[str, PreviousVersion] = field(default_factory=dict)
    needs_passphrase: bool = False
    is_pem: bool = True

    # -- crypto-derived state ---------------------------------------------

    def apply_info(self, info: CertInfo) -> None:
        """Replace every crypto-derived field from a fresh parse."""
        self.fingerprint = info.fingerprint
        self.subject = info.subject
        self.issuer = info.issuer
        self.issuer_cn = info.issuer_cn
        self.serial_number = info.serial_number
        self.key_id = info.subject_key_id
        self.authority_key_id = info.authority_key_id
        self.valid_from = info.valid_from
        self.valid_to = info.valid_to
        self.key_type = info.key_type
        self.key_size = info.key_size
        self.sig_alg = info.signature_algorithm
        self.is_ca = info.is_ca
        self.path_len_constraint = info.path_len_constraint
        self.self_signed = info.self_signed
        self.domains = list(info.domains)
        self.ips = list(info.ips)
        self.is_pem = info.is_pem
        if info.is_ca:
            self.cert_type = CertType.ROOT_CA if info.self_signed else CertType.INTERMEDIATE_CA
        else:
            self.cert_type = CertType.STANDARD
        self.drop_active_from_idle()

    # -- expiry ------------------------------------------------------------

    def days_until_expiry(self, now: datetime | None = None) -> int:
        """Whole days until ``valid_to``, truncated toward zero; -1 when unknown."""
        if self.valid_to is None:
            return -1
        now = now or datetime.now(UTC)
        return int((self.valid_to - now).total_seconds() / _SECONDS_PER_DAY)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.valid_to is None:
            return False
        return (now or datetime.now(UTC)) >= self.valid_to

    def is_due(self, now: datetime | None = None) -> bool:
        """Whether the scheduler should renew this certificate now.

        Expired certificates are never due; they need operator triage.
        """
        if not self.config.auto_renew or self.valid_to is None:
            return False
        days = self.days_until_expiry(now)
        return 0 <= days <= self.config.renew_days_before_expiry

    # -- paths -------------------------------------------------------------

    @property
    def primary_path(self) -> str | None:
        for kind in PRIMARY_KINDS:
            if kind.value in self.paths:
                return self.paths[kind.value]
        return None

    @property
    def key_path(self) -> str | None:
        return self.paths.get(PathKind.KEY.value)

    def add_path(self, kind: str, path: str) -> None:
        try:
            PathKind(kind)
        except ValueError as exc:
            raise ValidationError(f"Unknown path kind: {kind}") from exc
        if not os.path.isfile(path):
            raise ValidationError(f"File does not exist: {path}")
        self.paths[kind] = os.path.abspath(path)

    def verify_paths(self) -> list[str]:
        """Drop path entries whose files vanished; return the dropped kinds."""
        missing = [kind for kind, path in self.paths.items() if not os.path.isfile(path)]
        for kind in missing:
            log.debug("Dropping vanished %s path for %s", kind, self.name)
            del self.paths[kind]
        return missing

    def resolve_source(self, source: str) -> str | None:
        """Map a deploy ``source`` value to a filesystem path."""
        kinds = SOURCE_KINDS.get(source)
        if kinds is None:
            return source
        for kind in kinds:
            path = self.paths.get(kind.value)
            if path:
                return path
        return None

    def verify_key_match(self, crypto: CryptoProvider, passphrase: str | None = None) -> bool:
        if not self.primary_path or not self.key_path:
            return False
        return crypto.verify_key_match(self.primary_path, self.key_path, passphrase)

    # -- SANs --------------------------------------------------------------

    def drop_active_from_idle(self) -> None:
        self.idle_domains = [d for d in self.idle_domains if d not in self.domains]
        self.idle_ips = [i for i in self.idle_ips if i not in self.ips]

    def promote_idle(self) -> None:
        """Fold staged SANs into the active lists (after a renewal)."""
        self.domains = _dedupe(self.domains + self.idle_domains)
        self.ips = _dedupe(self.ips + self.idle_ips)
        self.idle_domains = []
        self.idle_ips = []

    def san_view(self) -> dict[str, list[str]]:
        return {
            "domains": list(self.domains),
            "ips": list(self.ips),
            "idleDomains": list(self.idle_domains),
            "idleIps": list(self.idle_ips),
        }

    # -- history -----------------------------------------------------------

    def next_version(self) -> int:
        if not self.previous_versions:
            return 1
        return max(v.version for v in self.previous_versions.values()) + 1

    def history(self) -> list[PreviousVersion]:
        return sorted(self.previous_versions.values(), key=lambda v: v.version)

    # -- placeholders ------------------------------------------------------

    def placeholders(self, now: datetime | None = None) -> dict[str, str]:
        now = now or datetime.now(UTC)
        return {
            "name": self.name,
            "fingerprint": self.fingerprint,
            "cert_path": self.primary_path or "",
            "key_path": self.paths.get("key", ""),
            "pem_path": self.paths.get("pem", "") or self.primary_path or "",
            "p12_path": self.paths.get("p12", "") or self.paths.get("pfx", ""),
            "chain_path": self.paths.get("chain", ""),
            "fullchain_path": self.paths.get("fullchain", ""),
            "domains": ",".join(self.domains),
            "domain": self.domains[0] if self.domains else self.name,
            "valid_from": _iso(self.valid_from) or "",
            "valid_to": _iso(self.valid_to) or "",
            "days_until_expiry": str(self.days_until_expiry(now)),
            "cert_type": self.cert_type.value,
            "timestamp": now.isoformat(),
        }

    # -- persistence -------------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        """Sidecar record: user metadata and non-derivable fields only."""
        return {
            "name": self.name,
            "description": self.description,
            "group": self.group,
            "tags": list(self.tags),
            "config": self.config.to_dict(),
            "deployActions": [a.to_dict() for a in self.deploy_actions],
            "previousVersions": {
                v.fingerprint: v.to_dict() for v in self.history()
            },
            "idleDomains": list(self.idle_domains),
            "idleIps": list(self.idle_ips),
        }

    def apply_record(self, record: dict[str, Any], *, default_days: int = 30) -> None:
        """Overlay sidecar metadata onto a freshly parsed certificate."""
        if record.get("name"):
            self.name = record["name"]
        self.description = record.get("description") or ""
        self.group = record.get("group") or ""
        self.tags = list(record.get("tags") or [])
        self.config = CertificateConfig.from_dict(record.get("config"), default_days=default_days)
        self.deploy_actions = load_actions(record.get("deployActions"), owner=self.name)
        self.previous_versions = {
            fp: PreviousVersion.from_dict(fp, data)
            for fp, data in (record.get("previousVersions") or {}).items()
        }
        self.idle_domains = _dedupe(record.get("idleDomains") or [])
        self.idle_ips = _dedupe(record.get("idleIps") or [])
        self.drop_active_from_idle()

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        """Full JSON view for the HTTP surface (secrets masked)."""
        return {
            "name": self.name,
            "fingerprint": self.fingerprint,
            "subject": self.subject,
            "issuer": self.issuer,
            "issuerCN": self.issuer_cn,
            "serialNumber": self.serial_number,
            "keyId": self.key_id,
            "authorityKeyId": self.authority_key_id,
            "validFrom": _iso(self.valid_from),
            "validTo": _iso(self.valid_to),
            "daysUntilExpiry": self.days_until_expiry(now),
            "isExpired": self.is_expired(now),
            "keyType": self.key_type,
            "keySize": self.key_size,
            "sigAlg": self.sig_alg,
            "certType": self.cert_type.value,
            "isCA": self.is_ca,
            "pathLenConstraint": self.path_len_constraint,
            "selfSigned": self.self_signed,
            "sans": {"domains": list(self.domains), "ips": list(self.ips)},
            "idleDomains": list(self.idle_domains),
            "idleIps": list(self.idle_ips),
            "paths": dict(self.paths),
            "config": self.config.to_dict(),
            "description": self.description,
            "group": self.group,
            "tags": list(self.tags),
            "deployActions": [a.to_dict(mask_secrets=True) for a in self.deploy_actions],
            "previousVersions": [v.to_dict() for v in self.history()],
            "needsPassphrase": self.needs_passphrase,
        }

    def copy(self) -> Certificate:
        return dataclasses.replace(
            self,
            domains=list(self.domains),
            ips=list(self.ips),
            idle_domains=list(self.idle_domains),
            idle_ips=list(self.idle_ips),
            paths=dict(self.paths),
            config=dataclasses.replace(self.config),
            tags=list(self.tags),
            deploy_actions=list(self.deploy_actions),
            previous_versions=dict(self.previous_versions),
        )

    def __repr__(self) -> str:
        return f"Certificate(name={self.name!r}, fingerprint={self.fingerprint[:16]!r})"
