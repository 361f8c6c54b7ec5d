"""Fingerprint-indexed certificate registry.

:class:`CertificateStore` reconciles the certificates directory with
the JSON sidecar, resolves issuer chains, and exposes every mutation
the HTTP surface, the scheduler and the watcher need.  All mutations of
one certificate serialize on its mutex (:class:`CertificateLocks`);
the index itself sits behind a reader/writer lock.

Usage::

    store = CertificateStore(certs_dir, Sidecar(path), crypto, vault, archive)
    store.load()
    cert = store.get(fingerprint)
    store.add_san(fingerprint, "new.example.com")
    store.apply_idle_and_renew(fingerprint)
"""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from certwarden.core.errors import (
    CANotFoundError,
    CertError,
    DuplicateError,
    InvalidCAError,
    NotFoundError,
    PassphraseRequiredError,
    StoreIOError,
    ValidationError,
)
from certwarden.core.types import CertificateFormat, CertType, KeyType, PathKind, SanType
from certwarden.crypto.extensions import (
    CA_KEY_USAGE,
    LEAF_EXTENDED_KEY_USAGE,
    LEAF_KEY_USAGE,
    ExtensionConfig,
)
from certwarden.crypto.provider import is_ip_address
from certwarden.logging.setup import operation_context
from certwarden.models.actions import parse_actions
from certwarden.models.certificate import (
    Certificate,
    CertificateConfig,
    validate_domain,
    validate_ip,
)
from certwarden.services.ignore_list import IgnoreList
from certwarden.store import chain as chain_mod
from certwarden.store.locks import CertificateLocks, ReadWriteLock
from certwarden.store.renewal import Renewer, RenewalResult
from certwarden.store.scanner import (
    COMPANION_EXTENSIONS,
    PRIMARY_EXTENSIONS,
    ParseCache,
    find_companions,
    scan_directory,
)

if TYPE_CHECKING:
    from certwarden.crypto.provider import CertInfo, CryptoProvider
    from certwarden.deploy.pipeline import DeployPipeline
    from certwarden.hooks.registry import HookRegistry
    from certwarden.models.certificate import PreviousVersion
    from certwarden.store.archive import ArchiveManager
    from certwarden.store.sidecar import Sidecar
    from certwarden.vault.passphrases import PassphraseVault

log = logging.getLogger(__name__)

_FILE_STEM_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# Patch keys accepted by update_config besides CertificateConfig.PATCH_KEYS
_METADATA_KEYS = frozenset({"name", "description", "group", "tags", "deployActions"})


class CertificateStore:
    """Registry of every certificate under ``certs_dir``.

    Parameters
    ----------
    certs_dir:
        Directory scanned for certificate files.
    sidecar:
        Persistence for user metadata, deploy actions and history.
    crypto:
        The crypto provider.
    vault:
        Passphrase vault keyed by fingerprint.
    archive:
        Archive manager used by renewal, restore and delete.
    ignore_list:
        Paths the directory watcher must skip; shared with the watcher.
    pipeline:
        Deploy pipeline run after renewals and on demand.
    hooks:
        Optional observer registry for lifecycle events.

    """

    def __init__(
        self,
        certs_dir: str | Path,
        sidecar: Sidecar,
        crypto: CryptoProvider,
        vault: PassphraseVault,
        archive: ArchiveManager,
        *,
        ignore_list: IgnoreList | None = None,
        pipeline: DeployPipeline | None = None,
        hooks: HookRegistry | None = None,
        default_renew_days: int = 30,
        default_validity_days: int = 365,
        cache_ttl: float = 300,
        ignore_ttl: float = 150,
        extra_ignored: tuple[str, ...] = (),
    ) -> None:
        self.certs_dir = Path(certs_dir).resolve()
        self.sidecar = sidecar
        self.crypto = crypto
        self.vault = vault
        self.archive = archive
        self.ignore_list = ignore_list or IgnoreList(ignore_ttl)
        self.pipeline = pipeline
        self.hooks = hooks
        self.default_renew_days = default_renew_days
        self.default_validity_days = default_validity_days
        self.ignore_ttl = ignore_ttl
        self.extra_ignored = tuple(extra_ignored)

        self.locks = CertificateLocks()
        self.load_lock = threading.RLock()
        self._rw = ReadWriteLock()
        self._persist_lock = threading.Lock()
        self._cache = ParseCache(crypto, cache_ttl)
        self._certs: dict[str, Certificate] = {}
        self._orphans: dict[str, dict[str, Any]] = {}
        self._loaded = False
        self.renewer = Renewer(self)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_fingerprint(fingerprint: str) -> str:
        return (fingerprint or "").replace(":", "").replace(" ", "").upper()

    def load(self, force_refresh: bool = False, hint_path: str | None = None) -> list[Certificate]:
        """Scan the directory, overlay the sidecar and rebuild the index.

        Unparseable files are logged and skipped.  *hint_path* names a
        file that just appeared; it is parsed even if the cache is warm.
        """
        if self._loaded and not force_refresh and hint_path is None:
            return self.list()

        with self.load_lock:
            if force_refresh:
                self._cache.clear()
            records = self.sidecar.load()
            with self._rw.read():
                previous = dict(self._certs)

            hint = str(Path(hint_path).resolve()) if hint_path else None
            found: dict[str, Certificate] = {}
            for path in scan_directory(self.certs_dir, self.extra_ignored):
                if self.ignore_list.is_ignored(path) and str(path.resolve()) != hint:
                    # A file being written by renewal; keep the known entry
                    known = next(
                        (c for c in previous.values() if str(path.resolve()) in c.paths.values()),
                        None,
                    )
                    if known is not None and known.fingerprint not in found:
                        found[known.fingerprint] = known
                    continue
                try:
                    info = self._cache.parse(path)
                except (CertError, OSError) as exc:
                    log.warning("Skipping unreadable certificate file %s: %s", path, exc)
                    continue
                self._merge_file(found, path, info)

            by_path = {c.primary_path: c for c in previous.values() if c.primary_path}
            replaced: dict[str, str] = {}
            discovered = []
            for fp, cert in found.items():
                record = records.get(fp)
                if record is None and fp in previous and previous[fp] is not cert:
                    record = previous[fp].to_record()
                elif record is None and fp not in previous:
                    # Same file, new bytes: the certificate was replaced in place
                    old = by_path.get(cert.primary_path)
                    if old is not None and old.fingerprint not in found:
                        record = records.get(old.fingerprint) or old.to_record()
                        replaced[old.fingerprint] = fp
                if record is not None:
                    paths = dict(cert.paths)
                    try:
                        cert.apply_record(record, default_days=self.default_renew_days)
                    except (ValidationError, ValueError, TypeError, AttributeError) as exc:
                        log.error(
                            "Ignoring malformed sidecar record for %s: %s",
                            fp,
                            exc,
                            extra={"fingerprint": fp},
                        )
                        cert.config = CertificateConfig(
                            renew_days_before_expiry=self.default_renew_days
                        )
                    cert.paths = paths
                elif previous.get(fp) is not cert:
                    cert.config = CertificateConfig(
                        renew_days_before_expiry=self.default_renew_days
                    )
                    discovered.append(cert)
                cert.verify_paths()
                cert.needs_passphrase = self._detect_passphrase(cert)

            self._link_signing_cas(found)
            orphans = {
                fp: rec for fp, rec in records.items() if fp not in found and fp not in replaced
            }
            for old_fp, new_fp in replaced.items():
                log.info("Certificate %s was replaced on disk by %s", old_fp, new_fp)
                self.vault.rekey(old_fp, new_fp)

            with self._rw.write():
                self._certs = found
                self._orphans = orphans
                self._loaded = True
            self._cache.prune()

        log.info(
            "Loaded %d certificate(s) from %s",
            len(found),
            self.certs_dir,
            extra={"discovered": len(discovered), "orphaned_records": len(orphans)},
        )
        if discovered or replaced:
            self.persist()
        return self.list()

    def _merge_file(self, found: dict[str, Certificate], path: Path, info: CertInfo) -> None:
        kind = PRIMARY_EXTENSIONS[path.suffix.lower()].value
        resolved = str(path.resolve())
        cert = found.get(info.fingerprint)
        if cert is None:
            cert = Certificate(name=info.common_name or path.stem)
            cert.apply_info(info)
            found[info.fingerprint] = cert
        # Crypto fields come from disk; the first file seen for a kind wins
        cert.paths.setdefault(kind, resolved)
        for companion_kind, companion in find_companions(path).items():
            cert.paths.setdefault(companion_kind, companion)

    def _detect_passphrase(self, cert: Certificate) -> bool:
        key_path = cert.key_path
        if not key_path:
            return False
        try:
            return self.crypto.is_key_encrypted(key_path)
        except CertError:
            return False

    def _link_signing_cas(self, certs: dict[str, Certificate]) -> None:
        pool = list(certs.values())
        for cert in pool:
            if cert.self_signed:
                continue
            parent = chain_mod.find_parent(cert, pool)
            if parent is not None and parent is not cert and parent.is_ca:
                cert.config.sign_with_ca = True
                cert.config.ca_fingerprint = parent.fingerprint

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist(self) -> None:
        """Rewrite the sidecar from the current index."""
        with self._persist_lock:
            with self._rw.read():
                records = {fp: c.to_record() for fp, c in self._certs.items()}
                for fp, record in self._orphans.items():
                    records.setdefault(fp, record)
            self.sidecar.save(records)

    # ------------------------------------------------------------------
    # Look-ups
    # ------------------------------------------------------------------

    def find(self, fingerprint: str) -> Certificate | None:
        self._ensure_loaded()
        with self._rw.read():
            return self._certs.get(self.normalize_fingerprint(fingerprint))

    def get(self, fingerprint: str) -> Certificate:
        cert = self.find(fingerprint)
        if cert is None:
            raise NotFoundError(f"Certificate {fingerprint} not found")
        return cert

    def list(self) -> list[Certificate]:
        self._ensure_loaded()
        with self._rw.read():
            return sorted(self._certs.values(), key=lambda c: (c.name.lower(), c.fingerprint))

    def __len__(self) -> int:
        with self._rw.read():
            return len(self._certs)

    def __contains__(self, fingerprint: str) -> bool:
        with self._rw.read():
            return self.normalize_fingerprint(fingerprint) in self._certs

    def find_by_path(self, path: str | Path) -> Certificate | None:
        target = str(Path(path).resolve())
        with self._rw.read():
            for cert in self._certs.values():
                if target in cert.paths.values():
                    return cert
        return None

    def find_companion_owner(self, path: str | Path) -> Certificate | None:
        """The certificate whose primary shares *path*'s directory and stem."""
        p = Path(path).resolve()
        with self._rw.read():
            for cert in self._certs.values():
                primary = cert.primary_path
                if primary is None:
                    continue
                pp = Path(primary)
                if pp.parent == p.parent and pp.stem == p.stem:
                    return cert
        return None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def dispatch(self, event: str, payload: dict[str, Any]) -> None:
        if self.hooks is not None:
            self.hooks.dispatch(event, payload)

    def run_deploy(self, cert: Certificate) -> dict[str, Any]:
        """Run *cert*'s deploy actions; the caller holds its mutex."""
        if self.pipeline is None:
            log.warning("No deploy pipeline configured; skipping actions for %s", cert.name)
            return {"success": True, "actionsExecuted": 0, "failures": [], "details": []}
        result = self.pipeline.run(cert)
        self.dispatch(
            "deploy.completed",
            {"name": cert.name, "fingerprint": cert.fingerprint, **result},
        )
        return result

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    def create(self, options: dict[str, Any]) -> Certificate:
        """Issue a new certificate from an API-style option mapping."""
        name = str(options.get("name") or "").strip()
        if not name:
            raise ValidationError("Certificate name is required")
        stem = re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-.")
        if not stem or not _FILE_STEM_RE.match(stem):
            raise ValidationError(f"Invalid certificate name: {name!r}")
        self._ensure_loaded()

        raw_type = options.get("certType") or options.get("type") or CertType.STANDARD.value
        try:
            cert_type = CertType(raw_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown certificate type: {raw_type!r}") from exc

        domains = [validate_domain(d) for d in options.get("domains") or []]
        ips = [validate_ip(i) for i in options.get("ips") or []]
        sign_with_ca = bool(options.get("signWithCA", False))
        if cert_type is CertType.ROOT_CA and sign_with_ca:
            raise ValidationError("A root CA cannot be signed by another CA")
        if cert_type is CertType.INTERMEDIATE_CA and not sign_with_ca:
            raise ValidationError("An intermediate CA must be signed by a CA")

        days = int(options.get("days") or options.get("validityDays") or self.default_validity_days)
        key_type = str(options.get("keyType") or KeyType.RSA.value).upper()
        key_size = int(options.get("keySize") or 2048)
        passphrase = options.get("passphrase") or None
        path_len = options.get("pathLenConstraint")

        ca: Certificate | None = None
        ca_pass: str | None = None
        if sign_with_ca:
            ca_fp = options.get("caFingerprint")
            if not ca_fp:
                raise CANotFoundError("signWithCA requires caFingerprint")
            ca = self.find(ca_fp)
            if ca is None:
                raise CANotFoundError(f"Signing CA {ca_fp} not found")
            if not ca.is_ca:
                raise InvalidCAError(f"Certificate {ca.name} is not a CA")
            if not ca.primary_path or not ca.key_path:
                raise InvalidCAError(f"CA {ca.name} has no certificate or key file")
            ca_pass = self.renewer.key_passphrase(ca, options.get("caPassphrase"))

        is_ca = cert_type.is_ca
        cfg = ExtensionConfig(
            common_name=name,
            organization=options.get("organization"),
            organizational_unit=options.get("organizationalUnit"),
            country=options.get("country"),
            state=options.get("state"),
            locality=options.get("locality"),
            domains=domains,
            ips=ips,
            is_ca=is_ca,
            path_length=int(path_len) if is_ca and path_len is not None else None,
            key_usage=CA_KEY_USAGE if is_ca else LEAF_KEY_USAGE,
            extended_key_usage=() if is_ca else LEAF_EXTENDED_KEY_USAGE,
        )

        base = self.certs_dir / stem
        crt_path = base.with_suffix(".crt")
        key_path = base.with_suffix(".key")
        csr_path = base.with_suffix(".csr")
        ext_path = base.with_suffix(".ext")
        if crt_path.exists() or key_path.exists():
            raise DuplicateError(f"Files for {stem} already exist in {self.certs_dir}")

        created = [crt_path, key_path, csr_path, ext_path]
        self.ignore_list.add(created, self.ignore_ttl)
        with operation_context(certificate=name, task="create"):
            try:
                self.certs_dir.mkdir(parents=True, exist_ok=True)
                cfg.write(ext_path)
                self.crypto.generate_key(key_path, key_size, key_type=key_type, passphrase=passphrase)
                self.crypto.create_csr(ext_path, key_path, csr_path, key_passphrase=passphrase)
                if ca is not None:
                    self.crypto.sign_with_ca(
                        csr_path, ca.primary_path, ca.key_path, crt_path, days, ext_path,
                        ca_passphrase=ca_pass,
                    )
                else:
                    self.crypto.create_self_signed(
                        ext_path, key_path, crt_path, days, key_passphrase=passphrase
                    )
                info = self.crypto.parse_certificate(crt_path)
            except (CertError, OSError) as exc:
                for path in created:
                    path.unlink(missing_ok=True)
                if isinstance(exc, OSError):
                    raise StoreIOError(f"Cannot create {name}: {exc}") from exc
                raise

            cert = Certificate(name=name)
            cert.apply_info(info)
            for kind, path in ((PathKind.CRT, crt_path), (PathKind.KEY, key_path),
                               (PathKind.CSR, csr_path), (PathKind.EXT, ext_path)):
                cert.paths[kind.value] = str(path.resolve())
            cert.config = CertificateConfig(
                auto_renew=bool(options.get("autoRenew", False)),
                renew_days_before_expiry=int(
                    options.get("renewDaysBeforeExpiry", self.default_renew_days)
                ),
                sign_with_ca=ca is not None,
                ca_fingerprint=ca.fingerprint if ca is not None else None,
                validity_days=int(options["validityDays"]) if options.get("validityDays") else None,
            )
            cert.description = options.get("description") or ""
            cert.group = options.get("group") or ""
            cert.tags = list(options.get("tags") or [])
            cert.deploy_actions = parse_actions(options.get("deployActions"))
            cert.needs_passphrase = bool(passphrase)
            if passphrase:
                self.vault.store(cert.fingerprint, passphrase)

            with self.load_lock, self._rw.write():
                self._certs[cert.fingerprint] = cert
                self._loaded = True
            self.persist()
            log.info("Created %s certificate %s", cert.cert_type.value, name,
                     extra={"fingerprint": cert.fingerprint})
        self.dispatch(
            "certificate.created",
            {"name": name, "fingerprint": cert.fingerprint, "cert_type": cert.cert_type.value},
        )
        return cert

    def delete(self, fingerprint: str) -> None:
        """Remove the record, its files, its archive subtree and its passphrase."""
        fp = self.normalize_fingerprint(fingerprint)
        with self.locks.hold(fp, "delete"):
            cert = self.get(fp)
            with operation_context(certificate=cert.name, task="delete"):
                paths = list(cert.paths.values())
                self.ignore_list.add(paths, self.ignore_ttl)
                for path in paths:
                    for victim in (Path(path), Path(f"{path}.bak")):
                        try:
                            victim.unlink(missing_ok=True)
                        except OSError as exc:
                            raise StoreIOError(f"Cannot delete {victim}: {exc}") from exc
                self.archive.delete(cert.name)
                self.vault.delete(fp)
                with self.load_lock, self._rw.write():
                    self._certs.pop(fp, None)
                    self._orphans.pop(fp, None)
                self.persist()
                log.info("Deleted certificate %s", cert.name, extra={"fingerprint": fp})
        self.locks.discard(fp)
        self.dispatch("certificate.deleted", {"name": cert.name, "fingerprint": fp})

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def update_config(self, fingerprint: str, patch: dict[str, Any]) -> Certificate:
        """Merge *patch* (camelCase keys) into the user-controlled fields."""
        if not isinstance(patch, dict):
            raise ValidationError("Patch must be an object")
        flat = dict(patch)
        nested = flat.pop("config", None)
        if nested is not None:
            if not isinstance(nested, dict):
                raise ValidationError("config must be an object")
            flat.update(nested)
        unknown = set(flat) - set(CertificateConfig.PATCH_KEYS) - _METADATA_KEYS
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}")

        fp = self.normalize_fingerprint(fingerprint)
        with self.locks.hold(fp, "update"):
            cert = self.get(fp)
            config = CertificateConfig(**vars(cert.config))
            for key, attr in CertificateConfig.PATCH_KEYS.items():
                if key in flat:
                    setattr(config, attr, flat[key])
            config = self._validate_config(config)

            actions = cert.deploy_actions
            if "deployActions" in flat:
                actions = parse_actions(flat["deployActions"])
            tags = cert.tags
            if "tags" in flat:
                if not isinstance(flat["tags"], list):
                    raise ValidationError("tags must be a list")
                tags = [str(t) for t in flat["tags"]]
            name = cert.name
            if "name" in flat:
                name = str(flat["name"] or "").strip()
                if not name:
                    raise ValidationError("name must not be empty")

            with self._rw.write():
                cert.config = config
                cert.deploy_actions = actions
                cert.tags = tags
                cert.name = name
                if "description" in flat:
                    cert.description = str(flat["description"] or "")
                if "group" in flat:
                    cert.group = str(flat["group"] or "")
            self.persist()
        return cert

    def _validate_config(self, config: CertificateConfig) -> CertificateConfig:
        try:
            config.auto_renew = bool(config.auto_renew)
            config.sign_with_ca = bool(config.sign_with_ca)
            config.renew_days_before_expiry = int(config.renew_days_before_expiry)
            if config.validity_days is not None:
                config.validity_days = int(config.validity_days)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid config value: {exc}") from exc
        if config.renew_days_before_expiry < 0:
            raise ValidationError("renewDaysBeforeExpiry must not be negative")
        if config.validity_days is not None and config.validity_days <= 0:
            raise ValidationError("validityDays must be positive")
        if config.ca_fingerprint:
            config.ca_fingerprint = self.normalize_fingerprint(config.ca_fingerprint)
            ca = self.find(config.ca_fingerprint)
            if ca is None:
                raise CANotFoundError(f"Signing CA {config.ca_fingerprint} not found")
            if not ca.is_ca:
                raise InvalidCAError(f"Certificate {ca.name} is not a CA")
        return config

    # ------------------------------------------------------------------
    # SANs
    # ------------------------------------------------------------------

    @staticmethod
    def _classify_san(value: str, san_type: str) -> tuple[SanType, str]:
        try:
            kind = SanType(san_type or SanType.AUTO.value)
        except ValueError as exc:
            raise ValidationError(f"Unknown SAN type: {san_type!r}") from exc
        value = (value or "").strip()
        if not value:
            raise ValidationError("SAN value is required")
        if kind is SanType.AUTO:
            kind = SanType.IP if is_ip_address(value) else SanType.DOMAIN
        if kind is SanType.IP:
            return kind, validate_ip(value)
        return kind, validate_domain(value)

    def add_san(
        self,
        fingerprint: str,
        value: str,
        san_type: str = SanType.AUTO.value,
        staged: bool = True,
    ) -> dict[str, list[str]]:
        """Stage a SAN for the next renewal."""
        if not staged:
            raise ValidationError(
                "Active SANs change only through renewal; stage the entry instead"
            )
        kind, normalized = self._classify_san(value, san_type)
        fp = self.normalize_fingerprint(fingerprint)
        with self.locks.hold(fp, "update"):
            cert = self.get(fp)
            active, idle = (
                (cert.domains, cert.idle_domains)
                if kind is SanType.DOMAIN
                else (cert.ips, cert.idle_ips)
            )
            if normalized in active or normalized in idle:
                raise DuplicateError(f"{normalized} is already present on {cert.name}")
            with self._rw.write():
                idle.append(normalized)
            self.persist()
            return cert.san_view()

    def remove_san(
        self,
        fingerprint: str,
        value: str,
        san_type: str = SanType.AUTO.value,
        staged: bool = True,
    ) -> dict[str, list[str]]:
        """Unstage a SAN; active SANs cannot be removed outside renewal."""
        kind, normalized = self._classify_san(value, san_type)
        fp = self.normalize_fingerprint(fingerprint)
        with self.locks.hold(fp, "update"):
            cert = self.get(fp)
            active, idle = (
                (cert.domains, cert.idle_domains)
                if kind is SanType.DOMAIN
                else (cert.ips, cert.idle_ips)
            )
            if normalized in idle:
                with self._rw.write():
                    idle.remove(normalized)
            elif normalized in active or not staged:
                raise ValidationError(
                    f"{normalized} is in the issued certificate; it can only be dropped by renewal"
                )
            else:
                raise NotFoundError(f"{normalized} is not staged on {cert.name}")
            self.persist()
            return cert.san_view()

    def add_domain(self, fingerprint: str, value: str, staged: bool = True) -> dict[str, list[str]]:
        return self.add_san(fingerprint, value, SanType.DOMAIN.value, staged)

    def add_ip(self, fingerprint: str, value: str, staged: bool = True) -> dict[str, list[str]]:
        return self.add_san(fingerprint, value, SanType.IP.value, staged)

    def remove_domain(self, fingerprint: str, value: str) -> dict[str, list[str]]:
        return self.remove_san(fingerprint, value, SanType.DOMAIN.value)

    def remove_ip(self, fingerprint: str, value: str) -> dict[str, list[str]]:
        return self.remove_san(fingerprint, value, SanType.IP.value)

    # ------------------------------------------------------------------
    # Renewal, deploy, restore
    # ------------------------------------------------------------------

    def renew(self, fingerprint: str, **options: Any) -> RenewalResult:
        return self.renewer.renew(fingerprint, **options)

    def apply_idle_and_renew(self, fingerprint: str, **options: Any) -> RenewalResult:
        """Promote every staged SAN by renewing the certificate now."""
        return self.renewer.renew(fingerprint, **options)

    def commit_renewal(
        self,
        cert: Certificate,
        old_fingerprint: str,
        info: CertInfo,
        previous: PreviousVersion,
    ) -> None:
        """Swap a renewed certificate into the index and persist."""
        with self._rw.write():
            cert.apply_info(info)
            cert.promote_idle()
            cert.previous_versions[old_fingerprint] = previous
            cert.verify_paths()
            cert.needs_passphrase = self._detect_passphrase(cert)
            self._certs.pop(old_fingerprint, None)
            self._orphans.pop(old_fingerprint, None)
            self._orphans.pop(cert.fingerprint, None)
            self._certs[cert.fingerprint] = cert
            for other in self._certs.values():
                if other.config.ca_fingerprint == old_fingerprint:
                    other.config.ca_fingerprint = cert.fingerprint
        if old_fingerprint != cert.fingerprint:
            self.vault.rekey(old_fingerprint, cert.fingerprint)
        self.persist()

    def deploy(self, fingerprint: str) -> dict[str, Any]:
        """Run the deploy actions of one certificate on demand."""
        fp = self.normalize_fingerprint(fingerprint)
        with self.locks.hold(fp, "deploy"):
            cert = self.get(fp)
            with operation_context(certificate=cert.name, task="deploy"):
                return self.run_deploy(cert)

    def restore(self, fingerprint: str, kind: str = PathKind.CRT.value) -> Certificate:
        """Repair a damaged file from ``.bak`` or the archive and reload it."""
        fp = self.normalize_fingerprint(fingerprint)
        with self.locks.hold(fp, "restore"):
            cert = self.get(fp)
            with operation_context(certificate=cert.name, task="restore"):
                target = cert.paths.get(kind) or cert.primary_path
                if target:
                    self.ignore_list.add([target], self.ignore_ttl)
                source = self.archive.restore(cert, kind)
                log.info("Restored %s (%s) from %s", cert.name, kind, source)
                primary = cert.primary_path
                if primary is None:
                    return cert
                with self.load_lock:
                    info = self.crypto.parse_certificate(primary)
                    with self._rw.write():
                        cert.apply_info(info)
                        self._certs.pop(fp, None)
                        self._certs[cert.fingerprint] = cert
                if cert.fingerprint != fp:
                    self.vault.rekey(fp, cert.fingerprint)
                self.persist()
        return cert

    # ------------------------------------------------------------------
    # Passphrases
    # ------------------------------------------------------------------

    def store_passphrase(self, fingerprint: str, passphrase: str) -> None:
        if not passphrase:
            raise ValidationError("Passphrase must not be empty")
        cert = self.get(fingerprint)
        key_path = cert.key_path
        if key_path and self.crypto.is_key_encrypted(key_path):
            try:
                self.crypto.load_private_key(key_path, passphrase)
            except PassphraseRequiredError as exc:
                raise ValidationError(f"Passphrase does not unlock the key of {cert.name}") from exc
        self.vault.store(cert.fingerprint, passphrase)
        log.info("Stored passphrase for %s", cert.name)

    def delete_passphrase(self, fingerprint: str) -> bool:
        cert = self.get(fingerprint)
        return self.vault.delete(cert.fingerprint)

    def has_passphrase(self, fingerprint: str) -> bool:
        cert = self.get(fingerprint)
        return self.vault.has(cert.fingerprint)

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def build_chain(self, fingerprint: str) -> list[Certificate]:
        cert = self.get(fingerprint)
        return chain_mod.build_chain(cert, self.list())

    def find_root_ca(self, fingerprint: str) -> Certificate | None:
        cert = self.get(fingerprint)
        return chain_mod.find_root_ca(cert, self.list())

    def chain(self, fingerprint: str) -> list[dict[str, Any]]:
        return [
            {
                "fingerprint": c.fingerprint,
                "name": c.name,
                "subject": c.subject,
                "certType": c.cert_type.value,
                "selfSigned": c.self_signed,
            }
            for c in self.build_chain(fingerprint)
        ]

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def convert(self, fingerprint: str, fmt: str, password: str | None = None) -> str:
        """Write the certificate in *fmt* next to its primary file."""
        try:
            target = CertificateFormat((fmt or "").lower())
        except ValueError as exc:
            raise ValidationError(f"Unsupported format: {fmt!r}") from exc
        fp = self.normalize_fingerprint(fingerprint)
        with self.locks.hold(fp, "convert"):
            cert = self.get(fp)
            source = cert.primary_path
            if source is None:
                raise ValidationError(f"{cert.name} has no certificate file")
            out_path = Path(source).with_suffix(f".{target.value}")
            chain_paths = tuple(
                c.primary_path
                for c in self.build_chain(fp)[1:]
                if c.primary_path
            )
            key_pass = None
            if target in (CertificateFormat.P12, CertificateFormat.PFX):
                key_pass = self.renewer.key_passphrase(cert, None)
            self.ignore_list.add([out_path], self.ignore_ttl)
            self.crypto.convert(
                source,
                target.value,
                out_path,
                password=password,
                key_path=cert.key_path,
                key_passphrase=key_pass,
                chain_paths=chain_paths,
                friendly_name=cert.name,
            )
            with self._rw.write():
                cert.paths[target.value] = str(out_path.resolve())
            log.info("Converted %s to %s", cert.name, target.value, extra={"path": str(out_path)})
        return str(out_path)

    def get_files(self, fingerprint: str) -> list[dict[str, Any]]:
        cert = self.get(fingerprint)
        files = []
        for kind, path in sorted(cert.paths.items()):
            try:
                size = os.path.getsize(path)
            except OSError:
                continue
            files.append({"type": kind, "path": path, "size": size})
        return files

    def attach_path(self, path: str | Path) -> Certificate | None:
        """Attach a companion file to the certificate sharing its stem."""
        p = Path(path)
        kind = COMPANION_EXTENSIONS.get(p.suffix.lower())
        if kind is None:
            return None
        owner = self.find_companion_owner(p)
        if owner is None:
            return None
        with self.locks.hold(owner.fingerprint, "attach"):
            with self._rw.write():
                owner.add_path(kind.value, str(p.resolve()))
                if kind is PathKind.KEY:
                    owner.needs_passphrase = self._detect_passphrase(owner)
            log.info("Attached %s file %s to %s", kind.value, p, owner.name)
        self.persist()
        return owner

    def history(self, fingerprint: str) -> list[dict[str, Any]]:
        return [v.to_dict() for v in self.get(fingerprint).history()]

    # ------------------------------------------------------------------
    # Deploy actions
    # ------------------------------------------------------------------

    def reorder_deploy_actions(self, fingerprint: str, order: list[int]) -> Certificate:
        """Permute ``deployActions`` by a list of original indices."""
        fp = self.normalize_fingerprint(fingerprint)
        with self.locks.hold(fp, "update"):
            cert = self.get(fp)
            count = len(cert.deploy_actions)
            if (
                not isinstance(order, list)
                or not all(isinstance(i, int) and not isinstance(i, bool) for i in order)
                or sorted(order) != list(range(count))
            ):
                raise ValidationError(
                    f"order must be a permutation of 0..{count - 1}"
                )
            with self._rw.write():
                cert.deploy_actions = [cert.deploy_actions[i] for i in order]
            self.persist()
        return cert

    def running_tasks(self) -> dict[str, dict[str, object]]:
        return self.locks.running_tasks()
