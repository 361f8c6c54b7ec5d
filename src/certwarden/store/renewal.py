"""The renewal algorithm.

:class:`Renewer` re-issues one certificate in place: archive the
current files, compose an extension config from the active plus staged
SANs, reuse (or generate) the key, sign into a temporary file, validate
it, swap it in atomically behind a ``.bak``, re-parse, fold the staged
SANs in, append the history entry, persist, then run deploy actions.
The whole sequence runs under the certificate's mutex.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from certwarden.core.errors import (
    CANotFoundError,
    CertError,
    CryptoError,
    InvalidCAError,
    PassphraseRequiredError,
    StoreIOError,
)
from certwarden.crypto.extensions import ExtensionConfig
from certwarden.logging.setup import operation_context
from certwarden.models.certificate import PreviousVersion

if TYPE_CHECKING:
    from certwarden.models.certificate import ArchivedFile, Certificate
    from certwarden.store.store import CertificateStore

log = logging.getLogger(__name__)


@dataclass
class RenewalResult:
    """Outcome of one renewal attempt."""

    name: str
    old_fingerprint: str
    new_fingerprint: str | None = None
    certificate: Certificate | None = None
    archived: list[ArchivedFile] = field(default_factory=list)
    deploy: dict[str, Any] | None = None
    skipped: bool = False
    reason: str | None = None

    @property
    def renewed(self) -> bool:
        return not self.skipped and self.new_fingerprint is not None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "oldFingerprint": self.old_fingerprint,
            "newFingerprint": self.new_fingerprint,
            "renewed": self.renewed,
            "archivedFiles": [f.to_dict() for f in self.archived],
        }
        if self.skipped:
            out["skipped"] = True
            out["reason"] = self.reason
        if self.deploy is not None:
            out["deployResult"] = self.deploy
        if self.certificate is not None:
            out["certificate"] = self.certificate.to_dict()
        return out


class Renewer:
    """Runs the renewal sequence against a :class:`CertificateStore`."""

    def __init__(self, store: CertificateStore) -> None:
        self._store = store

    # -- public ------------------------------------------------------------

    def renew(
        self,
        fingerprint: str,
        *,
        days: int | None = None,
        passphrase: str | None = None,
        ca_passphrase: str | None = None,
        ca_fingerprint: str | None = None,
        scheduled: bool = False,
        deploy: bool = True,
    ) -> RenewalResult:
        store = self._store
        fp = store.normalize_fingerprint(fingerprint)
        with store.locks.hold(fp, "renewal"):
            cert = store.get(fp)
            with operation_context(certificate=cert.name, task="renewal"):
                if scheduled and not cert.config.auto_renew:
                    log.info("Skipping %s: auto-renew is disabled", cert.name)
                    return RenewalResult(
                        name=cert.name,
                        old_fingerprint=fp,
                        skipped=True,
                        reason="auto-renew disabled",
                    )
                return self._renew_locked(
                    cert,
                    days=days,
                    passphrase=passphrase,
                    ca_passphrase=ca_passphrase,
                    ca_fingerprint=ca_fingerprint,
                    deploy=deploy,
                )

    # -- steps -------------------------------------------------------------

    def resolve_ca(self, cert: Certificate, ca_fingerprint: str | None = None) -> Certificate | None:
        """The signing CA for *cert*, or ``None`` to self-sign."""
        store = self._store
        if ca_fingerprint is not None and not cert.config.sign_with_ca:
            raise InvalidCAError(f"{cert.name} is not configured to be signed by a CA")
        if not cert.config.sign_with_ca:
            return None
        ca_fp = ca_fingerprint or cert.config.ca_fingerprint
        if not ca_fp:
            raise InvalidCAError(f"{cert.name} requests CA signing but names no CA")
        ca_fp = store.normalize_fingerprint(ca_fp)
        if ca_fp == cert.fingerprint:
            return None
        ca = store.find(ca_fp)
        if ca is None:
            raise CANotFoundError(f"Signing CA {ca_fp} not found")
        if not ca.is_ca:
            raise InvalidCAError(f"Certificate {ca.name} is not a CA")
        if not ca.primary_path or not ca.key_path:
            raise InvalidCAError(f"CA {ca.name} has no certificate or key file")
        return ca

    def key_passphrase(self, cert: Certificate, supplied: str | None) -> str | None:
        """Passphrase for *cert*'s key: supplied, else vault, else error."""
        key_path = cert.key_path
        if not key_path or not os.path.isfile(key_path):
            return supplied
        if not self._store.crypto.is_key_encrypted(key_path):
            return None
        value = supplied or self._store.vault.get(cert.fingerprint)
        if not value:
            raise PassphraseRequiredError(f"Private key for {cert.name} is encrypted")
        return value

    def _renew_locked(
        self,
        cert: Certificate,
        *,
        days: int | None,
        passphrase: str | None,
        ca_passphrase: str | None,
        ca_fingerprint: str | None,
        deploy: bool,
    ) -> RenewalResult:
        store = self._store
        crypto = store.crypto
        old_fp = cert.fingerprint

        ca = self.resolve_ca(cert, ca_fingerprint)
        key_pass = self.key_passphrase(cert, passphrase)
        ca_pass = self.key_passphrase(ca, ca_passphrase) if ca is not None else None
        validity = days or cert.config.validity_days or store.default_validity_days

        primary = cert.primary_path
        if primary is None:
            raise StoreIOError(f"{cert.name} has no certificate file on disk")
        primary_path = Path(primary)
        key_path = Path(cert.key_path) if cert.key_path else primary_path.with_suffix(".key")

        # Snapshot the outgoing version before anything changes on disk
        previous = PreviousVersion(
            fingerprint=old_fp,
            subject=cert.subject,
            issuer=cert.issuer,
            valid_from=cert.valid_from,
            valid_to=cert.valid_to,
            version=cert.next_version(),
            archived_at=datetime.now(UTC),
        )

        archived = store.archive.archive(cert)
        previous.archived_files = archived.files
        store.ignore_list.add(archived.paths, store.ignore_ttl)

        workdir = Path(tempfile.mkdtemp(prefix="certwarden-renew-"))
        try:
            cfg = ExtensionConfig.for_certificate(cert)
            ext_path = cfg.write(workdir / "renewal.ext")

            new_key: Path | None = None
            signing_key = key_path
            if not self._key_reusable(key_path, key_pass):
                new_key = workdir / "renewal.key"
                crypto.generate_key(
                    new_key,
                    cert.key_size if cert.key_type == "RSA" and cert.key_size else 2048,
                    key_type=cert.key_type if cert.key_type in ("RSA", "EC") else "RSA",
                    passphrase=key_pass,
                )
                signing_key = new_key

            csr_path = workdir / "renewal.csr"
            crypto.create_csr(ext_path, signing_key, csr_path, key_passphrase=key_pass)
            issued = workdir / "renewal.crt"
            if ca is not None:
                crypto.sign_with_ca(
                    csr_path,
                    ca.primary_path,
                    ca.key_path,
                    issued,
                    validity,
                    ext_path,
                    ca_passphrase=ca_pass,
                )
            else:
                crypto.create_self_signed(
                    ext_path, signing_key, issued, validity, key_passphrase=key_pass
                )

            if not crypto.validate_certificate_file(issued):
                raise CryptoError(f"Renewed certificate for {cert.name} failed validation")
            if not cert.is_pem:
                issued = crypto.convert(issued, "der", workdir / "renewal.der")

            with store.load_lock:
                store.ignore_list.add(
                    [primary_path, f"{primary_path}.bak", key_path, *cert.paths.values()],
                    store.ignore_ttl,
                )
                self._replace(primary_path, issued, 0o644)
                key_existed = key_path.is_file()
                key_recorded = cert.paths.get("key")
                key_replaced = False
                try:
                    if new_key is not None:
                        self._replace(key_path, new_key, 0o600)
                        key_replaced = True
                        cert.paths["key"] = str(key_path.resolve())
                    ext_companion = cert.paths.get("ext")
                    if ext_companion:
                        cfg.write(ext_companion)
                    info = crypto.parse_certificate(primary_path)
                except (CertError, OSError):
                    store.archive.restore_backup(primary_path)
                    if key_replaced:
                        self._roll_back_key(cert, key_path, key_existed, key_recorded)
                    raise
                store.commit_renewal(cert, old_fp, info, previous)
        except OSError as exc:
            raise StoreIOError(f"Renewal of {cert.name} failed: {exc}") from exc
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        log.info(
            "Renewed %s",
            cert.name,
            extra={
                "old_fingerprint": old_fp,
                "new_fingerprint": cert.fingerprint,
                "valid_to": cert.valid_to.isoformat() if cert.valid_to else None,
                "signed_by": ca.name if ca is not None else "self",
            },
        )
        store.dispatch(
            "certificate.renewed",
            {
                "name": cert.name,
                "old_fingerprint": old_fp,
                "new_fingerprint": cert.fingerprint,
                "valid_to": cert.valid_to.isoformat() if cert.valid_to else None,
            },
        )

        deploy_result = None
        if deploy and cert.deploy_actions:
            deploy_result = store.run_deploy(cert)

        return RenewalResult(
            name=cert.name,
            old_fingerprint=old_fp,
            new_fingerprint=cert.fingerprint,
            certificate=cert,
            archived=archived.files,
            deploy=deploy_result,
        )

    def _roll_back_key(
        self, cert: Certificate, key_path: Path, existed: bool, recorded: str | None
    ) -> None:
        """Undo a key swap so the restored certificate keeps its own key."""
        cert_paths = cert.paths
        if existed:
            self._store.archive.restore_backup(key_path)
        else:
            key_path.unlink(missing_ok=True)
        if recorded is None:
            cert_paths.pop("key", None)
        else:
            cert_paths["key"] = recorded

    def _key_reusable(self, key_path: Path, passphrase: str | None) -> bool:
        if not key_path.is_file():
            return False
        try:
            self._store.crypto.load_private_key(key_path, passphrase)
        except PassphraseRequiredError:
            raise
        except (CryptoError, StoreIOError) as exc:
            log.warning("Existing key %s is unreadable (%s); generating a new one", key_path, exc)
            return False
        return True

    @staticmethod
    def _replace(target: Path, source: Path, mode: int) -> None:
        """Swap *source* into *target* via ``.bak`` and an atomic rename."""
        if target.exists():
            shutil.copy2(target, f"{target}.bak")
        staging = target.with_name(f".{target.name}.renew")
        try:
            shutil.copyfile(source, staging)
            if os.name != "nt":
                os.chmod(staging, mode)
            os.replace(staging, target)
        except OSError:
            staging.unlink(missing_ok=True)
            if Path(f"{target}.bak").exists():
                shutil.copy2(f"{target}.bak", target)
            raise
