"""Versioned archival of superseded certificate files (and restore)."""

from __future__ import annotations

import filecmp
import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from certwarden.core.errors import NotFoundError, StoreIOError
from certwarden.core.types import PathKind
from certwarden.models.certificate import ArchivedFile

if TYPE_CHECKING:
    from certwarden.crypto.provider import CryptoProvider
    from certwarden.models.certificate import Certificate

log = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")
_DATE_RE = re.compile(r"\.(\d{4}-\d{2}-\d{2})(?:-(\d+))?$")

# Kinds that hold a certificate and can be validated after restore
_CERT_KINDS = frozenset({PathKind.CRT.value, PathKind.PEM.value, PathKind.CER.value})


def safe_dir_name(name: str) -> str:
    cleaned = _UNSAFE_RE.sub("_", name).strip("._")
    return cleaned or "certificate"


def archive_file_name(path: str | Path, valid_from: datetime | None, counter: int = 0) -> str:
    """``<stem>.<YYYY-MM-DD><ext>`` for *path* archived at *valid_from*."""
    p = Path(path)
    date = (valid_from or datetime.now(UTC)).strftime("%Y-%m-%d")
    if counter:
        date = f"{date}-{counter}"
    return f"{p.stem}.{date}{p.suffix}"


@dataclass
class ArchiveResult:
    files: list[ArchivedFile]

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]


class ArchiveManager:
    """Copies a certificate's files into ``archive/<name>/`` before renewal.

    Parameters
    ----------
    archive_dir:
        Root of the archive tree (normally ``<certs_dir>/archive``).
    crypto:
        Used to validate candidates when restoring.

    """

    def __init__(self, archive_dir: str | Path, crypto: CryptoProvider) -> None:
        self.archive_dir = Path(archive_dir)
        self._crypto = crypto

    def directory_for(self, name: str) -> Path:
        return self.archive_dir / safe_dir_name(name)

    def archive(self, cert: Certificate) -> ArchiveResult:
        """Copy every existing file in ``cert.paths``; return what was written."""
        target_dir = self.directory_for(cert.name)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            if os.name != "nt":
                os.chmod(self.archive_dir, 0o755)
                os.chmod(target_dir, 0o755)
        except OSError as exc:
            raise StoreIOError(f"Cannot create archive directory {target_dir}: {exc}") from exc

        archived: list[ArchivedFile] = []
        for kind, path in sorted(cert.paths.items()):
            if not os.path.isfile(path):
                continue
            dest = target_dir / archive_file_name(path, cert.valid_from)
            counter = 1
            while dest.exists():
                if filecmp.cmp(path, dest, shallow=False):
                    break
                dest = target_dir / archive_file_name(path, cert.valid_from, counter)
                counter += 1
            else:
                try:
                    shutil.copy2(path, dest)
                except OSError as exc:
                    raise StoreIOError(f"Cannot archive {path}: {exc}") from exc
            archived.append(
                ArchivedFile(
                    type=kind,
                    path=str(dest),
                    relative_path=str(dest.relative_to(self.archive_dir)),
                )
            )
        log.info(
            "Archived %d file(s) for %s",
            len(archived),
            cert.name,
            extra={"certificate": cert.name, "archive_dir": str(target_dir)},
        )
        return ArchiveResult(files=archived)

    # -- restore -----------------------------------------------------------

    def _is_valid(self, path: Path, kind: str) -> bool:
        if kind in _CERT_KINDS:
            return self._crypto.validate_certificate_file(path)
        return path.is_file() and path.stat().st_size > 0

    def candidates(self, cert: Certificate, path: str | Path) -> list[Path]:
        """Archived copies of *path*, newest first."""
        target_dir = self.directory_for(cert.name)
        if not target_dir.is_dir():
            return []
        p = Path(path)
        found: list[tuple[str, int, Path]] = []
        for entry in target_dir.iterdir():
            if not entry.is_file() or entry.suffix != p.suffix:
                continue
            stem = entry.name[: -len(p.suffix)] if p.suffix else entry.name
            match = _DATE_RE.search(stem)
            if match and stem[: match.start()] == p.stem:
                found.append((match.group(1), int(match.group(2) or 0), entry))
        found.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [entry for _, _, entry in found]

    def restore(self, cert: Certificate, kind: str = PathKind.CRT.value) -> Path:
        """Repair ``cert.paths[kind]`` from ``.bak`` or the newest archive copy."""
        path = cert.paths.get(kind)
        if path is None and kind == PathKind.CRT.value:
            path = cert.primary_path
        if path is None:
            raise NotFoundError(f"{cert.name} has no {kind} file to restore")

        backup = Path(f"{path}.bak")
        if backup.is_file() and self._is_valid(backup, kind):
            self._copy_over(backup, Path(path))
            log.info("Restored %s from %s", path, backup)
            return backup

        for candidate in self.candidates(cert, path):
            if self._is_valid(candidate, kind):
                self._copy_over(candidate, Path(path))
                log.info("Restored %s from archive copy %s", path, candidate)
                return candidate
        raise NotFoundError(f"No valid backup or archive copy found for {path}")

    def restore_backup(self, path: str | Path) -> bool:
        """Put ``<path>.bak`` back in place if it exists."""
        backup = Path(f"{path}.bak")
        if not backup.is_file():
            return False
        self._copy_over(backup, Path(path))
        log.warning("Restored %s from backup after a failed replacement", path)
        return True

    @staticmethod
    def _copy_over(source: Path, dest: Path) -> None:
        tmp = dest.with_name(f".{dest.name}.restore")
        try:
            shutil.copy2(source, tmp)
            os.replace(tmp, dest)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StoreIOError(f"Cannot restore {dest}: {exc}") from exc

    def delete(self, name: str) -> None:
        target_dir = self.directory_for(name)
        if target_dir.is_dir():
            shutil.rmtree(target_dir, ignore_errors=False)
            log.info("Removed archive directory %s", target_dir)
