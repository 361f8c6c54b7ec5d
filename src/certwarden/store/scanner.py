"""Directory scanning and companion-file discovery."""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from certwarden.core.types import PathKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from certwarden.crypto.provider import CertInfo, CryptoProvider

log = logging.getLogger(__name__)

# Extension -> path kind for files that carry a certificate
PRIMARY_EXTENSIONS: dict[str, PathKind] = {
    ".crt": PathKind.CRT,
    ".pem": PathKind.PEM,
    ".cer": PathKind.CER,
    ".cert": PathKind.CRT,
}

# Extension -> path kind for files found next to a primary
COMPANION_EXTENSIONS: dict[str, PathKind] = {
    ".key": PathKind.KEY,
    ".csr": PathKind.CSR,
    ".chain": PathKind.CHAIN,
    ".fullchain": PathKind.FULLCHAIN,
    ".p12": PathKind.P12,
    ".pfx": PathKind.PFX,
    ".der": PathKind.DER,
    ".p7b": PathKind.P7B,
    ".ext": PathKind.EXT,
}

EXCLUDED_DIRS = frozenset({"backups", "archive", "node_modules"})


def is_primary(path: str | Path) -> bool:
    return Path(path).suffix.lower() in PRIMARY_EXTENSIONS


def is_companion(path: str | Path) -> bool:
    return Path(path).suffix.lower() in COMPANION_EXTENSIONS


def is_excluded(
    path: str | Path,
    root: str | Path,
    extra_patterns: Iterable[str] = (),
) -> bool:
    """True for hidden files, excluded directories and *extra_patterns*."""
    p = Path(path)
    try:
        rel = p.resolve().relative_to(Path(root).resolve())
        parts = rel.parts
    except ValueError:
        parts = p.parts
    for part in parts:
        if part.startswith(".") or part in EXCLUDED_DIRS:
            return True
    if p.name.endswith(".bak") or ".corrupt-" in p.name:
        return True
    rel_posix = "/".join(parts)
    return any(
        fnmatch.fnmatch(rel_posix, pattern) or fnmatch.fnmatch(p.name, pattern)
        for pattern in extra_patterns
    )


def scan_directory(
    root: str | Path,
    extra_patterns: Iterable[str] = (),
) -> list[Path]:
    """Every primary certificate file under *root*, sorted by path."""
    root_path = Path(root)
    if not root_path.is_dir():
        log.warning("Certificates directory %s does not exist", root_path)
        return []
    patterns = tuple(extra_patterns)
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root_path):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in EXCLUDED_DIRS
        )
        for filename in filenames:
            path = Path(dirpath) / filename
            if is_primary(path) and not is_excluded(path, root_path, patterns):
                found.append(path)
    return sorted(found)


def find_companions(primary: str | Path) -> dict[str, str]:
    """Companion files sharing *primary*'s stem in the same directory."""
    p = Path(primary)
    companions: dict[str, str] = {}
    for ext, kind in COMPANION_EXTENSIONS.items():
        candidate = p.with_suffix(ext)
        if candidate.is_file():
            companions[kind.value] = str(candidate.resolve())
    return companions


class ParseCache:
    """Parsed :class:`CertInfo` keyed by ``(path, mtime_ns, size)``."""

    def __init__(self, crypto: CryptoProvider, ttl_seconds: float = 300) -> None:
        self._crypto = crypto
        self._ttl = ttl_seconds
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, int, int], tuple[float, CertInfo]] = {}

    def parse(self, path: str | Path) -> CertInfo:
        st = os.stat(path)
        key = (str(Path(path).resolve()), st.st_mtime_ns, st.st_size)
        now = time.monotonic()
        with self._lock:
            hit = self._entries.get(key)
            if hit is not None and now - hit[0] < self._ttl:
                return hit[1]
        info = self._crypto.parse_certificate(path)
        with self._lock:
            self._entries[key] = (now, info)
        return info

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def prune(self) -> None:
        now = time.monotonic()
        with self._lock:
            for key in [k for k, (ts, _) in self._entries.items() if now - ts >= self._ttl]:
                del self._entries[key]
