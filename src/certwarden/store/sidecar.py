"""JSON sidecar persistence for per-certificate metadata.

The sidecar lives in the configuration directory and maps fingerprint
to a user-metadata record.  It is always rewritten atomically
(temp file in the same directory, then :func:`os.replace`).  A corrupt
file is repaired by stripping ``//``/``/* */`` comments and trailing
commas; if that fails, the original is preserved beside it as
``<file>.corrupt-<timestamp>`` and an empty sidecar is used.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from certwarden.core.errors import StoreIOError

log = logging.getLogger(__name__)

SIDECAR_VERSION = 1


def strip_json_comments(text: str) -> str:
    """Remove comments and trailing commas outside JSON strings."""
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        elif ch == ",":
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j < n and text[j] in "}]":
                i += 1
            else:
                out.append(ch)
                i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


class Sidecar:
    """Reader/writer for the sidecar file.

    Parameters
    ----------
    path:
        Location of the JSON file (normally ``<config_dir>/certificates.json``).

    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, dict[str, Any]]:
        """Return ``{fingerprint: record}``; never raises on bad content."""
        if not self.path.is_file():
            log.info("Sidecar %s not found, starting empty", self.path)
            return {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreIOError(f"Cannot read sidecar {self.path}: {exc}") from exc
        if not text.strip():
            log.warning("Sidecar %s is empty, starting empty", self.path)
            return {}

        try:
            doc = json.loads(text)
        except json.JSONDecodeError as exc:
            log.warning("Sidecar %s is not valid JSON (%s), attempting repair", self.path, exc)
            try:
                doc = json.loads(strip_json_comments(text))
            except json.JSONDecodeError:
                self._preserve_corrupt()
                return {}
            log.info("Sidecar %s repaired", self.path)

        if not isinstance(doc, dict):
            self._preserve_corrupt()
            return {}
        certs = doc.get("certificates", doc if "version" not in doc else {})
        if not isinstance(certs, dict):
            self._preserve_corrupt()
            return {}
        return {fp: rec for fp, rec in certs.items() if isinstance(rec, dict)}

    def _preserve_corrupt(self) -> None:
        backup = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
        try:
            shutil.copy2(self.path, backup)
            log.error("Sidecar %s is unreadable; preserved as %s", self.path, backup)
        except OSError:
            log.exception("Sidecar %s is unreadable and could not be preserved", self.path)

    def save(self, records: dict[str, dict[str, Any]]) -> None:
        """Atomically replace the sidecar with *records*."""
        doc = {
            "version": SIDECAR_VERSION,
            "lastUpdate": datetime.now(UTC).isoformat(),
            "certificates": records,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}-", suffix=".tmp"
            )
        except OSError as exc:
            raise StoreIOError(f"Cannot write sidecar {self.path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, indent=2, sort_keys=False, default=str)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as exc:
            Path(tmp).unlink(missing_ok=True)
            raise StoreIOError(f"Cannot write sidecar {self.path}: {exc}") from exc
