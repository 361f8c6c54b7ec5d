"""Passphrase Vault: encrypted at-rest storage of private-key passphrases.

Passphrases are keyed by certificate fingerprint and encrypted with a
Fernet key derived (PBKDF2-HMAC-SHA256) from a process-provided master
secret.  The whole bag is re-encrypted and atomically rewritten on
every mutation.

File layout (JSON)::

    {"version": 1, "kdf": "pbkdf2-sha256", "iterations": 390000,
     "salt": "<base64>", "data": "<fernet token>"}
"""

from __future__ import annotations

import base64
import json
import logging
import os
import secrets
import tempfile
import threading
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from certwarden.core.errors import ConfigError, StoreIOError

log = logging.getLogger(__name__)

_VERSION = 1
_SALT_BYTES = 16


def _derive_key(master_secret: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(master_secret.encode("utf-8")))


def load_or_create_master_secret(key_file: str | Path) -> str:
    """Return the master secret stored in *key_file*, creating it once."""
    path = Path(key_file)
    if path.is_file():
        secret = path.read_text(encoding="utf-8").strip()
        if secret:
            return secret
    path.parent.mkdir(parents=True, exist_ok=True)
    secret = secrets.token_urlsafe(32)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(secret)
    log.warning("Generated a new vault master secret at %s", path)
    return secret


class PassphraseVault:
    """Thread-safe encrypted passphrase bag.

    Parameters
    ----------
    path:
        The vault file (normally ``<config_dir>/.passphrases.enc``).
    master_secret:
        Secret the encryption key is derived from.
    iterations:
        PBKDF2 iteration count used when the file is first created.

    """

    def __init__(
        self,
        path: str | Path,
        master_secret: str,
        *,
        iterations: int = 390_000,
    ) -> None:
        if not master_secret:
            raise ConfigError("Passphrase vault requires a master secret")
        self._path = Path(path)
        self._secret = master_secret
        self._iterations = iterations
        self._lock = threading.Lock()
        self._salt: bytes | None = None
        self._fernet: Fernet | None = None
        self._entries: dict[str, str] = {}
        self._load()

    # -- persistence -------------------------------------------------------

    def _load(self) -> None:
        if not self._path.is_file():
            self._salt = os.urandom(_SALT_BYTES)
            self._fernet = Fernet(_derive_key(self._secret, self._salt, self._iterations))
            return

        try:
            doc = json.loads(self._path.read_text(encoding="utf-8"))
            self._salt = base64.b64decode(doc["salt"])
            self._iterations = int(doc.get("iterations", self._iterations))
            self._fernet = Fernet(_derive_key(self._secret, self._salt, self._iterations))
            plaintext = self._fernet.decrypt(doc["data"].encode("ascii"))
            self._entries = json.loads(plaintext)
        except InvalidToken as exc:
            raise ConfigError(
                f"Cannot decrypt passphrase vault {self._path}: wrong master secret?"
            ) from exc
        except (OSError, ValueError, KeyError) as exc:
            raise ConfigError(f"Passphrase vault {self._path} is unreadable: {exc}") from exc
        log.debug("Loaded passphrase vault with %d entries", len(self._entries))

    def _save(self) -> None:
        assert self._fernet is not None and self._salt is not None
        token = self._fernet.encrypt(json.dumps(self._entries).encode("utf-8"))
        doc = {
            "version": _VERSION,
            "kdf": "pbkdf2-sha256",
            "iterations": self._iterations,
            "salt": base64.b64encode(self._salt).decode("ascii"),
            "data": token.decode("ascii"),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".vault-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh)
            if os.name != "nt":
                os.chmod(tmp, 0o600)
            os.replace(tmp, self._path)
        except OSError as exc:
            Path(tmp).unlink(missing_ok=True)
            raise StoreIOError(f"Cannot write passphrase vault: {exc}") from exc

    # -- public API --------------------------------------------------------

    def store(self, fingerprint: str, passphrase: str) -> None:
        with self._lock:
            self._entries[fingerprint] = passphrase
            self._save()

    def get(self, fingerprint: str) -> str | None:
        with self._lock:
            return self._entries.get(fingerprint)

    def has(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def delete(self, fingerprint: str) -> bool:
        with self._lock:
            if fingerprint not in self._entries:
                return False
            del self._entries[fingerprint]
            self._save()
            return True

    def rekey(self, old_fingerprint: str, new_fingerprint: str) -> bool:
        """Move an entry to a new fingerprint after renewal."""
        with self._lock:
            if old_fingerprint not in self._entries or old_fingerprint == new_fingerprint:
                return False
            self._entries[new_fingerprint] = self._entries.pop(old_fingerprint)
            self._save()
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:
        return f"PassphraseVault(path={str(self._path)!r}, entries={len(self)})"
