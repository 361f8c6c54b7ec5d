"""Masking of credentials before they reach a log line or an API response.

Deploy actions carry SSH/SMB/FTP passwords, key passphrases, inline
private keys and HTTP tokens.  :func:`sanitize_for_logs` walks any
JSON-like structure and returns a copy in which those values, and the
bodies of embedded PEM blocks, read ``[REDACTED]``.
"""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

# Compared after lower-casing and dropping "_" and "-", so "private_key",
# "privateKey" and "private-key" are one entry.
_SECRET_NAMES = frozenset(
    {
        "password",
        "npmpassword",
        "passphrase",
        "privatekey",
        "secret",
        "mastersecret",
        "token",
        "accesstoken",
        "bearer",
        "apikey",
    }
)

_PEM_BLOCK = re.compile(
    r"(?P<begin>-----BEGIN [A-Z0-9 ]+-----).*?(?P<end>-----END [A-Z0-9 ]+-----)",
    re.S,
)


def is_secret_key(key: str) -> bool:
    return key.lower().replace("_", "").replace("-", "") in _SECRET_NAMES


def sanitize_pem(text: str) -> str:
    """Keep the BEGIN/END lines of every PEM block and drop the body."""
    return _PEM_BLOCK.sub(lambda m: f"{m['begin']}\n{REDACTED}\n{m['end']}", text)


def sanitize_for_logs(data: Any) -> Any:
    """Return a masked copy of *data*; the argument is never modified.

    Empty secrets (``None`` or ``""``) are kept as they are so callers
    can still tell "unset" from "set".
    """
    if isinstance(data, dict):
        return {
            key: (
                REDACTED
                if isinstance(key, str) and is_secret_key(key) and value not in (None, "")
                else sanitize_for_logs(value)
            )
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return type(data)(map(sanitize_for_logs, data))
    if isinstance(data, str) and "-----BEGIN " in data:
        return sanitize_pem(data)
    return data
