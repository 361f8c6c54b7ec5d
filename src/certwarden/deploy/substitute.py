"""Placeholder substitution for deployment action inputs.

Tokens look like ``{name}`` or ``{cert_path}``.  Substitution is
literal and non-escaping, touches strings only, and leaves braces that
do not name a recognized token alone (so JSON bodies and shell
snippets survive intact).
"""

from __future__ import annotations

import re
from typing import Any

PLACEHOLDER_TOKENS = frozenset(
    {
        "name",
        "fingerprint",
        "cert_path",
        "key_path",
        "pem_path",
        "p12_path",
        "chain_path",
        "fullchain_path",
        "domains",
        "domain",
        "valid_from",
        "valid_to",
        "days_until_expiry",
        "cert_type",
        "timestamp",
    }
)

_TOKEN_RE = re.compile(r"\{(" + "|".join(sorted(PLACEHOLDER_TOKENS)) + r")\}")


def substitute(value: Any, tokens: dict[str, str]) -> Any:
    """Return *value* with every recognized ``{token}`` replaced.

    Dicts and lists are processed recursively (keys untouched); other
    types pass through unchanged.
    """
    if isinstance(value, str):
        return _TOKEN_RE.sub(lambda m: str(tokens.get(m.group(1), "")), value)
    if isinstance(value, dict):
        return {k: substitute(v, tokens) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute(v, tokens) for v in value]
    if isinstance(value, tuple):
        return tuple(substitute(v, tokens) for v in value)
    return value
