"""Enumerated types shared across certwarden.

All enums inherit from :class:`enum.StrEnum` so their ``.value`` is a
plain string that JSON round-trips naturally through the sidecar.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class CertType(StrEnum):
    ROOT_CA = "rootCA"
    INTERMEDIATE_CA = "intermediateCA"
    STANDARD = "standard"

    @property
    def is_ca(self) -> bool:
        return self is not CertType.STANDARD


class KeyType(StrEnum):
    RSA = "RSA"
    EC = "EC"
    DSA = "DSA"
    ED25519 = "Ed25519"
    ED448 = "Ed448"


class SanType(StrEnum):
    DOMAIN = "domain"
    IP = "ip"
    AUTO = "auto"


class CertificateFormat(StrEnum):
    PEM = "pem"
    DER = "der"
    P12 = "p12"
    PFX = "pfx"
    P7B = "p7b"
    CRT = "crt"
    CER = "cer"


# ---------------------------------------------------------------------------
# File kinds (keys of Certificate.paths)
# ---------------------------------------------------------------------------


class PathKind(StrEnum):
    CRT = "crt"
    KEY = "key"
    CSR = "csr"
    PEM = "pem"
    P12 = "p12"
    PFX = "pfx"
    DER = "der"
    P7B = "p7b"
    CER = "cer"
    CHAIN = "chain"
    FULLCHAIN = "fullchain"
    EXT = "ext"


# ---------------------------------------------------------------------------
# Deployment
# ---------------------------------------------------------------------------


class ActionType(StrEnum):
    COPY = "copy"
    COMMAND = "command"
    DOCKER_RESTART = "docker-restart"
    NGINX_PROXY_MANAGER = "nginx-proxy-manager"
    SSH_COPY = "ssh-copy"
    SMB_COPY = "smb-copy"
    FTP_COPY = "ftp-copy"
    API_CALL = "api-call"
    WEBHOOK = "webhook"
    EMAIL = "email"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorClass(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    DUPLICATE = "DUPLICATE"
    CRYPTO = "CRYPTO"
    PASSPHRASE_REQUIRED = "PASSPHRASE_REQUIRED"
    CA_NOT_FOUND = "CA_NOT_FOUND"
    INVALID_CA = "INVALID_CA"
    BUSY = "BUSY"
    IO = "IO"
    NETWORK = "NETWORK"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
