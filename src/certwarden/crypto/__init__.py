"""Crypto Provider: key generation, CSR, signing, parsing, conversion.

Public API::

    from certwarden.crypto import CryptoProvider, CertInfo, ExtensionConfig
"""

from certwarden.crypto.extensions import ExtensionConfig
from certwarden.crypto.provider import CertInfo, CryptoProvider, normalize_dn

__all__ = ["CertInfo", "CryptoProvider", "ExtensionConfig", "normalize_dn"]
