"""Issuer/parent resolution over the certificates in the store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from certwarden.crypto.provider import normalize_dn

if TYPE_CHECKING:
    from collections.abc import Iterable

    from certwarden.models.certificate import Certificate

MAX_CHAIN_DEPTH = 10


def find_parent(cert: Certificate, candidates: Iterable[Certificate]) -> Certificate | None:
    """Resolve *cert*'s issuer among *candidates*.

    A self-signed certificate is its own parent.  Otherwise the match is
    tried by authority key id, then by exact (normalized) issuer DN, then
    by issuer CN appearing in a candidate's subject.
    """
    if cert.self_signed:
        return cert
    others = [c for c in candidates if c.fingerprint != cert.fingerprint]

    if cert.authority_key_id:
        for cand in others:
            if cand.key_id and cand.key_id == cert.authority_key_id:
                return cand

    if cert.issuer:
        issuer = normalize_dn(cert.issuer)
        for cand in others:
            if cand.subject and normalize_dn(cand.subject) == issuer:
                return cand

    if cert.issuer_cn:
        for cand in others:
            if cand.subject and cert.issuer_cn in cand.subject:
                return cand
    return None


def build_chain(cert: Certificate, candidates: Iterable[Certificate]) -> list[Certificate]:
    """Walk from *cert* up to its root; at most :data:`MAX_CHAIN_DEPTH` hops."""
    pool = list(candidates)
    chain = [cert]
    seen = {cert.fingerprint}
    current = cert
    for _ in range(MAX_CHAIN_DEPTH):
        parent = find_parent(current, pool)
        if parent is None or parent is current or parent.fingerprint in seen:
            break
        chain.append(parent)
        seen.add(parent.fingerprint)
        current = parent
    return chain


def find_root_ca(cert: Certificate, candidates: Iterable[Certificate]) -> Certificate | None:
    last = build_chain(cert, candidates)[-1]
    if last.self_signed and last.is_ca:
        return last
    return None
