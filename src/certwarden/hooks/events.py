"""Canonical hook event definitions.

Maps every lifecycle event name to its :class:`~certwarden.hooks.base.Hook`
method.  Imports nothing from the package, so any module may use it.
"""

from __future__ import annotations

EVENT_METHOD_MAP: dict[str, str] = {
    "certificate.created": "on_certificate_created",
    "certificate.renewed": "on_certificate_renewed",
    "certificate.deleted": "on_certificate_deleted",
    "deploy.completed": "on_deploy_completed",
}

KNOWN_EVENTS: frozenset[str] = frozenset(EVENT_METHOD_MAP.keys())
