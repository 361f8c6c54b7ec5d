"""JSON routes over the certificate store and renewal scheduler.

Every route maps onto one store or scheduler operation; errors are
:class:`~certwarden.core.errors.CertError` instances rendered by the
app's error handlers.

- ``GET    /certificates``                       list
- ``POST   /certificates``                       create
- ``GET    /certificates/<fp>``                  get
- ``PATCH  /certificates/<fp>``                  update config/metadata
- ``DELETE /certificates/<fp>``                  delete
- ``POST   /certificates/<fp>/renew``            renew
- ``POST   /certificates/<fp>/apply-idle``       renew with staged SANs
- ``POST   /certificates/<fp>/sans``             stage a SAN
- ``DELETE /certificates/<fp>/sans``             unstage a SAN
- ``POST   /certificates/<fp>/convert``          write another format
- ``GET    /certificates/<fp>/files``            file descriptors
- ``GET    /certificates/<fp>/history``          previous versions
- ``GET    /certificates/<fp>/chain``            resolved chain
- ``GET|PUT|DELETE /certificates/<fp>/passphrase``
- ``PUT    /certificates/<fp>/deploy-actions/order``
- ``POST   /certificates/<fp>/deploy``           run deploy actions
- ``POST   /certificates/<fp>/restore``          repair from backup/archive
- ``GET    /renewal/status`` / ``POST /renewal/check``
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, jsonify, request

from certwarden.app.context import get_container
from certwarden.core.errors import ValidationError
from certwarden.core.types import SanType

log = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


def _body() -> dict[str, Any]:
    """The JSON request body; empty bodies read as ``{}``."""
    if not request.get_data():
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _renew_options(body: dict[str, Any]) -> dict[str, Any]:
    days = body.get("days")
    if days is not None and (not isinstance(days, int) or isinstance(days, bool) or days <= 0):
        raise ValidationError("days must be a positive integer")
    return {
        "days": days,
        "passphrase": body.get("passphrase"),
        "ca_passphrase": body.get("caPassphrase"),
        "ca_fingerprint": body.get("caFingerprint"),
    }


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


@api_bp.route("/certificates", methods=["GET"])
def list_certificates():
    store = get_container().store
    certs = store.load(force_refresh=request.args.get("refresh") in ("1", "true"))
    return jsonify([c.to_dict() for c in certs])


@api_bp.route("/certificates", methods=["POST"])
def create_certificate():
    container = get_container()
    with container.shutdown_coordinator.track("create"):
        cert = container.store.create(_body())
    return jsonify(cert.to_dict()), 201


@api_bp.route("/certificates/<fingerprint>", methods=["GET"])
def get_certificate(fingerprint: str):
    return jsonify(get_container().store.get(fingerprint).to_dict())


@api_bp.route("/certificates/<fingerprint>", methods=["PATCH"])
def update_certificate(fingerprint: str):
    cert = get_container().store.update_config(fingerprint, _body())
    return jsonify(cert.to_dict())


@api_bp.route("/certificates/<fingerprint>", methods=["DELETE"])
def delete_certificate(fingerprint: str):
    get_container().store.delete(fingerprint)
    return "", 204


# ---------------------------------------------------------------------------
# Renewal
# ---------------------------------------------------------------------------


@api_bp.route("/certificates/<fingerprint>/renew", methods=["POST"])
def renew_certificate(fingerprint: str):
    container = get_container()
    options = _renew_options(_body())
    with container.shutdown_coordinator.track("renewal"):
        result = container.store.renew(fingerprint, **options)
    return jsonify(result.to_dict())


@api_bp.route("/certificates/<fingerprint>/apply-idle", methods=["POST"])
def apply_idle(fingerprint: str):
    container = get_container()
    options = _renew_options(_body())
    with container.shutdown_coordinator.track("renewal"):
        result = container.store.apply_idle_and_renew(fingerprint, **options)
    return jsonify(result.to_dict())


# ---------------------------------------------------------------------------
# SANs
# ---------------------------------------------------------------------------


def _san_args(body: dict[str, Any]) -> tuple[str, str, bool]:
    value = body.get("value")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("value is required")
    san_type = body.get("type", SanType.AUTO.value)
    if san_type not in {t.value for t in SanType}:
        raise ValidationError(f"type must be one of {', '.join(t.value for t in SanType)}")
    return value.strip(), san_type, bool(body.get("staged", True))


@api_bp.route("/certificates/<fingerprint>/sans", methods=["POST"])
def add_san(fingerprint: str):
    value, san_type, staged = _san_args(_body())
    view = get_container().store.add_san(fingerprint, value, san_type, staged)
    return jsonify(view), 201


@api_bp.route("/certificates/<fingerprint>/sans", methods=["DELETE"])
def remove_san(fingerprint: str):
    value, san_type, staged = _san_args(_body())
    view = get_container().store.remove_san(fingerprint, value, san_type, staged)
    return jsonify(view)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@api_bp.route("/certificates/<fingerprint>/convert", methods=["POST"])
def convert_certificate(fingerprint: str):
    body = _body()
    fmt = body.get("format")
    if not isinstance(fmt, str) or not fmt:
        raise ValidationError("format is required")
    path = get_container().store.convert(fingerprint, fmt.lower(), body.get("password"))
    return jsonify({"path": path, "format": fmt.lower()})


@api_bp.route("/certificates/<fingerprint>/files", methods=["GET"])
def certificate_files(fingerprint: str):
    return jsonify(get_container().store.get_files(fingerprint))


@api_bp.route("/certificates/<fingerprint>/history", methods=["GET"])
def certificate_history(fingerprint: str):
    return jsonify(get_container().store.history(fingerprint))


@api_bp.route("/certificates/<fingerprint>/chain", methods=["GET"])
def certificate_chain(fingerprint: str):
    return jsonify(get_container().store.chain(fingerprint))


@api_bp.route("/certificates/<fingerprint>/restore", methods=["POST"])
def restore_certificate(fingerprint: str):
    kind = _body().get("kind", "crt")
    cert = get_container().store.restore(fingerprint, kind)
    return jsonify(cert.to_dict())


# ---------------------------------------------------------------------------
# Passphrases
# ---------------------------------------------------------------------------


@api_bp.route("/certificates/<fingerprint>/passphrase", methods=["GET"])
def has_passphrase(fingerprint: str):
    return jsonify({"hasPassphrase": get_container().store.has_passphrase(fingerprint)})


@api_bp.route("/certificates/<fingerprint>/passphrase", methods=["PUT"])
def store_passphrase(fingerprint: str):
    passphrase = _body().get("passphrase")
    if not isinstance(passphrase, str):
        raise ValidationError("passphrase is required")
    get_container().store.store_passphrase(fingerprint, passphrase)
    return jsonify({"hasPassphrase": True})


@api_bp.route("/certificates/<fingerprint>/passphrase", methods=["DELETE"])
def delete_passphrase(fingerprint: str):
    get_container().store.delete_passphrase(fingerprint)
    return "", 204


# ---------------------------------------------------------------------------
# Deploy actions
# ---------------------------------------------------------------------------


@api_bp.route("/certificates/<fingerprint>/deploy-actions/order", methods=["PUT"])
def reorder_deploy_actions(fingerprint: str):
    order = _body().get("order")
    cert = get_container().store.reorder_deploy_actions(fingerprint, order)
    return jsonify([a.to_dict(mask_secrets=True) for a in cert.deploy_actions])


@api_bp.route("/certificates/<fingerprint>/deploy", methods=["POST"])
def deploy_certificate(fingerprint: str):
    container = get_container()
    with container.shutdown_coordinator.track("deploy"):
        result = container.store.deploy(fingerprint)
    return jsonify(result)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


@api_bp.route("/renewal/status", methods=["GET"])
def renewal_status():
    return jsonify(get_container().scheduler.status())


@api_bp.route("/renewal/check", methods=["POST"])
def renewal_check():
    container = get_container()
    force_all = bool(_body().get("forceAll", False))
    with container.shutdown_coordinator.track("renewal-check"):
        result = container.scheduler.check_for_renewals(force_all=force_all)
    return jsonify(result)
