"""HTTP API layer: Flask blueprint registration.

Call :func:`register_blueprints` during application startup to wire
the JSON routes into the Flask app.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

log = logging.getLogger(__name__)

API_PREFIX = "/api"


def register_blueprints(app: Flask) -> None:
    """Register the certificate and scheduler blueprints under ``/api``."""
    from certwarden.api.routes import api_bp  # noqa: PLC0415

    app.register_blueprint(api_bp, url_prefix=API_PREFIX)
    log.debug("API blueprint registered at %s", API_PREFIX)
