"""Flask application factory for certwarden.

Usage::

    from certwarden.app import create_app
    from certwarden.config import CertwardenConfig

    app = create_app(CertwardenConfig(config_file="config.yaml"))
"""

from __future__ import annotations

import atexit
import logging
from typing import TYPE_CHECKING

from flask import Flask, jsonify

if TYPE_CHECKING:
    from certwarden.app.context import Container
    from certwarden.config.loader import CertwardenConfig

log = logging.getLogger(__name__)


def create_app(
    config: CertwardenConfig,
    container: Container | None = None,
    *,
    start_services: bool = False,
) -> Flask:
    """Create and configure the certwarden Flask application.

    Parameters
    ----------
    config:
        Loaded :class:`CertwardenConfig`.
    container:
        Pre-built dependency container; built from *config* when
        ``None``.
    start_services:
        Start the scheduler and watcher immediately.  Under gunicorn
        they are started per worker by ``post_worker_init`` instead.

    Returns
    -------
    Flask
        Fully configured WSGI application.

    """
    settings = config.settings

    app = Flask("certwarden")
    app.config["CERTWARDEN_SETTINGS"] = settings
    app.config["CERTWARDEN_CONFIG"] = config
    app.json.sort_keys = False

    from certwarden.app.errors import register_error_handlers  # noqa: PLC0415

    register_error_handlers(app)

    if container is None:
        from certwarden.app.context import Container  # noqa: PLC0415

        container = Container(settings)
    app.extensions["container"] = container
    app.extensions["shutdown_coordinator"] = container.shutdown_coordinator
    atexit.register(container.stop)

    from certwarden.api import register_blueprints  # noqa: PLC0415

    register_blueprints(app)
    _register_health(app)

    if start_services:
        container.start()

    log.info("certwarden application created (certs_dir=%s)", settings.paths.certs_dir)
    return app


def _register_health(app: Flask) -> None:
    @app.route("/livez", methods=["GET"])
    def livez():
        from certwarden import __version__  # noqa: PLC0415

        container = app.extensions["container"]
        return jsonify(
            {
                "alive": True,
                "version": __version__,
                "shuttingDown": container.shutdown_coordinator.is_shutting_down,
            }
        )
