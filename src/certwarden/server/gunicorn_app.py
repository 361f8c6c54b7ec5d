"""Run the Flask app under gunicorn without a gunicorn config file.

The scheduler, the watcher and the per-certificate locks are in-process
state, so gunicorn is always started with a single ``gthread`` worker.
The worker starts those background services itself once it has forked,
and stops them when it exits::

    run_gunicorn(create_app(config), config.settings.server)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from flask import Flask

    from certwarden.config.settings import ServerSettings

log = logging.getLogger(__name__)


def post_worker_init(worker) -> None:
    worker.app.application.extensions["container"].start()


def worker_exit(server, worker) -> None:
    worker.app.application.extensions["container"].stop()


def gunicorn_options(settings: ServerSettings) -> dict[str, Any]:
    """gunicorn settings for one worker serving on *settings*' threads."""
    return {
        "bind": f"{settings.bind}:{settings.port}",
        "workers": 1,
        "worker_class": "gthread",
        "threads": settings.threads,
        "timeout": settings.timeout,
        "graceful_timeout": settings.graceful_timeout,
        "post_worker_init": post_worker_init,
        "worker_exit": worker_exit,
        "accesslog": None,
    }


def run_gunicorn(app: Flask, settings: ServerSettings) -> None:
    """Serve *app* with gunicorn until the master process exits.

    Raises
    ------
    RuntimeError
        gunicorn (the ``server`` extra) is not installed.

    """
    try:
        from gunicorn.app.base import BaseApplication  # noqa: PLC0415
    except ImportError:
        raise RuntimeError(
            "gunicorn is not installed; install the server extra with\n"
            "    pip install 'certwarden[server]'\n"
            "or use the Flask development server: certwarden serve --dev"
        ) from None

    options = gunicorn_options(settings)

    class _EmbeddedApplication(BaseApplication):
        def __init__(self) -> None:
            self.application = app
            super().__init__()

        def load_config(self) -> None:
            for key, value in options.items():
                self.cfg.set(key, value)

        def load(self) -> Flask:
            return self.application

    log.info("gunicorn listening on %s with %d thread(s)", options["bind"], settings.threads)
    _EmbeddedApplication().run()
