"""JSON error responses for the HTTP surface.

:class:`~certwarden.core.errors.CertError` renders as
``{type, detail, status}`` with the status its error class maps to.
``BUSY`` responses carry ``Retry-After`` so clients know to come back.
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from certwarden.core.errors import CertError
from certwarden.core.types import ErrorClass

log = logging.getLogger(__name__)

PROBLEM_CONTENT_TYPE = "application/problem+json"
BUSY_RETRY_AFTER_SECONDS = 5


def _problem(body: dict, status: int, headers: dict[str, str] | None = None):
    resp = jsonify(body)
    resp.status_code = status
    resp.headers["Content-Type"] = PROBLEM_CONTENT_TYPE
    resp.headers["Cache-Control"] = "no-store"
    for key, value in (headers or {}).items():
        resp.headers[key] = value
    return resp


def register_error_handlers(app: Flask) -> None:
    """Attach handlers that produce JSON problem bodies for all errors."""

    @app.errorhandler(CertError)
    def _handle_cert_error(exc: CertError):
        headers = {}
        if exc.error_class is ErrorClass.BUSY:
            headers["Retry-After"] = str(BUSY_RETRY_AFTER_SECONDS)
        if exc.status >= 500:
            log.error("%s: %s", exc.error_class.value, exc.detail)
        return _problem(exc.to_dict(), exc.status, headers)

    @app.errorhandler(HTTPException)
    def _handle_http_exception(exc: HTTPException):
        body = {
            "type": "about:blank",
            "title": exc.name,
            "detail": exc.description or "An error occurred",
            "status": exc.code or 500,
        }
        return _problem(body, exc.code or 500)

    @app.errorhandler(Exception)
    def _handle_unhandled(exc: Exception):
        log.exception("Unhandled exception during request")
        body = {
            "type": ErrorClass.INTERNAL.value,
            "detail": "An unexpected internal error occurred",
            "status": 500,
        }
        return _problem(body, 500)
