"""Error taxonomy for certwarden operations.

Every failure surfaced by the store, the renewal path, or the
deployment pipeline is a :class:`CertError` carrying an
:class:`~certwarden.core.types.ErrorClass`.  The HTTP layer renders
these via :meth:`CertError.to_dict`; the CLI prints ``detail``.

Usage::

    raise NotFoundError(f"Certificate {fp} not found")
"""

from __future__ import annotations

from typing import Any

from certwarden.core.types import ErrorClass

HTTP_STATUS: dict[ErrorClass, int] = {
    ErrorClass.NOT_FOUND: 404,
    ErrorClass.VALIDATION: 400,
    ErrorClass.DUPLICATE: 409,
    ErrorClass.CRYPTO: 422,
    ErrorClass.PASSPHRASE_REQUIRED: 428,
    ErrorClass.CA_NOT_FOUND: 422,
    ErrorClass.INVALID_CA: 422,
    ErrorClass.BUSY: 409,
    ErrorClass.IO: 500,
    ErrorClass.NETWORK: 502,
    ErrorClass.CONFIG: 500,
    ErrorClass.INTERNAL: 500,
}


class CertError(Exception):
    """Base exception for all certwarden operation failures.

    Parameters
    ----------
    detail:
        Human-readable explanation.
    error_class:
        Taxonomy bucket; subclasses fix this.
    retryable:
        Whether the caller may retry the same request unchanged.

    """

    error_class: ErrorClass = ErrorClass.INTERNAL
    retryable: bool = False

    def __init__(
        self,
        detail: str,
        *,
        error_class: ErrorClass | None = None,
        retryable: bool | None = None,
    ) -> None:
        self.detail = detail
        if error_class is not None:
            self.error_class = error_class
        if retryable is not None:
            self.retryable = retryable
        super().__init__(detail)

    @property
    def status(self) -> int:
        return HTTP_STATUS.get(self.error_class, 500)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": self.error_class.value,
            "detail": self.detail,
            "status": self.status,
        }
        if self.retryable:
            body["retryable"] = True
        return body


class NotFoundError(CertError):
    error_class = ErrorClass.NOT_FOUND


class ValidationError(CertError):
    error_class = ErrorClass.VALIDATION


class DuplicateError(CertError):
    error_class = ErrorClass.DUPLICATE


class CryptoError(CertError):
    error_class = ErrorClass.CRYPTO


class PassphraseRequiredError(CertError):
    error_class = ErrorClass.PASSPHRASE_REQUIRED


class CANotFoundError(CertError):
    error_class = ErrorClass.CA_NOT_FOUND


class InvalidCAError(CertError):
    error_class = ErrorClass.INVALID_CA


class BusyError(CertError):
    """The certificate is held by another task; retry later."""

    error_class = ErrorClass.BUSY
    retryable = True


class StoreIOError(CertError):
    error_class = ErrorClass.IO


class NetworkError(CertError):
    error_class = ErrorClass.NETWORK


class ConfigError(CertError):
    error_class = ErrorClass.CONFIG


class InternalError(CertError):
    error_class = ErrorClass.INTERNAL
