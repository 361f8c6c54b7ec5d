"""``api-call`` and ``webhook`` actions, and the HTTP helpers NPM reuses."""

from __future__ import annotations

import base64
import json
import logging
import mimetypes
import os
import urllib.error
import urllib.parse
import urllib.request
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from certwarden.core.errors import NetworkError, ValidationError
from certwarden.core.types import ActionType
from certwarden.deploy.executors.base import ActionExecutor, DeployContext, action_failed

if TYPE_CHECKING:
    from certwarden.models.actions import ApiCallAction, WebhookAction

log = logging.getLogger(__name__)

USER_AGENT = "certwarden"
DEFAULT_API_KEY_HEADER = "X-API-Key"


@dataclass
class HttpResponse:
    status: int
    body: bytes

    def json(self) -> Any:  # noqa: ANN401
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError as exc:
            raise NetworkError(f"Response is not JSON: {exc}") from exc

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def http_request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: bytes | None = None,
    timeout: float = 30,
) -> HttpResponse:
    """Send one request; non-2xx and transport errors raise ``NetworkError``."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid URL: {url!r}")
    req = urllib.request.Request(url, data=body, method=method.upper())  # noqa: S310
    req.add_header("User-Agent", USER_AGENT)
    for key, value in (headers or {}).items():
        req.add_header(key, str(value))
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # noqa: S310
            return HttpResponse(status=resp.status, body=resp.read())
    except urllib.error.HTTPError as exc:
        detail = exc.read(500).decode("utf-8", errors="replace") if exc.fp else ""
        raise NetworkError(
            f"{method.upper()} {url} returned HTTP {exc.code}" + (f": {detail}" if detail else "")
        ) from exc
    except (urllib.error.URLError, TimeoutError, OSError) as exc:
        reason = getattr(exc, "reason", exc)
        raise NetworkError(f"{method.upper()} {url} failed: {reason}") from exc


def json_body(payload: Any) -> tuple[bytes, str]:  # noqa: ANN401
    return json.dumps(payload, default=str).encode("utf-8"), "application/json"


def auth_headers(auth: dict[str, Any] | None) -> dict[str, str]:
    """Headers for ``{type: bearer|basic|apiKey, ...}`` auth blocks."""
    if not auth:
        return {}
    kind = str(auth.get("type") or "").lower()
    token = auth.get("bearer") or auth.get("token")
    if kind == "bearer" or (not kind and token):
        if not token:
            raise ValidationError("bearer auth requires 'token'")
        return {"Authorization": f"Bearer {token}"}
    if kind == "basic" or (not kind and auth.get("username")):
        raw = f"{auth.get('username', '')}:{auth.get('password', '')}".encode()
        return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}
    if kind in ("apikey", "api_key") or (not kind and auth.get("apiKey")):
        header = auth.get("apiKeyHeader") or DEFAULT_API_KEY_HEADER
        return {header: str(auth.get("apiKey") or auth.get("key") or "")}
    raise ValidationError(f"Unsupported auth type: {auth.get('type')!r}")


def multipart_body(
    fields: dict[str, Any],
    files: dict[str, str],
) -> tuple[bytes, str]:
    """``multipart/form-data`` with *fields* and *files* ``{field: path}``."""
    boundary = f"----certwarden{uuid.uuid4().hex}"
    parts: list[bytes] = []
    for name, value in fields.items():
        if not isinstance(value, (str, int, float, bool)):
            value = json.dumps(value, default=str)
        parts.append(
            (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
                f"{value}\r\n"
            ).encode()
        )
    for name, path in files.items():
        filename = os.path.basename(path)
        ctype = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        with open(path, "rb") as fh:
            content = fh.read()
        parts.append(
            (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
                f"Content-Type: {ctype}\r\n\r\n"
            ).encode()
            + content
            + b"\r\n"
        )
    parts.append(f"--{boundary}--\r\n".encode())
    return b"".join(parts), f"multipart/form-data; boundary={boundary}"


def certificate_summary(ctx: DeployContext) -> dict[str, Any]:
    cert = ctx.certificate
    return {
        "name": cert.name,
        "fingerprint": cert.fingerprint,
        "subject": cert.subject,
        "issuer": cert.issuer,
        "validFrom": cert.valid_from.isoformat() if cert.valid_from else None,
        "validTo": cert.valid_to.isoformat() if cert.valid_to else None,
        "domains": list(cert.domains),
        "ips": list(cert.ips),
        "isExpired": cert.is_expired(),
        "daysUntilExpiry": cert.days_until_expiry(),
        "certType": cert.cert_type.value,
    }


class ApiCallExecutor(ActionExecutor):
    action_types = (ActionType.API_CALL,)

    def build_body(self, action: ApiCallAction, ctx: DeployContext) -> tuple[bytes | None, str | None]:
        if action.send_files and action.files:
            files = {field: ctx.source_path(key) for field, key in action.files.items()}
            fields: dict[str, Any] = {}
            if isinstance(action.data, dict):
                fields.update(action.data)
            fields.update(action.form_data or {})
            return multipart_body(fields, files)
        if action.json_payload is not None:
            payload = action.json_payload
            if isinstance(payload, str):
                try:
                    payload = json.loads(payload)
                except ValueError as exc:
                    raise ValidationError(f"jsonPayload is not valid JSON: {exc}") from exc
            return json_body(payload)
        if action.form_data:
            encoded = urllib.parse.urlencode(action.form_data, doseq=True).encode("utf-8")
            return encoded, "application/x-www-form-urlencoded"
        if action.data is not None:
            if isinstance(action.data, (dict, list)):
                return json_body(action.data)
            return str(action.data).encode("utf-8"), "text/plain"
        return None, None

    def execute(self, action: ApiCallAction, ctx: DeployContext) -> str:  # type: ignore[override]
        body, ctype = self.build_body(action, ctx)
        headers = dict(action.headers or {})
        if ctype and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = action.content_type or ctype
        headers.update(auth_headers(action.auth))
        try:
            resp = http_request(action.method, action.url, headers=headers, body=body, timeout=ctx.timeout)
        except NetworkError as exc:
            raise action_failed(action, exc.detail) from exc
        return f"{action.method} {action.url} returned HTTP {resp.status}"


class WebhookExecutor(ActionExecutor):
    action_types = (ActionType.WEBHOOK,)

    def envelope(self, action: WebhookAction, ctx: DeployContext) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": action.event or "certificate.deployed",
            "timestamp": datetime.now(UTC).isoformat(),
            "certificate": certificate_summary(ctx),
        }
        if action.custom_data:
            payload["customData"] = action.custom_data
        if action.include_files:
            files = {}
            for key in action.include_files:
                with open(ctx.source_path(key), encoding="utf-8", errors="replace") as fh:
                    files[key] = fh.read()
            payload["files"] = files
        return payload

    def execute(self, action: WebhookAction, ctx: DeployContext) -> str:  # type: ignore[override]
        body, ctype = json_body(self.envelope(action, ctx))
        headers = {"Content-Type": ctype, **(action.headers or {})}
        headers.update(auth_headers(action.auth))
        try:
            resp = http_request(action.method, action.url, headers=headers, body=body, timeout=ctx.timeout)
        except NetworkError as exc:
            raise action_failed(action, exc.detail) from exc
        return f"Webhook {action.event} delivered (HTTP {resp.status})"
