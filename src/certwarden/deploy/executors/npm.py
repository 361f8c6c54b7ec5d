"""``nginx-proxy-manager`` action.

Three modes, tried in this order:

* **API** (``useAPI``): log in to the NPM admin API, create or update
  the custom certificate named after the certificate, and optionally
  point proxy hosts at it.
* **Local** (``npmPath``): write ``fullchain.pem`` / ``privkey.pem``
  under ``<npmPath>/letsencrypt/live/custom-<name>/`` and drop a
  ``reload.nginx`` flag; restart ``dockerContainer`` if one is named.
* **Container** (``dockerContainer`` only): copy the same two files into
  the container and restart it.
"""

from __future__ import annotations

import io
import logging
import os
import tarfile
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from docker.errors import DockerException, NotFound

from certwarden.core.errors import NetworkError
from certwarden.core.types import ActionType
from certwarden.deploy.executors.base import ActionExecutor, DeployContext, action_failed
from certwarden.deploy.executors.docker import DockerClientFactory, restart_container
from certwarden.deploy.executors.http import http_request, json_body

if TYPE_CHECKING:
    from certwarden.config.settings import NpmSettings
    from certwarden.models.actions import NginxProxyManagerAction

log = logging.getLogger(__name__)

CONTAINER_LIVE_DIR = "/etc/letsencrypt/live"


def folder_name(name: str) -> str:
    return f"custom-{name.replace('.', '-')}"


def _read(path: str) -> str:
    with open(path, encoding="utf-8") as fh:
        return fh.read()


def _pem_material(ctx: DeployContext) -> tuple[str, str, str | None]:
    """``(fullchain, private_key, intermediates)`` as PEM text."""
    cert_pem = _read(ctx.source_path("crt"))
    key_pem = _read(ctx.source_path("key"))
    chain_path = ctx.certificate.paths.get("chain")
    fullchain_path = ctx.certificate.paths.get("fullchain")
    chain_pem = _read(chain_path) if chain_path and os.path.isfile(chain_path) else None
    if fullchain_path and os.path.isfile(fullchain_path):
        fullchain = _read(fullchain_path)
        if chain_pem is None:
            rest = fullchain.replace(cert_pem.strip(), "", 1).strip()
            chain_pem = rest or None
    else:
        fullchain = cert_pem if chain_pem is None else cert_pem.rstrip() + "\n" + chain_pem
    return fullchain, key_pem, chain_pem


class NpmExecutor(ActionExecutor):
    action_types = (ActionType.NGINX_PROXY_MANAGER,)

    def __init__(
        self,
        settings: NpmSettings | None = None,
        docker_factory: Callable[[float], Any] | None = None,
    ) -> None:
        self._settings = settings
        self._docker_factory = docker_factory or DockerClientFactory()

    def execute(self, action: NginxProxyManagerAction, ctx: DeployContext) -> str:  # type: ignore[override]
        fullchain, key_pem, chain_pem = _pem_material(ctx)
        try:
            if action.use_api:
                return self._deploy_api(action, ctx, fullchain, key_pem, chain_pem)
            if action.npm_path:
                return self._deploy_local(action, ctx, fullchain, key_pem)
            return self._deploy_container(action, ctx, fullchain, key_pem)
        except NotFound as exc:
            raise action_failed(action, f"container {action.docker_container} not found") from exc
        except DockerException as exc:
            raise action_failed(action, f"docker daemon error: {exc}") from exc
        except NetworkError as exc:
            raise action_failed(action, exc.detail) from exc
        except OSError as exc:
            raise action_failed(action, str(exc)) from exc

    # -- local -------------------------------------------------------------

    def _deploy_local(
        self,
        action: NginxProxyManagerAction,
        ctx: DeployContext,
        fullchain: str,
        key_pem: str,
    ) -> str:
        root = Path(action.npm_path) / "letsencrypt"
        live = root / "live" / folder_name(ctx.certificate.name)
        live.mkdir(parents=True, exist_ok=True)
        (live / "fullchain.pem").write_text(fullchain, encoding="utf-8")
        key_file = live / "privkey.pem"
        key_file.write_text(key_pem, encoding="utf-8")
        if os.name != "nt":
            os.chmod(key_file, 0o600)
        (root / "reload.nginx").write_text(datetime.now(UTC).isoformat(), encoding="utf-8")
        message = f"Installed certificate into {live}"
        if action.docker_container and action.restart_container:
            restart_container(self._docker_factory, action.docker_container, ctx.timeout)
            message += f"; restarted {action.docker_container}"
        return message

    # -- container ---------------------------------------------------------

    def _deploy_container(
        self,
        action: NginxProxyManagerAction,
        ctx: DeployContext,
        fullchain: str,
        key_pem: str,
    ) -> str:
        target = f"{CONTAINER_LIVE_DIR}/{folder_name(ctx.certificate.name)}"
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            for name, text, mode in (
                ("fullchain.pem", fullchain, 0o644),
                ("privkey.pem", key_pem, 0o600),
            ):
                data = text.encode("utf-8")
                info = tarfile.TarInfo(name)
                info.size = len(data)
                info.mode = mode
                info.mtime = int(time.time())
                tar.addfile(info, io.BytesIO(data))

        client = self._docker_factory(ctx.timeout)
        try:
            container = client.containers.get(action.docker_container)
            container.exec_run(["mkdir", "-p", target])
            if not container.put_archive(target, buf.getvalue()):
                raise DockerException(f"copy into {action.docker_container}:{target} failed")
            if action.restart_container:
                container.restart(timeout=10)
        finally:
            client.close()
        return f"Copied certificate into {action.docker_container}:{target}"

    # -- API ---------------------------------------------------------------

    def _base_url(self, action: NginxProxyManagerAction) -> str:
        defaults = self._settings
        host = action.host or (defaults.host if defaults else "localhost")
        port = action.port or (defaults.port if defaults else 81)
        use_https = action.use_https if action.use_https is not None else (
            defaults.use_https if defaults else False
        )
        return f"{'https' if use_https else 'http'}://{host}:{port}"

    def _login(self, action: NginxProxyManagerAction, base: str, timeout: float) -> str:
        defaults = self._settings
        body, ctype = json_body(
            {
                "identity": action.username or (defaults.username if defaults else ""),
                "secret": action.password or (defaults.password if defaults else ""),
            }
        )
        resp = http_request(
            "POST", f"{base}/api/tokens", headers={"Content-Type": ctype}, body=body, timeout=timeout
        )
        token = (resp.json() or {}).get("token")
        if not token:
            raise NetworkError("NPM login returned no token")
        return token

    def _deploy_api(
        self,
        action: NginxProxyManagerAction,
        ctx: DeployContext,
        fullchain: str,
        key_pem: str,
        chain_pem: str | None,
    ) -> str:
        base = self._base_url(action)
        token = self._login(action, base, ctx.timeout)
        auth = {"Authorization": f"Bearer {token}"}
        name = ctx.certificate.name

        existing = http_request(
            "GET", f"{base}/api/certificates", headers=auth, timeout=ctx.timeout
        ).json() or []
        match = next((c for c in existing if c.get("nice_name") == name), None)

        payload: dict[str, Any] = {
            "nice_name": name,
            "certificate": fullchain,
            "private_key": key_pem,
        }
        if chain_pem:
            payload["intermediate_certificate"] = chain_pem
        body, ctype = json_body(payload)
        headers = {**auth, "Content-Type": ctype}
        if match is not None:
            resp = http_request(
                "PUT", f"{base}/api/certificates/{match['id']}",
                headers=headers, body=body, timeout=ctx.timeout,
            )
            cert_id = match["id"]
            verb = "Updated"
        else:
            resp = http_request(
                "POST", f"{base}/api/certificates", headers=headers, body=body, timeout=ctx.timeout
            )
            cert_id = (resp.json() or {}).get("id")
            verb = "Created"
        log.info("%s NPM certificate %s (id=%s)", verb, name, cert_id)

        applied = 0
        if action.apply_to_hosts and cert_id is not None:
            applied = self._apply_to_hosts(action, base, auth, cert_id, ctx.timeout)
        message = f"{verb} NPM certificate {name} (id={cert_id})"
        if applied:
            message += f"; applied to {applied} proxy host(s)"
        return message

    def _apply_to_hosts(
        self,
        action: NginxProxyManagerAction,
        base: str,
        auth: dict[str, str],
        cert_id: Any,  # noqa: ANN401
        timeout: float,
    ) -> int:
        hosts = http_request(
            "GET", f"{base}/api/nginx/proxy-hosts", headers=auth, timeout=timeout
        ).json() or []
        wanted = [str(entry) for entry in action.apply_to_hosts]
        body, ctype = json_body({"certificate_id": cert_id, "ssl_forced": True, "ssl_enabled": True})
        applied = 0
        for host in hosts:
            names = host.get("domain_names") or []
            if str(host.get("id")) in wanted or any(n in wanted for n in names):
                http_request(
                    "PUT", f"{base}/api/nginx/proxy-hosts/{host['id']}",
                    headers={**auth, "Content-Type": ctype}, body=body, timeout=timeout,
                )
                applied += 1
        return applied
