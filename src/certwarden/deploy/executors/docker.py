"""``docker-restart`` action, plus the Docker client used by NPM container mode."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import DockerException, NotFound

from certwarden.core.types import ActionType
from certwarden.deploy.executors.base import ActionExecutor, DeployContext, action_failed

if TYPE_CHECKING:
    from certwarden.models.actions import DockerRestartAction

log = logging.getLogger(__name__)

DEFAULT_RESTART_TIMEOUT = 10


class DockerClientFactory:
    """Builds Docker SDK clients on demand.

    Parameters
    ----------
    base_url:
        Daemon URL (``unix:///var/run/docker.sock``, ``tcp://...``);
        ``None`` means the environment (``DOCKER_HOST`` and friends).

    """

    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = base_url

    def __call__(self, timeout: float) -> Any:  # noqa: ANN401
        if self.base_url:
            return docker.DockerClient(base_url=self.base_url, timeout=int(timeout))
        return docker.from_env(timeout=int(timeout))


def restart_container(
    client_factory: Callable[[float], Any],
    ref: str,
    timeout: float,
    restart_timeout: int | None = None,
) -> None:
    """Restart container *ref* (name or id); raise ``NetworkError`` on failure."""
    client = None
    try:
        client = client_factory(timeout)
        container = client.containers.get(ref)
        container.restart(timeout=restart_timeout or DEFAULT_RESTART_TIMEOUT)
    finally:
        if client is not None:
            client.close()


class DockerRestartExecutor(ActionExecutor):
    action_types = (ActionType.DOCKER_RESTART,)

    def __init__(self, client_factory: Callable[[float], Any] | None = None) -> None:
        self._client_factory = client_factory or DockerClientFactory()

    def execute(self, action: DockerRestartAction, ctx: DeployContext) -> str:  # type: ignore[override]
        ref = action.container_name or action.container_id
        try:
            restart_container(self._client_factory, ref, ctx.timeout, action.restart_timeout)
        except NotFound as exc:
            raise action_failed(action, f"container {ref} not found") from exc
        except DockerException as exc:
            raise action_failed(action, f"docker daemon error: {exc}") from exc
        log.info("Restarted container %s", ref)
        return f"Restarted container {ref}"
