"""One executor per deploy action family."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from certwarden.deploy.executors.base import ActionExecutor, DeployContext
from certwarden.deploy.executors.docker import DockerClientFactory, DockerRestartExecutor
from certwarden.deploy.executors.email import EmailExecutor
from certwarden.deploy.executors.http import ApiCallExecutor, WebhookExecutor
from certwarden.deploy.executors.local import CommandExecutor, CopyExecutor
from certwarden.deploy.executors.npm import NpmExecutor
from certwarden.deploy.executors.remote import FtpCopyExecutor, SmbCopyExecutor, SshCopyExecutor

if TYPE_CHECKING:
    from collections.abc import Callable

    from certwarden.config.settings import CertwardenSettings
    from certwarden.notifications.renderer import TemplateRenderer

__all__ = ["ActionExecutor", "DeployContext", "default_executors"]


def default_executors(
    settings: CertwardenSettings,
    renderer: TemplateRenderer,
    docker_factory: Callable[[float], Any] | None = None,
) -> list[ActionExecutor]:
    """Build the standard executor set from configuration."""
    docker_factory = docker_factory or DockerClientFactory(settings.deploy.docker.base_url)
    return [
        CopyExecutor(),
        CommandExecutor(),
        DockerRestartExecutor(docker_factory),
        NpmExecutor(settings.deploy.npm, docker_factory),
        SshCopyExecutor(),
        SmbCopyExecutor(),
        FtpCopyExecutor(),
        ApiCallExecutor(),
        WebhookExecutor(),
        EmailExecutor(settings.smtp, renderer),
    ]
