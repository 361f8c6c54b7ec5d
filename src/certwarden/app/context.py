"""Dependency container for certwarden.

Built once at startup from the validated settings and stored on the
Flask app via ``app.extensions["container"]``.  Accessible from any
request context with :func:`get_container`.  Nothing here is a module
global; the CLI and tests construct their own containers.

Usage::

    from certwarden.app.context import get_container

    c = get_container()
    cert = c.store.get(fingerprint)
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from flask import current_app

from certwarden.app.shutdown import ShutdownCoordinator
from certwarden.crypto.provider import CryptoProvider
from certwarden.deploy.executors import default_executors
from certwarden.deploy.pipeline import DeployPipeline
from certwarden.hooks.registry import HookRegistry
from certwarden.notifications.renderer import TemplateRenderer
from certwarden.services.ignore_list import IgnoreList
from certwarden.services.scheduler import RenewalScheduler
from certwarden.services.watcher import DirectoryWatcher
from certwarden.store.archive import ArchiveManager
from certwarden.store.sidecar import Sidecar
from certwarden.store.store import CertificateStore
from certwarden.vault.passphrases import PassphraseVault, load_or_create_master_secret

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from certwarden.config.settings import CertwardenSettings

log = logging.getLogger(__name__)

VAULT_KEY_FILE = ".vault-key"


class Container:
    """Application-wide dependency graph.

    Parameters
    ----------
    settings:
        The validated settings tree.
    docker_factory:
        Override for Docker client construction (tests).

    """

    def __init__(
        self,
        settings: CertwardenSettings,
        *,
        docker_factory: Callable[[float], Any] | None = None,
    ) -> None:
        self.settings = settings
        paths = settings.paths
        os.makedirs(paths.certs_dir, exist_ok=True)
        os.makedirs(paths.config_dir, exist_ok=True)

        self.crypto = CryptoProvider()

        master_secret = settings.vault.master_secret or load_or_create_master_secret(
            os.path.join(paths.config_dir, VAULT_KEY_FILE)
        )
        self.vault = PassphraseVault(
            settings.vault.file,
            master_secret,
            iterations=settings.vault.iterations,
        )

        self.archive = ArchiveManager(paths.archive_dir, self.crypto)
        self.ignore_list = IgnoreList(settings.renewal.ignore_ttl_seconds)
        self.hook_registry = HookRegistry(settings.hooks)
        self.renderer = TemplateRenderer(settings.smtp.templates_path)
        self.pipeline = DeployPipeline(
            settings.deploy,
            default_executors(settings, self.renderer, docker_factory),
        )
        self.sidecar = Sidecar(paths.sidecar_file)
        self.store = CertificateStore(
            paths.certs_dir,
            self.sidecar,
            self.crypto,
            self.vault,
            self.archive,
            ignore_list=self.ignore_list,
            pipeline=self.pipeline,
            hooks=self.hook_registry,
            default_renew_days=settings.renewal.default_days_before_expiry,
            default_validity_days=settings.renewal.default_validity_days,
            cache_ttl=settings.store.cache_ttl_seconds,
            ignore_ttl=settings.renewal.ignore_ttl_seconds,
            extra_ignored=settings.watcher.extra_ignored,
        )
        self.watcher = DirectoryWatcher(self.store, settings.watcher)
        self.scheduler = RenewalScheduler(
            self.store,
            settings.renewal,
            watcher_active=lambda: self.watcher.active,
        )
        self.shutdown_coordinator = ShutdownCoordinator(
            graceful_timeout=settings.server.graceful_timeout,
            on_shutdown=self.stop_services,
        )
        self._started = False

    def start(self) -> None:
        """Load the store and start the scheduler and watcher."""
        if self._started:
            return
        self.store.load()
        self.scheduler.start()
        self.watcher.start()
        self._started = True
        log.info("certwarden services started (%d certificate(s))", len(self.store))

    def stop_services(self) -> None:
        self.scheduler.stop()
        self.watcher.stop()

    def stop(self) -> None:
        """Stop background services, drain in-flight work, stop hooks."""
        self.shutdown_coordinator.initiate()
        self.hook_registry.shutdown()
        self._started = False


def get_container() -> Container:
    """Return the :class:`Container` from the current Flask app."""
    container = current_app.extensions.get("container")
    if container is None:
        msg = "Dependency container not available -- was create_app() given a config?"
        raise RuntimeError(msg)
    return container
