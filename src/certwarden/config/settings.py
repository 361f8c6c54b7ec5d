"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders are
what the application actually reads.

Access pattern::

    config = CertwardenConfig(config_file="config.yaml")
    print(config.settings.paths.certs_dir)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PathSettings:
    """Where certificates, the sidecar and the archive live."""

    certs_dir: str
    config_dir: str
    archive_dir: str
    sidecar_file: str


def _build_paths(data: dict | None) -> PathSettings:
    d = data or {}
    certs_dir = os.path.abspath(d.get("certs_dir", "./certs"))
    config_dir = os.path.abspath(d.get("config_dir", "./config"))
    sidecar = d.get("sidecar_file", "certificates.json")
    return PathSettings(
        certs_dir=certs_dir,
        config_dir=config_dir,
        archive_dir=os.path.abspath(d.get("archive_dir") or os.path.join(certs_dir, "archive")),
        sidecar_file=sidecar if os.path.isabs(sidecar) else os.path.join(config_dir, sidecar),
    )


# ---------------------------------------------------------------------------
# Renewal / watcher / store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewalSettings:
    """Cron-driven renewal pass."""

    enabled: bool
    schedule: str
    initial_delay_seconds: float
    default_days_before_expiry: int
    default_validity_days: int
    ignore_ttl_seconds: float
    recent_history: int


def _build_renewal(data: dict | None) -> RenewalSettings:
    d = data or {}
    return RenewalSettings(
        enabled=d.get("enabled", True),
        schedule=d.get("schedule", "0 0 * * *"),
        initial_delay_seconds=d.get("initial_delay_seconds", 5),
        default_days_before_expiry=d.get("default_days_before_expiry", 30),
        default_validity_days=d.get("default_validity_days", 365),
        ignore_ttl_seconds=d.get("ignore_ttl_seconds", 150),
        recent_history=d.get("recent_history", 10),
    )


@dataclass(frozen=True)
class WatcherSettings:
    """Directory watcher debounce and exclusions."""

    enabled: bool
    stability_ms: int
    companion_stability_ms: int
    extra_ignored: tuple[str, ...]


def _build_watcher(data: dict | None) -> WatcherSettings:
    d = data or {}
    return WatcherSettings(
        enabled=d.get("enabled", True),
        stability_ms=d.get("stability_ms", 2000),
        companion_stability_ms=d.get("companion_stability_ms", 1000),
        extra_ignored=tuple(d.get("extra_ignored", [])),
    )


@dataclass(frozen=True)
class StoreSettings:
    cache_ttl_seconds: float


def _build_store(data: dict | None) -> StoreSettings:
    d = data or {}
    return StoreSettings(cache_ttl_seconds=d.get("cache_ttl_seconds", 300))


# ---------------------------------------------------------------------------
# Deploy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NpmSettings:
    """Defaults for nginx-proxy-manager actions in API mode."""

    host: str
    port: int
    use_https: bool
    username: str
    password: str


@dataclass(frozen=True)
class DockerSettings:
    base_url: str | None


@dataclass(frozen=True)
class DeploySettings:
    """Deployment pipeline timeouts and integration defaults."""

    local_timeout_seconds: float
    network_timeout_seconds: float
    npm: NpmSettings
    docker: DockerSettings


def _build_deploy(data: dict | None) -> DeploySettings:
    d = data or {}
    npm = d.get("npm") or {}
    docker = d.get("docker") or {}
    return DeploySettings(
        local_timeout_seconds=d.get("local_timeout_seconds", 10),
        network_timeout_seconds=d.get("network_timeout_seconds", 30),
        npm=NpmSettings(
            host=npm.get("host", "localhost"),
            port=npm.get("port", 81),
            use_https=npm.get("use_https", False),
            username=npm.get("username", ""),
            password=npm.get("password", ""),
        ),
        docker=DockerSettings(base_url=docker.get("base_url")),
    )


# ---------------------------------------------------------------------------
# SMTP
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SmtpSettings:
    """Default SMTP server for ``email`` deploy actions."""

    host: str
    port: int
    username: str
    password: str
    use_tls: bool
    from_address: str
    templates_path: str | None
    timeout_seconds: int


def _build_smtp(data: dict | None) -> SmtpSettings:
    d = data or {}
    return SmtpSettings(
        host=d.get("host", ""),
        port=d.get("port", 587),
        username=d.get("username", ""),
        password=d.get("password", ""),
        use_tls=d.get("use_tls", True),
        from_address=d.get("from_address", "Certificate Manager <cert-manager@localhost>"),
        templates_path=d.get("templates_path"),
        timeout_seconds=d.get("timeout_seconds", 30),
    )


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VaultSettings:
    master_secret: str
    file: str
    iterations: int


def _build_vault(data: dict | None, config_dir: str) -> VaultSettings:
    d = data or {}
    path = d.get("file", ".passphrases.enc")
    return VaultSettings(
        master_secret=d.get("master_secret", ""),
        file=path if os.path.isabs(path) else os.path.join(config_dir, path),
        iterations=d.get("iterations", 390_000),
    )


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HookEntrySettings:
    """Single registered hook entry with events and config."""

    class_path: str
    enabled: bool
    events: tuple[str, ...]
    timeout_seconds: int | None
    config: dict[str, Any]


@dataclass(frozen=True)
class HookSettings:
    """Lifecycle hook system settings (workers, retries, registry)."""

    timeout_seconds: int
    max_workers: int
    max_retries: int
    registered: tuple[HookEntrySettings, ...]


def _build_hooks(data: dict | None) -> HookSettings:
    from certwarden.hooks.events import KNOWN_EVENTS  # noqa: PLC0415

    d = data or {}
    registered = []
    for idx, entry in enumerate(d.get("registered", [])):
        events = tuple(entry.get("events", []))
        for evt in events:
            if evt not in KNOWN_EVENTS:
                msg = (
                    f"hooks.registered[{idx}].events: unknown event "
                    f"'{evt}'. Known events: {sorted(KNOWN_EVENTS)}"
                )
                raise ValueError(msg)
        registered.append(
            HookEntrySettings(
                class_path=entry["class"],
                enabled=entry.get("enabled", True),
                events=events,
                timeout_seconds=entry.get("timeout_seconds"),
                config=entry.get("config", {}),
            )
        )
    return HookSettings(
        timeout_seconds=d.get("timeout_seconds", 30),
        max_workers=d.get("max_workers", 4),
        max_retries=d.get("max_retries", 0),
        registered=tuple(registered),
    )


# ---------------------------------------------------------------------------
# Logging / server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(level=d.get("level", "INFO"), format=d.get("format", "json"))


@dataclass(frozen=True)
class ServerSettings:
    """HTTP server configuration (bind address, threads, timeouts)."""

    bind: str
    port: int
    threads: int
    timeout: int
    graceful_timeout: int


def _build_server(data: dict | None) -> ServerSettings:
    d = data or {}
    return ServerSettings(
        bind=d.get("bind", "127.0.0.1"),
        port=d.get("port", 3000),
        threads=d.get("threads", 8),
        timeout=d.get("timeout", 60),
        graceful_timeout=d.get("graceful_timeout", 30),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertwardenSettings:
    paths: PathSettings
    renewal: RenewalSettings
    watcher: WatcherSettings
    store: StoreSettings
    deploy: DeploySettings
    smtp: SmtpSettings
    vault: VaultSettings
    hooks: HookSettings
    logging: LoggingSettings
    server: ServerSettings


def build_settings(data: dict) -> CertwardenSettings:
    """Build the full typed settings tree from raw config data.

    Called once by :class:`CertwardenConfig` after environment-variable
    resolution and schema validation.
    """
    paths = _build_paths(data.get("paths"))
    return CertwardenSettings(
        paths=paths,
        renewal=_build_renewal(data.get("renewal")),
        watcher=_build_watcher(data.get("watcher")),
        store=_build_store(data.get("store")),
        deploy=_build_deploy(data.get("deploy")),
        smtp=_build_smtp(data.get("smtp")),
        vault=_build_vault(data.get("vault"), paths.config_dir),
        hooks=_build_hooks(data.get("hooks")),
        logging=_build_logging(data.get("logging")),
        server=_build_server(data.get("server")),
    )
