"""Configuration subsystem for certwarden.

Public API::

    from certwarden.config import CertwardenConfig

    config = CertwardenConfig(config_file="config.yaml")
    config.settings.paths.certs_dir
"""

from certwarden.config.loader import CertwardenConfig, ConfigValidationError
from certwarden.config.settings import (
    CertwardenSettings,
    DeploySettings,
    HookEntrySettings,
    HookSettings,
    LoggingSettings,
    PathSettings,
    RenewalSettings,
    ServerSettings,
    SmtpSettings,
    VaultSettings,
    WatcherSettings,
    build_settings,
)

__all__ = [
    "CertwardenConfig",
    "CertwardenSettings",
    "ConfigValidationError",
    "DeploySettings",
    "HookEntrySettings",
    "HookSettings",
    "LoggingSettings",
    "PathSettings",
    "RenewalSettings",
    "ServerSettings",
    "SmtpSettings",
    "VaultSettings",
    "WatcherSettings",
    "build_settings",
]
