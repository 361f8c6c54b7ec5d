"""certwarden configuration loader.

Lifecycle::

    # The CLI builds the config once and passes it down explicitly
    config = CertwardenConfig(config_file="/etc/certwarden/config.yaml")
    app = create_app(config)

    config.settings.renewal.schedule     # typed access
    config.get("deploy.npm.host")        # dynamic dot-path access

Steps: read YAML, resolve ``${VAR}`` / ``${VAR:-default}`` references,
validate against the bundled JSON Schema, run cross-field checks, then
build the frozen settings tree.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from croniter import croniter
from jsonschema import Draft202012Validator

from certwarden.config.settings import CertwardenSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

log = logging.getLogger(__name__)

_MISSING = object()


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when loading or validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with the env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(data: Any, path: str = "") -> None:  # noqa: ANN401
    """Walk *data* in place and resolve ``${VAR}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _coerce_scalars(data: Any, schema: dict) -> None:  # noqa: ANN401
    """Turn env-substituted strings back into the numbers/booleans the schema wants."""
    if not isinstance(data, dict):
        return
    props = schema.get("properties", {})
    for key, value in data.items():
        sub = props.get(key)
        if sub is None:
            continue
        expected = sub.get("type")
        if isinstance(value, str):
            if expected == "integer" and re.fullmatch(r"-?\d+", value):
                data[key] = int(value)
            elif expected == "number" and re.fullmatch(r"-?\d+(\.\d+)?", value):
                data[key] = float(value)
            elif expected == "boolean" and value.lower() in ("true", "false"):
                data[key] = value.lower() == "true"
        elif isinstance(value, dict):
            _coerce_scalars(value, sub)


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class CertwardenConfig:
    """Validated configuration for one certwarden process.

    Parameters
    ----------
    config_file:
        Path to the YAML/JSON configuration file.
    data:
        Raw configuration mapping, used instead of *config_file*
        (tests and embedding).

    """

    def __init__(
        self,
        *,
        config_file: str | Path | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.config_file = Path(config_file) if config_file is not None else None
        if data is not None:
            raw = copy.deepcopy(data)
        elif self.config_file is not None:
            raw = self._read(self.config_file)
        else:
            raw = {}
        _resolve_env_vars(raw)
        self._schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
        _coerce_scalars(raw, self._schema)
        self._data = raw
        self._validate_schema()
        self.additional_checks()
        try:
            self._settings = build_settings(self._data)
        except (KeyError, ValueError) as exc:
            raise ConfigValidationError([str(exc)]) from exc

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigValidationError([f"Cannot read config file {path}: {exc}"]) from exc
        try:
            loaded = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigValidationError([f"Invalid YAML in {path}: {exc}"]) from exc
        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise ConfigValidationError([f"{path} must contain a mapping at the top level"])
        return loaded

    def _validate_schema(self) -> None:
        validator = Draft202012Validator(self._schema)
        errors = [
            f"{'.'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
            for err in sorted(validator.iter_errors(self._data), key=lambda e: list(e.path))
        ]
        if errors:
            raise ConfigValidationError(errors)

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> CertwardenSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    def get(self, dotted: str, default: Any = None) -> Any:  # noqa: ANN401
        node: Any = self._data
        for part in dotted.split("."):
            if not isinstance(node, dict):
                return default
            node = node.get(part, _MISSING)
            if node is _MISSING:
                return default
        return node

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:
        """Semantic checks the schema cannot express."""
        errors: list[str] = []

        renewal = self._data.get("renewal") or {}
        schedule = renewal.get("schedule", "0 0 * * *")
        if not croniter.is_valid(schedule):
            errors.append(f"renewal.schedule is not a valid cron expression: {schedule!r}")

        watcher = self._data.get("watcher") or {}
        for key in ("stability_ms", "companion_stability_ms"):
            if key in watcher and watcher[key] <= 0:
                errors.append(f"watcher.{key} must be positive (got {watcher[key]})")

        smtp = self._data.get("smtp") or {}
        port = smtp.get("port", 587)
        if not 1 <= port <= 65535:
            errors.append(f"smtp.port must be between 1 and 65535 (got {port})")
        if smtp.get("username") and not smtp.get("host"):
            errors.append("smtp.host is required when smtp.username is set")

        deploy = self._data.get("deploy") or {}
        for key in ("local_timeout_seconds", "network_timeout_seconds"):
            if key in deploy and deploy[key] <= 0:
                errors.append(f"deploy.{key} must be positive (got {deploy[key]})")

        if errors:
            raise ConfigValidationError(errors)
