"""Typed deployment action records.

Each action in a certificate's ``deployActions`` list is parsed once,
at sidecar load (or when an operator edits the list), into one of the
dataclasses below.  JSON keys are camelCase; Python attributes are
snake_case.  Keys an action type does not know are preserved in
``extra`` so the sidecar round-trips without loss.

Usage::

    action = parse_action({"type": "copy", "source": "crt", "destination": "/out/a.crt"})
    action.to_dict()   # {"type": "copy", "source": "crt", ...}
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

from certwarden.core.errors import ValidationError
from certwarden.core.types import ActionType
from certwarden.deploy.substitute import substitute
from certwarden.logging.sanitize import sanitize_for_logs

log = logging.getLogger(__name__)

# Values accepted for ``source`` that resolve to a certificate path
PATH_SOURCES = frozenset({"cert", "crt", "key", "chain", "fullchain", "p12", "pfx", "pem"})


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _key(default: Any = None, *, key: str | None = None, aliases: tuple[str, ...] = ()):
    """Dataclass field with an explicit JSON key and accepted aliases."""
    metadata = {"key": key, "aliases": aliases}
    if isinstance(default, (dict, list)):
        factory = type(default)
        return field(default_factory=factory, metadata=metadata)
    return field(default=default, metadata=metadata)


def _json_key(f: dataclasses.Field) -> str:
    return f.metadata.get("key") or _camel(f.name)


def _as_int(value: Any, label: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be an integer (got {value!r})") from exc


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


@dataclass
class DeployAction:
    """Common fields shared by every action type."""

    action_type: ClassVar[ActionType]
    required: ClassVar[tuple[str, ...]] = ()
    network: ClassVar[bool] = False

    name: str | None = None
    description: str | None = None
    enabled: bool = True
    timeout: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    # -- (de)serialisation -------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeployAction:
        lookup: dict[str, str] = {}
        for f in dataclasses.fields(cls):
            if f.name == "extra":
                continue
            lookup[_json_key(f)] = f.name
            lookup[f.name] = f.name
            for alias in f.metadata.get("aliases", ()):
                lookup[alias] = f.name

        values: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            if key == "type":
                continue
            attr = lookup.get(key)
            if attr is None:
                extra[key] = value
            else:
                values[attr] = value

        try:
            action = cls(**values, extra=extra)
        except TypeError as exc:
            raise ValidationError(f"Invalid {cls.action_type.value} action: {exc}") from exc
        action.validate()
        return action

    def to_dict(self, *, mask_secrets: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.action_type.value}
        for f in dataclasses.fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is None or (f.name == "enabled" and value is True):
                continue
            if isinstance(value, (dict, list)) and not value:
                continue
            out[_json_key(f)] = value
        for key, value in self.extra.items():
            out.setdefault(key, value)
        return sanitize_for_logs(out) if mask_secrets else out

    # -- behaviour ---------------------------------------------------------

    def validate(self) -> None:
        """Reject records missing required inputs."""
        for attr in self.required:
            value = getattr(self, attr)
            if value is None or value == "" or value == [] or value == {}:
                key = _json_key(next(f for f in dataclasses.fields(self) if f.name == attr))
                raise ValidationError(
                    f"{self.action_type.value} action requires '{key}'",
                )
        if self.timeout is not None:
            try:
                self.timeout = float(self.timeout)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"timeout must be a number (got {self.timeout!r})") from exc
            if self.timeout <= 0:
                raise ValidationError("timeout must be positive")

    def with_placeholders(self, tokens: dict[str, str]) -> DeployAction:
        """Copy of this action with placeholders substituted in every string."""
        changes = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (str, dict, list, tuple)):
                changes[f.name] = substitute(value, tokens)
        return dataclasses.replace(self, **changes)

    @property
    def type_name(self) -> str:
        return self.action_type.value

    @property
    def label(self) -> str:
        return self.name or self.action_type.value


# ---------------------------------------------------------------------------
# Local actions
# ---------------------------------------------------------------------------


@dataclass
class CopyAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.COPY
    required: ClassVar[tuple[str, ...]] = ("source", "destination")

    source: str | None = None
    destination: str | None = None
    permissions: str | int | None = _key(None, aliases=("mode",))


@dataclass
class CommandAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.COMMAND
    required: ClassVar[tuple[str, ...]] = ("command",)

    command: str | None = None
    cwd: str | None = None
    env: dict[str, str] = _key({})


@dataclass
class DockerRestartAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.DOCKER_RESTART
    network = True

    container_name: str | None = None
    container_id: str | None = None
    restart_timeout: int | None = None

    def validate(self) -> None:
        super().validate()
        if not self.container_name and not self.container_id:
            raise ValidationError("docker-restart action requires 'containerName' or 'containerId'")
        self.restart_timeout = _as_int(self.restart_timeout, "restartTimeout")


@dataclass
class NginxProxyManagerAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.NGINX_PROXY_MANAGER
    network = True

    npm_path: str | None = None
    docker_container: str | None = None
    use_api: bool = _key(False, key="useAPI", aliases=("useApi",))
    host: str | None = _key(None, aliases=("npmHost",))
    port: int | None = _key(None, aliases=("npmPort",))
    use_https: bool | None = _key(None, aliases=("npmUseHttps",))
    username: str | None = _key(None, aliases=("npmUsername",))
    password: str | None = _key(None, aliases=("npmPassword",))
    apply_to_hosts: list[Any] = _key([])
    restart_container: bool = True

    def validate(self) -> None:
        super().validate()
        if not (self.npm_path or self.docker_container or self.use_api):
            raise ValidationError(
                "nginx-proxy-manager action requires 'npmPath', 'dockerContainer' or 'useAPI'"
            )
        self.port = _as_int(self.port, "port")


# ---------------------------------------------------------------------------
# Remote copy actions
# ---------------------------------------------------------------------------


@dataclass
class SshCopyAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.SSH_COPY
    required: ClassVar[tuple[str, ...]] = ("host", "source", "destination")
    network = True

    host: str | None = None
    port: int = 22
    username: str | None = None
    password: str | None = None
    private_key: str | None = None
    passphrase: str | None = None
    source: str | None = None
    destination: str | None = None
    permissions: str | int | None = None
    command: str | None = None

    def validate(self) -> None:
        super().validate()
        if not self.password and not self.private_key:
            raise ValidationError("ssh-copy action requires 'password' or 'privateKey'")
        self.port = _as_int(self.port, "port") or 22


@dataclass
class SmbCopyAction(DeployAction):
    """Copy to a Windows share.

    ``share`` is normally a UNC path (``\\\\server\\share[\\dir]``); a bare
    share name needs an explicit ``host``, which also overrides the server
    named in a UNC path.
    """

    action_type: ClassVar[ActionType] = ActionType.SMB_COPY
    required: ClassVar[tuple[str, ...]] = ("share", "source", "destination", "username")
    network = True

    host: str | None = None
    port: int = 445
    share: str | None = None
    domain: str | None = None
    username: str | None = None
    password: str | None = None
    source: str | None = None
    destination: str | None = None

    def _share_parts(self) -> tuple[str | None, list[str]]:
        text = (self.share or "").replace("/", "\\")
        parts = [p for p in text.split("\\") if p]
        if text.startswith("\\\\") and parts:
            return parts[0], parts[1:]
        return None, parts

    @property
    def server(self) -> str | None:
        """The host to connect to: ``host`` if given, else the UNC server."""
        return self.host or self._share_parts()[0]

    @property
    def share_path(self) -> list[str]:
        """Share name followed by any directories below it."""
        return self._share_parts()[1]

    def validate(self) -> None:
        super().validate()
        if not self.server:
            raise ValidationError(
                "smb-copy action requires a UNC 'share' (\\\\server\\share) or 'host'"
            )
        if not self.share_path:
            raise ValidationError(f"smb-copy share {self.share!r} names no share")
        self.port = _as_int(self.port, "port") or 445


@dataclass
class FtpCopyAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.FTP_COPY
    required: ClassVar[tuple[str, ...]] = ("host", "source", "destination")
    network = True

    host: str | None = None
    port: int = 21
    username: str = _key("anonymous", aliases=("user",))
    password: str = "anonymous@"
    secure: bool = False
    source: str | None = None
    destination: str | None = None
    permissions: str | int | None = None

    def validate(self) -> None:
        super().validate()
        self.port = _as_int(self.port, "port") or 21


# ---------------------------------------------------------------------------
# HTTP actions
# ---------------------------------------------------------------------------


@dataclass
class ApiCallAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.API_CALL
    required: ClassVar[tuple[str, ...]] = ("url",)
    network = True

    url: str | None = None
    method: str = "POST"
    headers: dict[str, str] = _key({})
    data: Any = None
    json_payload: Any = None
    form_data: dict[str, Any] = _key({})
    send_files: bool = False
    files: dict[str, str] = _key({})
    auth: dict[str, Any] = _key({})
    content_type: str | None = None

    def validate(self) -> None:
        super().validate()
        self.method = (self.method or "POST").upper()
        if isinstance(self.files, list):
            # ["crt", "key"] is shorthand for {"crt": "crt", "key": "key"}
            self.files = {str(item): str(item) for item in self.files}


@dataclass
class WebhookAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.WEBHOOK
    required: ClassVar[tuple[str, ...]] = ("url",)
    network = True

    url: str | None = None
    method: str = "POST"
    event: str = "certificate.deployed"
    headers: dict[str, str] = _key({})
    include_files: list[str] = _key([])
    custom_data: dict[str, Any] = _key({})
    auth: dict[str, Any] = _key({})

    def validate(self) -> None:
        super().validate()
        self.method = (self.method or "POST").upper()


@dataclass
class EmailAction(DeployAction):
    action_type: ClassVar[ActionType] = ActionType.EMAIL
    required: ClassVar[tuple[str, ...]] = ("to",)
    network = True

    to: list[str] = _key([])
    cc: list[str] = _key([])
    bcc: list[str] = _key([])
    subject: str | None = None
    from_address: str | None = _key(None, key="from", aliases=("fromAddress",))
    smtp: dict[str, Any] = _key({})
    template: dict[str, str] = _key({})
    attach_certificates: list[str] = _key([])

    def validate(self) -> None:
        for attr in ("to", "cc", "bcc"):
            value = getattr(self, attr)
            if isinstance(value, str):
                setattr(self, attr, [v.strip() for v in value.split(",") if v.strip()])
        super().validate()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

ACTION_CLASSES: dict[ActionType, type[DeployAction]] = {
    cls.action_type: cls
    for cls in (
        CopyAction,
        CommandAction,
        DockerRestartAction,
        NginxProxyManagerAction,
        SshCopyAction,
        SmbCopyAction,
        FtpCopyAction,
        ApiCallAction,
        WebhookAction,
        EmailAction,
    )
}


def parse_action(data: dict[str, Any] | DeployAction) -> DeployAction:
    """Parse one raw action record into its typed dataclass."""
    if isinstance(data, DeployAction):
        return data
    if not isinstance(data, dict):
        raise ValidationError(f"Deploy action must be an object (got {type(data).__name__})")
    raw_type = data.get("type")
    try:
        action_type = ActionType(raw_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown deploy action type: {raw_type!r}") from exc
    return ACTION_CLASSES[action_type].from_dict(data)


def parse_actions(items: list[Any] | None) -> list[DeployAction]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("deployActions must be a list")
    return [parse_action(item) for item in items]


@dataclass
class InvalidAction(DeployAction):
    """A stored action record that no longer parses.

    Kept so the sidecar is rewritten unchanged; the pipeline reports it
    as a failed action instead of running it.
    """

    raw: Any = None
    error: str = ""

    @property
    def type_name(self) -> str:
        raw_type = self.raw.get("type") if isinstance(self.raw, dict) else None
        return str(raw_type or "invalid")

    @property
    def label(self) -> str:
        return self.name or self.type_name

    def to_dict(self, *, mask_secrets: bool = False) -> Any:
        return sanitize_for_logs(self.raw) if mask_secrets else copy.deepcopy(self.raw)

    def with_placeholders(self, tokens: dict[str, str]) -> DeployAction:
        return self


def load_actions(items: Any, owner: str = "") -> list[DeployAction]:
    """Parse stored action records, keeping bad ones as :class:`InvalidAction`."""
    if items is None:
        return []
    if not isinstance(items, list):
        log.error("deployActions of %s is not a list; keeping it unparsed", owner or "certificate")
        return [InvalidAction(raw=items, error="deployActions must be a list")]
    actions: list[DeployAction] = []
    for index, item in enumerate(items):
        try:
            actions.append(parse_action(item))
        except ValidationError as exc:
            log.error(
                "Deploy action #%d of %s is invalid: %s", index, owner or "certificate", exc.detail
            )
            enabled = not (isinstance(item, dict) and item.get("enabled") is False)
            actions.append(InvalidAction(raw=item, error=exc.detail, enabled=enabled))
    return actions
