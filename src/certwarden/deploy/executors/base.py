"""Executor interface shared by every deploy action family."""

from __future__ import annotations

import abc
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from certwarden.core.errors import CertError, NetworkError, StoreIOError, ValidationError

if TYPE_CHECKING:
    from certwarden.core.types import ActionType
    from certwarden.models.actions import DeployAction
    from certwarden.models.certificate import Certificate


@dataclass
class DeployContext:
    """What an executor gets besides the (already substituted) action."""

    certificate: Certificate
    timeout: float
    tokens: dict[str, str] = field(default_factory=dict)

    def source_path(self, source: str | None) -> str:
        """Resolve a ``source`` value to an existing local file."""
        if not source:
            raise ValidationError("Action has no source")
        path = self.certificate.resolve_source(source)
        if path is None:
            raise ValidationError(f"{self.certificate.name} has no '{source}' file")
        if not os.path.isfile(path):
            raise StoreIOError(f"Source file does not exist: {path}")
        return path


class ActionExecutor(abc.ABC):
    """Runs one family of deploy actions.

    :meth:`execute` returns a short human-readable message on success
    and raises a :class:`~certwarden.core.errors.CertError` on failure.
    """

    action_types: ClassVar[tuple[ActionType, ...]] = ()

    @abc.abstractmethod
    def execute(self, action: DeployAction, ctx: DeployContext) -> str:
        """Perform *action*; return a success message."""


def action_failed(action: DeployAction, message: str) -> CertError:
    """``NETWORK`` for remote actions, ``IO`` for local ones."""
    if action.network:
        return NetworkError(f"{action.action_type.value}: {message}")
    return StoreIOError(f"{action.action_type.value}: {message}")


def parse_mode(value: str | int | None) -> int | None:
    """``"600"``, ``"0o600"`` or ``0o600`` as an integer mode."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip().lower().removeprefix("0o")
    try:
        return int(text, 8)
    except ValueError as exc:
        raise ValidationError(f"Invalid permissions value: {value!r}") from exc
