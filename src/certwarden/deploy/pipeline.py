"""Sequential deployment pipeline.

Runs a certificate's ``deployActions`` one after another.  A failing
action is recorded and the pipeline moves on; the aggregate result
reports ``success`` only when every enabled action succeeded.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from certwarden.core.errors import CertError, ValidationError
from certwarden.deploy.executors.base import DeployContext
from certwarden.models.actions import InvalidAction

if TYPE_CHECKING:
    from collections.abc import Iterable

    from certwarden.config.settings import DeploySettings
    from certwarden.core.types import ActionType
    from certwarden.deploy.executors.base import ActionExecutor
    from certwarden.models.actions import DeployAction
    from certwarden.models.certificate import Certificate

log = logging.getLogger(__name__)


class DeployPipeline:
    """Dispatches deploy actions to the executor registered for their type.

    Parameters
    ----------
    settings:
        Default per-action timeouts.
    executors:
        Executors to register; each claims the types in its
        ``action_types``.

    """

    def __init__(self, settings: DeploySettings, executors: Iterable[ActionExecutor]) -> None:
        self._settings = settings
        self._executors: dict[ActionType, ActionExecutor] = {}
        for executor in executors:
            for action_type in executor.action_types:
                self._executors[action_type] = executor

    def executor_for(self, action_type: ActionType) -> ActionExecutor | None:
        return self._executors.get(action_type)

    def timeout_for(self, action: DeployAction) -> float:
        if action.timeout:
            return float(action.timeout)
        if action.network:
            return float(self._settings.network_timeout_seconds)
        return float(self._settings.local_timeout_seconds)

    def run(self, cert: Certificate) -> dict[str, Any]:
        """Execute every enabled action of *cert* in order."""
        tokens = cert.placeholders()
        executed = 0
        failures: list[dict[str, Any]] = []
        details: list[dict[str, Any]] = []

        for index, action in enumerate(cert.deploy_actions):
            if not action.enabled:
                log.debug("Skipping disabled action #%d (%s) for %s", index, action.label, cert.name)
                continue
            executed += 1
            action_type = action.type_name
            started = time.monotonic()
            try:
                message = self._execute(action, cert, tokens)
            except CertError as exc:
                error = exc.detail
            except Exception as exc:
                log.exception("Unexpected error in action #%d (%s) for %s", index, action_type, cert.name)
                error = f"{type(exc).__name__}: {exc}"
            else:
                details.append({"index": index, "type": action_type, "success": True, "message": message})
                log.info(
                    "Action #%d (%s) for %s succeeded: %s",
                    index,
                    action_type,
                    cert.name,
                    message,
                    extra={
                        "certificate": cert.name,
                        "action_type": action_type,
                        "duration_ms": int((time.monotonic() - started) * 1000),
                    },
                )
                continue

            masked = action.to_dict(mask_secrets=True)
            failures.append({"index": index, "type": action_type, "error": error, "action": masked})
            details.append({"index": index, "type": action_type, "success": False, "message": error})
            log.warning(
                "Action #%d (%s) for %s failed: %s",
                index,
                action_type,
                cert.name,
                error,
                extra={
                    "certificate": cert.name,
                    "action_type": action_type,
                    "action": masked,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )

        result = {
            "success": not failures,
            "actionsExecuted": executed,
            "failures": failures,
            "details": details,
        }
        log.info(
            "Deploy for %s finished: %d action(s), %d failure(s)",
            cert.name,
            executed,
            len(failures),
        )
        return result

    def _execute(self, action: DeployAction, cert: Certificate, tokens: dict[str, str]) -> str:
        if isinstance(action, InvalidAction):
            raise ValidationError(f"Stored action is invalid: {action.error}")
        executor = self._executors.get(action.action_type)
        if executor is None:
            raise ValidationError(f"No executor for action type '{action.action_type.value}'")
        resolved = action.with_placeholders(tokens)
        ctx = DeployContext(certificate=cert, timeout=self.timeout_for(resolved), tokens=tokens)
        return executor.execute(resolved, ctx)
