"""``copy`` and ``command`` actions."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from certwarden.core.types import ActionType
from certwarden.deploy.executors.base import (
    ActionExecutor,
    DeployContext,
    action_failed,
    parse_mode,
)

if TYPE_CHECKING:
    from certwarden.models.actions import CommandAction, CopyAction

log = logging.getLogger(__name__)

# Keep command output in failure messages readable
_OUTPUT_LIMIT = 2000


class CopyExecutor(ActionExecutor):
    action_types = (ActionType.COPY,)

    def execute(self, action: CopyAction, ctx: DeployContext) -> str:  # type: ignore[override]
        source = ctx.source_path(action.source)
        dest = Path(action.destination)
        if action.destination.endswith(("/", os.sep)) or dest.is_dir():
            dest = dest / Path(source).name
        mode = parse_mode(action.permissions)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
            if mode is not None and os.name != "nt":
                os.chmod(dest, mode)
        except OSError as exc:
            raise action_failed(action, f"cannot copy {source} to {dest}: {exc}") from exc
        log.debug("Copied %s to %s", source, dest)
        return f"Copied {source} to {dest}"


class CommandExecutor(ActionExecutor):
    action_types = (ActionType.COMMAND,)

    def execute(self, action: CommandAction, ctx: DeployContext) -> str:  # type: ignore[override]
        env = {**os.environ, **{k: str(v) for k, v in (action.env or {}).items()}}
        try:
            proc = subprocess.run(  # noqa: S602
                action.command,
                shell=True,
                cwd=action.cwd or None,
                env=env,
                capture_output=True,
                text=True,
                timeout=ctx.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise action_failed(action, f"timed out after {ctx.timeout:g}s") from exc
        except OSError as exc:
            raise action_failed(action, f"cannot run command: {exc}") from exc
        if proc.returncode != 0:
            output = (proc.stderr or proc.stdout or "").strip()[-_OUTPUT_LIMIT:]
            raise action_failed(
                action,
                f"exited with status {proc.returncode}" + (f": {output}" if output else ""),
            )
        return (proc.stdout or "").strip()[-_OUTPUT_LIMIT:] or "Command completed"
