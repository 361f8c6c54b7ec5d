"""Remote copy actions: ``ssh-copy`` (SFTP), ``smb-copy`` and ``ftp-copy``."""

from __future__ import annotations

import ftplib
import io
import logging
import os
import posixpath
import shlex
import shutil
from typing import TYPE_CHECKING

import paramiko
import smbclient
from smbprotocol.exceptions import SMBException

from certwarden.core.types import ActionType
from certwarden.deploy.executors.base import (
    ActionExecutor,
    DeployContext,
    action_failed,
    parse_mode,
)

if TYPE_CHECKING:
    from certwarden.models.actions import FtpCopyAction, SmbCopyAction, SshCopyAction

log = logging.getLogger(__name__)

_PKEY_CLASSES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


def _remote_target(destination: str, source: str) -> str:
    """Append the source file name when *destination* names a directory."""
    if destination.endswith("/"):
        return posixpath.join(destination, os.path.basename(source))
    return destination


# ---------------------------------------------------------------------------
# SSH / SFTP
# ---------------------------------------------------------------------------


def load_private_key(text: str, passphrase: str | None) -> paramiko.PKey:
    """Parse an inline PEM private key with whichever key class accepts it."""
    last_error: Exception | None = None
    for cls in _PKEY_CLASSES:
        try:
            return cls.from_private_key(io.StringIO(text), password=passphrase)
        except paramiko.SSHException as exc:
            last_error = exc
    raise paramiko.SSHException(f"Unsupported private key: {last_error}")


class SshCopyExecutor(ActionExecutor):
    action_types = (ActionType.SSH_COPY,)

    def __init__(self, client_factory=paramiko.SSHClient) -> None:
        self._client_factory = client_factory

    def _connect(self, action: SshCopyAction, timeout: float) -> paramiko.SSHClient:
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())  # noqa: S507
        kwargs: dict = {
            "hostname": action.host,
            "port": action.port,
            "username": action.username,
            "timeout": timeout,
            "banner_timeout": timeout,
            "auth_timeout": timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        if action.private_key:
            if os.path.isfile(action.private_key):
                kwargs["key_filename"] = action.private_key
                kwargs["passphrase"] = action.passphrase
            else:
                kwargs["pkey"] = load_private_key(action.private_key, action.passphrase)
        else:
            kwargs["password"] = action.password
        client.connect(**kwargs)
        return client

    @staticmethod
    def _run(client: paramiko.SSHClient, command: str, timeout: float) -> tuple[int, str]:
        _, stdout, stderr = client.exec_command(command, timeout=timeout)
        status = stdout.channel.recv_exit_status()
        return status, stderr.read().decode("utf-8", errors="replace").strip()

    def execute(self, action: SshCopyAction, ctx: DeployContext) -> str:  # type: ignore[override]
        source = ctx.source_path(action.source)
        remote = _remote_target(action.destination, source)
        mode = parse_mode(action.permissions)
        client = None
        try:
            client = self._connect(action, ctx.timeout)
            remote_dir = posixpath.dirname(remote)
            if remote_dir:
                self._run(client, f"mkdir -p {shlex.quote(remote_dir)}", ctx.timeout)
            sftp = client.open_sftp()
            try:
                sftp.put(source, remote)
                if mode is not None:
                    sftp.chmod(remote, mode)
            finally:
                sftp.close()
            if action.command:
                status, err = self._run(client, action.command, ctx.timeout)
                if status != 0:
                    raise action_failed(
                        action, f"remote command exited with {status}" + (f": {err}" if err else "")
                    )
        except paramiko.AuthenticationException as exc:
            raise action_failed(action, f"authentication to {action.host} failed") from exc
        except (paramiko.SSHException, OSError) as exc:
            raise action_failed(action, f"{action.host}: {exc}") from exc
        finally:
            if client is not None:
                client.close()
        log.info("Uploaded %s to %s:%s", source, action.host, remote)
        return f"Uploaded {os.path.basename(source)} to {action.host}:{remote}"


# ---------------------------------------------------------------------------
# SMB
# ---------------------------------------------------------------------------


class SmbCopyExecutor(ActionExecutor):
    action_types = (ActionType.SMB_COPY,)

    def execute(self, action: SmbCopyAction, ctx: DeployContext) -> str:  # type: ignore[override]
        source = ctx.source_path(action.source)
        relative = _remote_target(action.destination.replace("\\", "/"), source).strip("/")
        server = action.server
        base = [server, *action.share_path]
        unc_dir = "\\\\" + "\\".join([*base, *relative.split("/")[:-1]])
        unc = "\\\\" + "\\".join([*base, *relative.split("/")])
        username = f"{action.domain}\\{action.username}" if action.domain else action.username
        try:
            smbclient.register_session(
                server,
                username=username,
                password=action.password,
                port=action.port,
                connection_timeout=int(ctx.timeout),
            )
            if len(base) > 2 or "/" in relative:
                smbclient.makedirs(unc_dir, exist_ok=True)
            with open(source, "rb") as src, smbclient.open_file(unc, mode="wb") as dst:
                shutil.copyfileobj(src, dst)
        except SMBException as exc:
            raise action_failed(action, f"{unc}: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise action_failed(action, f"{server}: {exc}") from exc
        finally:
            try:
                smbclient.delete_session(server, port=action.port)
            except (SMBException, OSError, KeyError):
                log.debug("No SMB session to close for %s", server)
        return f"Copied {os.path.basename(source)} to {unc}"


# ---------------------------------------------------------------------------
# FTP
# ---------------------------------------------------------------------------


class FtpCopyExecutor(ActionExecutor):
    action_types = (ActionType.FTP_COPY,)

    def __init__(self, ftp_factory=None, ftps_factory=None) -> None:
        self._ftp_factory = ftp_factory or ftplib.FTP
        self._ftps_factory = ftps_factory or ftplib.FTP_TLS

    @staticmethod
    def _ensure_dirs(ftp: ftplib.FTP, remote_dir: str) -> None:
        path = "/" if remote_dir.startswith("/") else ""
        for part in [p for p in remote_dir.split("/") if p]:
            path = posixpath.join(path, part) if path else part
            try:
                ftp.mkd(path)
            except ftplib.error_perm:
                pass  # already exists

    def execute(self, action: FtpCopyAction, ctx: DeployContext) -> str:  # type: ignore[override]
        source = ctx.source_path(action.source)
        remote = _remote_target(action.destination, source)
        ftp = self._ftps_factory() if action.secure else self._ftp_factory()
        try:
            ftp.connect(action.host, action.port, timeout=ctx.timeout)
            ftp.login(action.username, action.password)
            if action.secure:
                ftp.prot_p()
            remote_dir = posixpath.dirname(remote)
            if remote_dir:
                self._ensure_dirs(ftp, remote_dir)
            with open(source, "rb") as fh:
                ftp.storbinary(f"STOR {remote}", fh)
            if action.permissions:
                try:
                    ftp.sendcmd(f"SITE CHMOD {action.permissions} {remote}")
                except ftplib.error_perm as exc:
                    log.warning("FTP server refused SITE CHMOD for %s: %s", remote, exc)
            ftp.quit()
        except ftplib.all_errors as exc:
            raise action_failed(action, f"{action.host}: {exc}") from exc
        finally:
            ftp.close()
        return f"Uploaded {os.path.basename(source)} to ftp://{action.host}{'' if remote.startswith('/') else '/'}{remote}"
