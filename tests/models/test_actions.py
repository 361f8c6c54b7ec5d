"""Tests for certwarden.models.actions -- typed deploy action records."""

from __future__ import annotations

import pytest

from certwarden.core.errors import ValidationError
from certwarden.core.types import ActionType
from certwarden.logging.sanitize import REDACTED
from certwarden.models.actions import (
    ACTION_CLASSES,
    ApiCallAction,
    CopyAction,
    DockerRestartAction,
    EmailAction,
    FtpCopyAction,
    InvalidAction,
    NginxProxyManagerAction,
    SmbCopyAction,
    SshCopyAction,
    load_actions,
    parse_action,
    parse_actions,
)


class TestParseAction:
    def test_every_type_registered(self):
        assert set(ACTION_CLASSES) == set(ActionType)

    def test_copy(self):
        action = parse_action({"type": "copy", "source": "crt", "destination": "/out/a.crt"})
        assert isinstance(action, CopyAction)
        assert action.source == "crt"
        assert action.enabled is True
        assert action.network is False

    def test_alias_key(self):
        action = parse_action(
            {"type": "copy", "source": "key", "destination": "/out/a.key", "mode": "600"}
        )
        assert action.permissions == "600"

    def test_unknown_type(self):
        with pytest.raises(ValidationError, match="Unknown deploy action type"):
            parse_action({"type": "teleport"})

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            parse_action(["copy"])

    def test_missing_required(self):
        with pytest.raises(ValidationError, match="'destination'"):
            parse_action({"type": "copy", "source": "crt"})

    def test_typed_passthrough(self):
        action = CopyAction(source="crt", destination="/x")
        assert parse_action(action) is action

    def test_parse_actions_none(self):
        assert parse_actions(None) == []

    def test_parse_actions_not_list(self):
        with pytest.raises(ValidationError):
            parse_actions({"type": "copy"})

    def test_timeout_coerced(self):
        action = parse_action({"type": "command", "command": "true", "timeout": "5"})
        assert action.timeout == 5.0

    @pytest.mark.parametrize("timeout", [0, -1, "soon"])
    def test_bad_timeout(self, timeout):
        with pytest.raises(ValidationError):
            parse_action({"type": "command", "command": "true", "timeout": timeout})


class TestTypeSpecificValidation:
    def test_docker_needs_container(self):
        with pytest.raises(ValidationError, match="containerName"):
            parse_action({"type": "docker-restart"})
        action = parse_action({"type": "docker-restart", "containerName": "web", "restartTimeout": "7"})
        assert isinstance(action, DockerRestartAction)
        assert action.restart_timeout == 7

    def test_npm_needs_a_mode(self):
        with pytest.raises(ValidationError, match="npmPath"):
            parse_action({"type": "nginx-proxy-manager"})
        action = parse_action({"type": "nginx-proxy-manager", "useApi": True, "npmPort": "81"})
        assert isinstance(action, NginxProxyManagerAction)
        assert action.use_api is True
        assert action.port == 81

    def test_ssh_needs_credentials(self):
        base = {"type": "ssh-copy", "host": "h", "source": "crt", "destination": "/x"}
        with pytest.raises(ValidationError, match="privateKey"):
            parse_action(base)
        action = parse_action({**base, "privateKey": "/keys/id_rsa", "port": "2222"})
        assert isinstance(action, SshCopyAction)
        assert action.port == 2222

    def test_smb_requires_username(self):
        with pytest.raises(ValidationError, match="'username'"):
            parse_action(
                {"type": "smb-copy", "host": "h", "share": "s", "source": "crt", "destination": "d"}
            )
        action = parse_action(
            {"type": "smb-copy", "host": "h", "share": "s", "source": "crt",
             "destination": "d", "username": "u"}
        )
        assert isinstance(action, SmbCopyAction)
        assert action.port == 445

    def test_smb_unc_share_names_the_server(self):
        action = parse_action(
            {
                "type": "smb-copy",
                "share": "\\\\nas\\certs\\web",
                "source": "crt",
                "destination": "web/a.crt",
                "username": "svc",
                "password": "pw",
            }
        )
        assert action.server == "nas"
        assert action.share_path == ["certs", "web"]
        assert action.to_dict()["share"] == "\\\\nas\\certs\\web"
        assert "host" not in action.to_dict()

    def test_smb_host_overrides_unc_server(self):
        action = parse_action(
            {"type": "smb-copy", "host": "10.0.0.5", "share": "//nas/certs",
             "source": "crt", "destination": "a.crt", "username": "u"}
        )
        assert action.server == "10.0.0.5"
        assert action.share_path == ["certs"]

    def test_smb_bare_share_needs_host(self):
        with pytest.raises(ValidationError, match="UNC"):
            parse_action(
                {"type": "smb-copy", "share": "certs", "source": "crt",
                 "destination": "a.crt", "username": "u"}
            )

    def test_ftp_defaults(self):
        action = parse_action({"type": "ftp-copy", "host": "h", "source": "crt", "destination": "/x"})
        assert isinstance(action, FtpCopyAction)
        assert action.username == "anonymous"
        assert action.password == "anonymous@"
        assert action.port == 21
        assert action.network is True

    def test_api_call_files_list_shorthand(self):
        action = parse_action(
            {"type": "api-call", "url": "https://x", "method": "put", "files": ["crt", "key"]}
        )
        assert isinstance(action, ApiCallAction)
        assert action.method == "PUT"
        assert action.files == {"crt": "crt", "key": "key"}

    def test_email_comma_separated_recipients(self):
        action = parse_action({"type": "email", "to": "a@x, b@x", "from": "me@x"})
        assert isinstance(action, EmailAction)
        assert action.to == ["a@x", "b@x"]
        assert action.from_address == "me@x"

    def test_email_requires_to(self):
        with pytest.raises(ValidationError, match="'to'"):
            parse_action({"type": "email", "to": ""})


class TestSerialisation:
    def test_round_trip_preserves_unknown_keys(self):
        raw = {"type": "copy", "source": "crt", "destination": "/x", "futureOption": 3}
        action = parse_action(raw)
        assert action.extra == {"futureOption": 3}
        assert action.to_dict() == raw

    def test_disabled_flag_kept(self):
        raw = {"type": "command", "command": "true", "enabled": False}
        assert parse_action(raw).to_dict()["enabled"] is False

    def test_explicit_json_key(self):
        out = parse_action({"type": "nginx-proxy-manager", "useApi": True}).to_dict()
        assert out["useAPI"] is True
        assert "useApi" not in out

    def test_mask_secrets(self):
        action = parse_action(
            {"type": "ssh-copy", "host": "h", "source": "crt", "destination": "/x", "password": "pw"}
        )
        assert action.to_dict()["password"] == "pw"
        assert action.to_dict(mask_secrets=True)["password"] == REDACTED


class TestBehaviour:
    def test_with_placeholders(self):
        action = parse_action(
            {"type": "command", "command": "reload {name}", "env": {"CERT": "{cert_path}"}}
        )
        out = action.with_placeholders({"name": "web", "cert_path": "/c/web.crt"})
        assert out.command == "reload web"
        assert out.env == {"CERT": "/c/web.crt"}
        assert action.command == "reload {name}"

    def test_label(self):
        assert parse_action({"type": "command", "command": "x"}).label == "command"
        assert parse_action({"type": "command", "command": "x", "name": "reload"}).label == "reload"


class TestLoadActions:
    def test_bad_records_kept_verbatim(self, caplog):
        raw = [
            {"type": "command", "command": "true"},
            {"type": "bogus", "x": 1},
            {"type": "copy", "source": "crt", "enabled": False},
        ]

        actions = load_actions(raw, owner="web")

        assert [isinstance(a, InvalidAction) for a in actions] == [False, True, True]
        assert [a.to_dict() for a in actions] == raw
        assert actions[1].type_name == "bogus"
        assert actions[2].enabled is False
        assert "'destination'" in actions[2].error
        assert "Deploy action #1 of web is invalid" in caplog.text

    def test_none_and_non_list(self):
        assert load_actions(None) == []
        (action,) = load_actions({"type": "copy"})
        assert isinstance(action, InvalidAction)
        assert "must be a list" in action.error

    def test_strict_parse_still_rejects(self):
        with pytest.raises(ValidationError):
            parse_actions([{"type": "bogus"}])
