"""Tests for the JSON routes in certwarden.api.routes."""

from __future__ import annotations

from pathlib import Path

import pytest


def _create(client, **body):
    body.setdefault("name", "web")
    resp = client.post("/api/certificates", json=body)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


class TestCertificates:
    def test_empty_list(self, client):
        resp = client.get("/api/certificates")

        assert resp.status_code == 200
        assert resp.get_json() == []

    def test_create_and_list(self, client):
        created = _create(client, domains=["web.example.com"], ips=["10.0.0.5"])

        assert created["name"] == "web"
        assert created["sans"] == {"domains": ["web.example.com"], "ips": ["10.0.0.5"]}
        assert created["certType"] == "standard"

        listed = client.get("/api/certificates").get_json()
        assert [c["fingerprint"] for c in listed] == [created["fingerprint"]]

    def test_get_accepts_colon_separated_lowercase(self, client):
        created = _create(client)
        fp = created["fingerprint"].lower()
        colon = ":".join(fp[i : i + 2] for i in range(0, len(fp), 2))

        resp = client.get(f"/api/certificates/{colon}")

        assert resp.status_code == 200
        assert resp.get_json()["fingerprint"] == created["fingerprint"]

    def test_create_without_name(self, client):
        resp = client.post("/api/certificates", json={})

        assert resp.status_code == 400
        assert resp.content_type == "application/problem+json"
        assert resp.get_json()["type"] == "VALIDATION"

    def test_body_must_be_object(self, client):
        resp = client.post("/api/certificates", json=[1, 2])

        assert resp.status_code == 400
        assert "JSON object" in resp.get_json()["detail"]

    def test_duplicate_name(self, client):
        _create(client)

        resp = client.post("/api/certificates", json={"name": "web"})

        assert resp.status_code == 409
        assert resp.get_json()["type"] == "DUPLICATE"

    def test_unknown_fingerprint(self, client):
        resp = client.get("/api/certificates/ABCDEF")

        assert resp.status_code == 404
        assert resp.get_json() == {
            "type": "NOT_FOUND",
            "detail": "Certificate ABCDEF not found",
            "status": 404,
        }

    def test_signing_ca_missing(self, client):
        resp = client.post(
            "/api/certificates",
            json={"name": "leaf", "signWithCA": True, "caFingerprint": "ABCDEF"},
        )

        assert resp.status_code == 422
        assert resp.get_json()["type"] == "CA_NOT_FOUND"

    def test_patch_config_and_metadata(self, client):
        fp = _create(client)["fingerprint"]

        resp = client.patch(
            f"/api/certificates/{fp}",
            json={"config": {"renewDaysBeforeExpiry": 10}, "group": "edge", "tags": ["prod"]},
        )

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["config"]["renewDaysBeforeExpiry"] == 10
        assert body["group"] == "edge"
        assert body["tags"] == ["prod"]

    def test_patch_unknown_field(self, client):
        fp = _create(client)["fingerprint"]

        resp = client.patch(f"/api/certificates/{fp}", json={"colour": "blue"})

        assert resp.status_code == 400
        assert "colour" in resp.get_json()["detail"]

    def test_patch_masks_action_secrets(self, client):
        fp = _create(client)["fingerprint"]

        resp = client.patch(
            f"/api/certificates/{fp}",
            json={
                "deployActions": [
                    {
                        "type": "ssh-copy",
                        "host": "edge",
                        "password": "hunter2",
                        "source": "crt",
                        "destination": "/etc/ssl/web.crt",
                    },
                ],
            },
        )

        action = resp.get_json()["deployActions"][0]
        assert action["password"] == "[REDACTED]"
        assert action["host"] == "edge"

    def test_delete(self, client, container):
        created = _create(client)
        fp = created["fingerprint"]

        resp = client.delete(f"/api/certificates/{fp}")

        assert resp.status_code == 204
        assert client.get(f"/api/certificates/{fp}").status_code == 404
        assert not Path(created["paths"]["crt"]).exists()


class TestRenewal:
    def test_renew(self, client):
        old = _create(client)["fingerprint"]

        resp = client.post(f"/api/certificates/{old}/renew", json={"days": 30})

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["renewed"] is True
        assert body["oldFingerprint"] == old
        assert body["newFingerprint"] != old
        assert body["certificate"]["daysUntilExpiry"] in (29, 30)
        assert client.get(f"/api/certificates/{old}").status_code == 404

    def test_renew_without_body(self, client):
        old = _create(client)["fingerprint"]

        resp = client.post(f"/api/certificates/{old}/renew")

        assert resp.status_code == 200
        assert resp.get_json()["renewed"] is True

    @pytest.mark.parametrize("days", [0, -5, "ten", True])
    def test_renew_rejects_bad_days(self, client, days):
        fp = _create(client)["fingerprint"]

        resp = client.post(f"/api/certificates/{fp}/renew", json={"days": days})

        assert resp.status_code == 400

    def test_busy_certificate(self, client, container):
        fp = _create(client)["fingerprint"]

        with container.store.locks.hold(fp, "deploy"):
            resp = client.post(f"/api/certificates/{fp}/renew")

        body = resp.get_json()
        assert resp.status_code == 409
        assert body["type"] == "BUSY"
        assert body["retryable"] is True
        assert resp.headers["Retry-After"] == "5"

    def test_history_after_renewal(self, client):
        old = _create(client)["fingerprint"]
        new = client.post(f"/api/certificates/{old}/renew").get_json()["newFingerprint"]

        history = client.get(f"/api/certificates/{new}/history").get_json()

        assert [h["fingerprint"] for h in history] == [old]
        assert history[0]["version"] == 1


class TestSans:
    def test_stage_and_apply(self, client):
        fp = _create(client, domains=["web.example.com"])["fingerprint"]

        resp = client.post(f"/api/certificates/{fp}/sans", json={"value": "API.example.com"})
        assert resp.status_code == 201
        assert resp.get_json()["idleDomains"] == ["api.example.com"]

        applied = client.post(f"/api/certificates/{fp}/apply-idle").get_json()

        cert = applied["certificate"]
        assert cert["sans"]["domains"] == ["web.example.com", "api.example.com"]
        assert cert["idleDomains"] == []

    def test_auto_detects_ip(self, client):
        fp = _create(client)["fingerprint"]

        view = client.post(f"/api/certificates/{fp}/sans", json={"value": "192.168.1.9"}).get_json()

        assert view["idleIps"] == ["192.168.1.9"]

    def test_duplicate_staged(self, client):
        fp = _create(client, domains=["web.example.com"])["fingerprint"]

        resp = client.post(f"/api/certificates/{fp}/sans", json={"value": "web.example.com"})

        assert resp.status_code == 409

    def test_active_entry_cannot_be_added(self, client):
        fp = _create(client)["fingerprint"]

        resp = client.post(
            f"/api/certificates/{fp}/sans",
            json={"value": "x.example.com", "staged": False},
        )

        assert resp.status_code == 400

    def test_unstage(self, client):
        fp = _create(client)["fingerprint"]
        client.post(f"/api/certificates/{fp}/sans", json={"value": "x.example.com"})

        resp = client.delete(f"/api/certificates/{fp}/sans", json={"value": "x.example.com"})

        assert resp.status_code == 200
        assert resp.get_json()["idleDomains"] == []

    def test_remove_active_rejected(self, client):
        fp = _create(client, domains=["web.example.com"])["fingerprint"]

        resp = client.delete(f"/api/certificates/{fp}/sans", json={"value": "web.example.com"})

        assert resp.status_code == 400
        assert resp.get_json()["type"] == "VALIDATION"

    def test_value_and_type_validated(self, client):
        fp = _create(client)["fingerprint"]

        assert client.post(f"/api/certificates/{fp}/sans", json={}).status_code == 400
        resp = client.post(
            f"/api/certificates/{fp}/sans",
            json={"value": "a.example.com", "type": "email"},
        )
        assert resp.status_code == 400


class TestFiles:
    def test_convert_to_der(self, client):
        fp = _create(client)["fingerprint"]

        resp = client.post(f"/api/certificates/{fp}/convert", json={"format": "DER"})

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["format"] == "der"
        assert body["path"].endswith("web.der")
        assert Path(body["path"]).is_file()

    def test_convert_requires_format(self, client):
        fp = _create(client)["fingerprint"]

        assert client.post(f"/api/certificates/{fp}/convert", json={}).status_code == 400
        resp = client.post(f"/api/certificates/{fp}/convert", json={"format": "jks"})
        assert resp.status_code == 400

    def test_files(self, client):
        fp = _create(client)["fingerprint"]

        files = client.get(f"/api/certificates/{fp}/files").get_json()

        types = [f["type"] for f in files]
        assert "crt" in types
        assert "key" in types
        assert all(f["size"] > 0 for f in files)

    def test_chain_of_self_signed(self, client):
        fp = _create(client)["fingerprint"]

        chain = client.get(f"/api/certificates/{fp}/chain").get_json()

        assert [c["fingerprint"] for c in chain] == [fp]
        assert chain[0]["selfSigned"] is True

    def test_chain_through_ca(self, client):
        root = _create(client, name="root", certType="rootCA")["fingerprint"]
        leaf = _create(client, name="leaf", signWithCA=True, caFingerprint=root)["fingerprint"]

        chain = client.get(f"/api/certificates/{leaf}/chain").get_json()

        assert [c["fingerprint"] for c in chain] == [leaf, root]

    def test_restore_from_backup(self, client):
        old = _create(client)["fingerprint"]
        renewed = client.post(f"/api/certificates/{old}/renew").get_json()
        crt = Path(renewed["certificate"]["paths"]["crt"])
        crt.write_text("garbage", encoding="utf-8")

        resp = client.post(f"/api/certificates/{renewed['newFingerprint']}/restore")

        assert resp.status_code == 200
        assert resp.get_json()["fingerprint"] == old


class TestPassphrases:
    def test_lifecycle(self, client):
        fp = _create(client)["fingerprint"]
        url = f"/api/certificates/{fp}/passphrase"

        assert client.get(url).get_json() == {"hasPassphrase": False}
        assert client.put(url, json={"passphrase": "pw"}).get_json() == {"hasPassphrase": True}
        assert client.get(url).get_json() == {"hasPassphrase": True}
        assert client.delete(url).status_code == 204
        assert client.get(url).get_json() == {"hasPassphrase": False}

    def test_passphrase_required(self, client):
        fp = _create(client)["fingerprint"]

        resp = client.put(f"/api/certificates/{fp}/passphrase", json={})

        assert resp.status_code == 400

    def test_wrong_passphrase_for_encrypted_key(self, client):
        fp = _create(client, passphrase="correct horse")["fingerprint"]

        resp = client.put(f"/api/certificates/{fp}/passphrase", json={"passphrase": "wrong"})

        assert resp.status_code == 400
        assert "does not unlock" in resp.get_json()["detail"]


class TestDeployActions:
    def _with_actions(self, client, tmp_path):
        fp = _create(client)["fingerprint"]
        actions = [
            {"type": "copy", "source": "crt", "destination": str(tmp_path / "out" / "a.crt")},
            {"type": "copy", "source": "key", "destination": str(tmp_path / "out" / "a.key")},
        ]
        client.patch(f"/api/certificates/{fp}", json={"deployActions": actions})
        return fp

    def test_reorder(self, client, tmp_path):
        fp = self._with_actions(client, tmp_path)

        resp = client.put(f"/api/certificates/{fp}/deploy-actions/order", json={"order": [1, 0]})

        assert resp.status_code == 200
        assert [a["source"] for a in resp.get_json()] == ["key", "crt"]

    @pytest.mark.parametrize("order", [[0], [0, 0], [0, 2], None, ["1", "0"]])
    def test_reorder_rejects_non_permutation(self, client, tmp_path, order):
        fp = self._with_actions(client, tmp_path)

        resp = client.put(f"/api/certificates/{fp}/deploy-actions/order", json={"order": order})

        assert resp.status_code == 400

    def test_deploy(self, client, tmp_path):
        fp = self._with_actions(client, tmp_path)

        resp = client.post(f"/api/certificates/{fp}/deploy")

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["actionsExecuted"] == 2
        assert (tmp_path / "out" / "a.crt").is_file()
        assert (tmp_path / "out" / "a.key").is_file()


class TestScheduler:
    def test_status(self, client):
        body = client.get("/api/renewal/status").get_json()

        assert body["active"] is False
        assert body["cronActive"] is False
        assert body["watcherActive"] is False
        assert body["renewalSchedule"] == "0 0 * * *"
        assert body["recentRenewals"] == []

    def test_check_force_all(self, client):
        fp = _create(client)["fingerprint"]

        body = client.post("/api/renewal/check", json={"forceAll": True}).get_json()

        assert body["success"] is True
        assert body["renewedCount"] == 1
        assert body["renewed"][0]["fingerprint"] == fp

        status = client.get("/api/renewal/status").get_json()
        assert status["lastCheckTime"] is not None
        assert len(status["recentRenewals"]) == 1

    def test_check_nothing_due(self, client):
        _create(client)

        body = client.post("/api/renewal/check").get_json()

        assert body["renewalNeeded"] == 0
        assert body["renewedCount"] == 0
