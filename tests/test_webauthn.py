"""
Tests for the passkey ceremonies and the challenge store.

Browser-side signing is out of reach here, so the verify endpoints are
exercised on their failure paths only.

Run with: pytest tests/test_webauthn.py -v
"""
from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from noisegarden.auth.challenges import ChallengeStore, challenge_store
from noisegarden.config import settings
from noisegarden.main import app

client = TestClient(app)


def _name() -> str:
    return f"pk_{uuid.uuid4().hex[:10]}"


class TestChallengeStore:
    def test_pop_is_single_use(self):
        store = ChallengeStore(ttl_seconds=60)
        store.put("login", "alice", b"abc")
        assert len(store) == 1
        assert store.pop("login", "alice") == b"abc"
        assert store.pop("login", "alice") is None

    def test_ceremonies_are_separate(self):
        store = ChallengeStore(ttl_seconds=60)
        store.put("login", "alice", b"one")
        store.put("register", "alice", b"two")
        assert store.pop("register", "alice") == b"two"
        assert store.pop("login", "alice") == b"one"

    def test_expired_challenge_is_missing(self):
        store = ChallengeStore(ttl_seconds=-1)
        store.put("login", "alice", b"old")
        assert store.pop("login", "alice") is None

    def test_clear(self):
        store = ChallengeStore(ttl_seconds=60)
        store.put("login", "a", b"1")
        store.put("login", "b", b"2")
        store.clear()
        assert len(store) == 0


class TestRegistration:
    def test_options_carry_relying_party(self):
        username = _name()
        resp = client.post("/webauthn/register/options", json={"username": username})
        assert resp.status_code == 200
        body = resp.json()
        assert body["rp"]["id"] == settings.webauthn_rp_id
        assert body["user"]["name"] == username
        assert body["challenge"]
        challenge_store.pop("register", username)

    def test_options_for_taken_username(self, make_user):
        user = make_user()
        resp = client.post("/webauthn/register/options", json={"username": user["username"]})
        assert resp.status_code == 409

    def test_options_reject_bad_username(self):
        resp = client.post("/webauthn/register/options", json={"username": "x"})
        assert resp.status_code == 400

    def test_verify_without_challenge(self, admin_token):
        code = client.post("/admin/invites", headers={"Authorization": f"Bearer {admin_token}"}).json()["code"]
        resp = client.post(
            "/webauthn/register/verify",
            json={"username": _name(), "password": "Garden123", "invite_code": code, "credential": {}},
        )
        assert resp.status_code == 400
        assert "challenge" in resp.json()["detail"]

    def test_verify_rejects_bogus_credential(self, admin_token):
        username = _name()
        code = client.post("/admin/invites", headers={"Authorization": f"Bearer {admin_token}"}).json()["code"]
        client.post("/webauthn/register/options", json={"username": username})
        resp = client.post(
            "/webauthn/register/verify",
            json={
                "username": username,
                "password": "Garden123",
                "invite_code": code,
                "credential": {"id": "abc", "rawId": "abc", "type": "public-key", "response": {}},
            },
        )
        assert resp.status_code == 400
        # the challenge was consumed by the failed attempt
        assert challenge_store.pop("register", username) is None


class TestLogin:
    def test_options_without_passkey(self, make_user):
        user = make_user()
        resp = client.post("/webauthn/login/options", json={"username": user["username"]})
        assert resp.status_code == 404

    def test_verify_unknown_user(self):
        resp = client.post("/webauthn/login/verify", json={"username": "ghost_user", "credential": {}})
        assert resp.status_code == 404
