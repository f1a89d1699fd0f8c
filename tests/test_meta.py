"""
Tests for service metadata, health probes and the CAPTCHA endpoints.

Run with: pytest tests/test_meta.py -v
"""
from __future__ import annotations

from fastapi.testclient import TestClient

from noisegarden.main import app

client = TestClient(app)


class TestMeta:
    def test_root(self):
        assert client.get("/").json() == {"status": "ok", "service": "noise-garden", "version": "1.0.0"}

    def test_health(self):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_healthz_touches_database(self):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestAltcha:
    def test_challenge_needs_key(self):
        resp = client.get("/altcha/challenge")
        assert resp.status_code == 500
        assert resp.json()["detail"] == "altcha_env_missing"

    def test_verify_needs_payload(self):
        resp = client.post("/altcha/verify", json={})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "missing_payload"

    def test_challenge_when_configured(self, monkeypatch):
        from noisegarden.config import settings

        monkeypatch.setattr(settings, "altcha_hmac_key", "test-hmac-key")
        resp = client.get("/altcha/challenge")
        assert resp.status_code == 200
        body = resp.json()
        assert body["algorithm"] == "SHA-256"
        assert body["signature"]

        bogus = client.post("/altcha/verify", json={"payload": "bm90LWpzb24="})
        assert bogus.json() == {"verified": False}
