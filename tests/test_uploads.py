"""
Tests for audio uploads.

Run with: pytest tests/test_uploads.py -v
"""
from __future__ import annotations

import inspect

from fastapi.testclient import TestClient

from noisegarden.api import routes_uploads
from noisegarden.config import settings
from noisegarden.main import app

client = TestClient(app)


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestUploads:
    def test_upload_and_fetch(self, make_user):
        user = make_user()
        data = b"ID3" + b"\x00" * 64
        resp = client.post(
            "/uploads",
            files={"file": ("my song!.mp3", data, "audio/mpeg")},
            headers=_headers(user["token"]),
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["size"] == len(data)
        assert body["type"] == "audio/mpeg"

        fetched = client.get(body["url"])
        assert fetched.status_code == 200
        assert fetched.content == data
        assert fetched.headers["content-type"] == "audio/mpeg"
        assert "immutable" in fetched.headers["cache-control"]
        assert fetched.headers["content-disposition"] == 'inline; filename="my_song_.mp3"'

    def test_non_audio_rejected(self, make_user):
        user = make_user()
        resp = client.post(
            "/uploads",
            files={"file": ("x.png", b"\x89PNG", "image/png")},
            headers=_headers(user["token"]),
        )
        assert resp.status_code == 415

    def test_oversize_rejected(self, make_user, monkeypatch):
        user = make_user()
        monkeypatch.setattr(settings, "upload_max_bytes", 16)
        resp = client.post(
            "/uploads",
            files={"file": ("big.wav", b"x" * 17, "audio/wav")},
            headers=_headers(user["token"]),
        )
        assert resp.status_code == 413

    def test_requires_auth(self):
        resp = client.post("/uploads", files={"file": ("a.mp3", b"x", "audio/mpeg")})
        assert resp.status_code == 401

    def test_missing_file(self):
        assert client.get("/files/nope").status_code == 404

    def test_upload_runs_in_threadpool(self):
        # database writes must not block the event loop
        assert not inspect.iscoroutinefunction(routes_uploads.upload_audio)
