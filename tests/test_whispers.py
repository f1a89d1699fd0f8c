"""
Tests for whispers: replies readable only by their author, the parent's
author and moderators.

Run with: pytest tests/test_whispers.py -v
"""
from __future__ import annotations

from fastapi.testclient import TestClient

from noisegarden.main import app

client = TestClient(app)


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _setup(make_user):
    op = make_user()
    whisperer = make_user()
    outsider = make_user()
    post = client.post("/posts", json={"content": "original"}, headers=_headers(op["token"])).json()
    resp = client.post(
        "/whispers",
        json={"content": "psst", "parent_id": post["id"]},
        headers=_headers(whisperer["token"]),
    )
    assert resp.status_code == 201, resp.text
    return op, whisperer, outsider, post, resp.json()


class TestWhisperVisibility:
    def test_create_carries_parent(self, make_user):
        op, _, _, post, whisper = _setup(make_user)
        assert whisper["is_whisper"] is True
        assert whisper["parent_content"] == "original"
        assert whisper["parent_user_id"] == op["id"]

    def test_parent_author_is_notified(self, make_user):
        op, whisperer, _, _, whisper = _setup(make_user)
        notes = client.get("/notifications", headers=_headers(op["token"])).json()
        assert notes[0]["type"] == "whisper"
        assert notes[0]["from_username"] == whisperer["username"]

    def test_hidden_from_outsiders_and_anonymous(self, make_user):
        _, _, outsider, post, whisper = _setup(make_user)
        anon = client.get(f"/posts/{post['id']}/replies").json()
        assert whisper["id"] not in [r["id"] for r in anon]
        theirs = client.get(f"/posts/{post['id']}/replies", headers=_headers(outsider["token"])).json()
        assert whisper["id"] not in [r["id"] for r in theirs]

        assert client.get(f"/posts/{whisper['id']}").status_code == 404
        assert client.get(f"/posts/{whisper['id']}", headers=_headers(outsider["token"])).status_code == 404

    def test_visible_to_parties(self, make_user, admin_token):
        op, whisperer, _, post, whisper = _setup(make_user)
        for token in (op["token"], whisperer["token"], admin_token):
            replies = client.get(f"/posts/{post['id']}/replies", headers=_headers(token)).json()
            assert whisper["id"] in [r["id"] for r in replies]
            assert client.get(f"/posts/{whisper['id']}", headers=_headers(token)).status_code == 200

    def test_hidden_on_profile_for_others(self, make_user):
        _, whisperer, outsider, _, whisper = _setup(make_user)
        theirs = client.get(
            f"/users/{whisperer['username']}/posts", headers=_headers(outsider["token"])
        ).json()
        assert whisper["id"] not in [p["id"] for p in theirs]
        mine = client.get(
            f"/users/{whisperer['username']}/posts", headers=_headers(whisperer["token"])
        ).json()
        assert whisper["id"] in [p["id"] for p in mine]


class TestWhisperEndpoints:
    def test_list_for_post_owner_only(self, make_user):
        op, _, outsider, post, whisper = _setup(make_user)
        ok = client.get(f"/whispers/post/{post['id']}", headers=_headers(op["token"]))
        assert ok.status_code == 200
        assert [w["id"] for w in ok.json()] == [whisper["id"]]
        denied = client.get(f"/whispers/post/{post['id']}", headers=_headers(outsider["token"]))
        assert denied.status_code == 403

    def test_mine(self, make_user):
        _, whisperer, _, _, whisper = _setup(make_user)
        mine = client.get("/whispers/mine", headers=_headers(whisperer["token"])).json()
        assert [w["id"] for w in mine] == [whisper["id"]]
        assert mine[0]["parent_content"] == "original"

    def test_delete_author_or_moderator(self, make_user):
        op, whisperer, outsider, post, whisper = _setup(make_user)
        assert client.delete(f"/whispers/{whisper['id']}", headers=_headers(outsider["token"])).status_code == 403
        assert client.delete(f"/whispers/{whisper['id']}", headers=_headers(whisperer["token"])).status_code == 204
        assert client.delete(f"/whispers/{whisper['id']}", headers=_headers(whisperer["token"])).status_code == 404

    def test_whisper_to_missing_post(self, make_user):
        user = make_user()
        resp = client.post(
            "/whispers", json={"content": "psst", "parent_id": "nope"}, headers=_headers(user["token"])
        )
        assert resp.status_code == 404


class TestWhisperThreads:
    def test_replies_under_whisper_hidden_from_outsiders(self, make_user):
        op, _, outsider, _, whisper = _setup(make_user)
        assert client.get(f"/posts/{whisper['id']}/replies").status_code == 404
        resp = client.get(f"/posts/{whisper['id']}/replies", headers=_headers(outsider["token"]))
        assert resp.status_code == 404
        assert client.get(f"/posts/{whisper['id']}/replies", headers=_headers(op["token"])).status_code == 200

    def test_no_public_replies_to_a_whisper(self, make_user):
        op, _, outsider, _, whisper = _setup(make_user)
        resp = client.post(
            "/posts",
            json={"content": "my private answer", "parent_id": whisper["id"]},
            headers=_headers(op["token"]),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot reply to a whisper."

        resp = client.post(
            "/posts",
            json={"content": "hello?", "parent_id": whisper["id"]},
            headers=_headers(outsider["token"]),
        )
        assert resp.status_code == 404

    def test_no_reply_keys_on_whispers(self, make_user):
        op, _, outsider, _, whisper = _setup(make_user)
        resp = client.post(
            "/reply-keys",
            json={"post_id": whisper["id"], "recipient_id": outsider["id"]},
            headers=_headers(op["token"]),
        )
        assert resp.status_code == 400
        keys = client.get("/reply-keys", headers=_headers(outsider["token"])).json()
        assert "psst" not in [k["post_content"] for k in keys]
