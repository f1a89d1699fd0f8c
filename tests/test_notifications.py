"""
Tests for the notification inbox, push devices and the per-user event bus.

Run with: pytest tests/test_notifications.py -v
"""
from __future__ import annotations

import asyncio
import json

from fastapi.testclient import TestClient

from noisegarden.config import settings
from noisegarden.main import app
from noisegarden.notify import push
from noisegarden.notify.event_bus import NotificationBus, NotificationEvent, notification_bus

client = TestClient(app)


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _event(user_id: str = "u1", kind: str = "reply") -> NotificationEvent:
    return NotificationEvent(
        event_type="notification",
        notification_id="n1",
        user_id=user_id,
        type=kind,
        post_id="p1",
        from_username="someone",
    )


def _reply_to(author: dict, replier: dict) -> dict:
    post = client.post("/posts", json={"content": "ping"}, headers=_headers(author["token"])).json()
    client.post(
        "/posts", json={"content": "pong", "parent_id": post["id"]}, headers=_headers(replier["token"])
    )
    return post


# ---------------------------------------------------------------------------
# Event bus: unit tests
# ---------------------------------------------------------------------------

class TestNotificationBus:
    def test_subscribe_and_unsubscribe(self):
        async def run():
            bus = NotificationBus()
            q = bus.subscribe("u1")
            assert bus.subscriber_count("u1") == 1
            assert bus.subscriber_count() == 1
            bus.unsubscribe("u1", q)
            assert bus.subscriber_count("u1") == 0

        asyncio.run(run())

    def test_publish_reaches_only_the_recipient(self):
        async def run():
            bus = NotificationBus()
            mine = bus.subscribe("u1")
            theirs = bus.subscribe("u2")
            bus.publish(_event("u1"))
            await asyncio.sleep(0)
            assert mine.get_nowait().type == "reply"
            assert theirs.empty()

        asyncio.run(run())

    def test_publish_drops_on_full_queue(self):
        async def run():
            bus = NotificationBus()
            q = bus.subscribe("u1")
            for _ in range(260):
                bus.publish(_event("u1"))
            await asyncio.sleep(0)
            assert q.qsize() == 256

        asyncio.run(run())

    def test_unsubscribe_unknown_is_safe(self):
        bus = NotificationBus()
        bus.unsubscribe("nobody", asyncio.Queue())
        assert bus.subscriber_count() == 0

    def test_event_json(self):
        data = json.loads(_event(kind="mention").to_json())
        assert data["event"] == "notification"
        assert data["type"] == "mention"
        assert data["from_username"] == "someone"
        assert isinstance(data["timestamp"], float)

    def test_reply_publishes_to_author(self, make_user):
        author = make_user()
        replier = make_user()

        async def run():
            q = notification_bus.subscribe(author["id"])
            try:
                _reply_to(author, replier)
                await asyncio.sleep(0)
                event = q.get_nowait()
                assert event.type == "reply"
                assert event.from_username == replier["username"]
            finally:
                notification_bus.unsubscribe(author["id"], q)

        asyncio.run(run())


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

class TestInbox:
    def test_unread_count_and_mark_read(self, make_user):
        author = make_user()
        replier = make_user()
        _reply_to(author, replier)
        _reply_to(author, replier)

        assert client.get("/notifications/unread-count", headers=_headers(author["token"])).json() == {"count": 2}

        notes = client.get("/notifications", headers=_headers(author["token"])).json()
        assert len(notes) == 2
        assert all(n["read"] is False for n in notes)

        one = client.post(f"/notifications/{notes[0]['id']}/read", headers=_headers(author["token"]))
        assert one.status_code == 200
        assert one.json()["read"] is True
        assert client.get("/notifications/unread-count", headers=_headers(author["token"])).json() == {"count": 1}

        assert client.post("/notifications/read-all", headers=_headers(author["token"])).json() == {"updated": 1}
        assert client.get("/notifications/unread-count", headers=_headers(author["token"])).json() == {"count": 0}

    def test_cannot_read_someone_elses(self, make_user):
        author = make_user()
        replier = make_user()
        _reply_to(author, replier)
        note = client.get("/notifications", headers=_headers(author["token"])).json()[0]
        resp = client.post(f"/notifications/{note['id']}/read", headers=_headers(replier["token"]))
        assert resp.status_code == 404

    def test_list_is_newest_first_and_limited(self, make_user):
        author = make_user()
        replier = make_user()
        for _ in range(3):
            _reply_to(author, replier)
        notes = client.get("/notifications?limit=2", headers=_headers(author["token"])).json()
        assert len(notes) == 2
        assert notes[0]["created_at"] >= notes[1]["created_at"]

    def test_stream_requires_auth(self):
        with client.stream("GET", "/notifications/stream") as resp:
            assert resp.status_code == 401

    def test_stream_status_accepts_query_token(self, make_user):
        user = make_user()
        resp = client.get("/notifications/stream/status", params={"token": user["token"]})
        assert resp.status_code == 200
        assert resp.json() == {"subscribers": 0}


# ---------------------------------------------------------------------------
# Push devices
# ---------------------------------------------------------------------------

class TestDevices:
    def test_register_is_idempotent_per_token(self, make_user):
        user = make_user()
        body = {"token": "device-token-abc", "platform": "ios"}
        first = client.post("/notifications/devices", json=body, headers=_headers(user["token"]))
        assert first.status_code == 201
        second = client.post("/notifications/devices", json=body, headers=_headers(user["token"]))
        assert second.json()["id"] == first.json()["id"]

    def test_unknown_platform_rejected(self, make_user):
        user = make_user()
        resp = client.post(
            "/notifications/devices",
            json={"token": "device-token-xyz", "platform": "palm"},
            headers=_headers(user["token"]),
        )
        assert resp.status_code == 422

    def test_unregister(self, make_user):
        user = make_user()
        client.post("/notifications/devices", json={"token": "device-token-del"}, headers=_headers(user["token"]))
        assert client.delete("/notifications/devices/device-token-del", headers=_headers(user["token"])).status_code == 204
        assert client.delete("/notifications/devices/device-token-del", headers=_headers(user["token"])).status_code == 404

    def test_unregister_with_query_token(self, make_user):
        user = make_user()
        other = make_user()
        client.post("/notifications/devices", json={"token": "device-token-qs"}, headers=_headers(user["token"]))
        path = "/notifications/devices/device-token-qs"
        assert client.delete(path, params={"token": other["token"]}).status_code == 404
        assert client.delete(path, params={"token": user["token"]}).status_code == 204

    def test_reply_pushes_to_author_devices(self, make_user, monkeypatch):
        author = make_user()
        replier = make_user()
        client.post(
            "/notifications/devices", json={"token": "author-phone-1"}, headers=_headers(author["token"])
        )
        sent = []

        def fake_send(_client, token, payload):
            sent.append((token, payload))
            return True

        monkeypatch.setattr(settings, "push_gateway_url", "https://push.invalid/send")
        monkeypatch.setattr(push, "_send_one", fake_send)

        _reply_to(author, replier)
        assert [token for token, _ in sent] == ["author-phone-1"]
        assert sent[0][1]["title"] == "New reply"
        assert sent[0][1]["data"]["type"] == "reply"

    def test_no_gateway_sends_nothing(self):
        assert push.dispatch_push({"title": "t", "body": "b"}) == 0
