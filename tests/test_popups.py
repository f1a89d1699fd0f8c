"""
Tests for popup threads: posts that close after a reply budget, a time
limit, or a manual close.

Run with: pytest tests/test_popups.py -v
"""
from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from noisegarden.access.popups import compute_popup_status
from noisegarden.database import db_session
from noisegarden.main import app
from noisegarden.models import PopupThread, utcnow

client = TestClient(app)


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _popup(token: str, replies: int = 2, minutes: int = 60) -> dict:
    resp = client.post(
        "/posts",
        json={"content": "popup!", "popup_reply_limit": replies, "popup_time_limit": minutes},
        headers=_headers(token),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _reply(token: str, parent_id: str):
    return client.post(
        "/posts", json={"content": "reply", "parent_id": parent_id}, headers=_headers(token)
    )


# ---------------------------------------------------------------------------
# Closing rules
# ---------------------------------------------------------------------------

class TestComputeStatus:
    NOW = utcnow()

    def _status(self, **overrides):
        kwargs = dict(
            is_popup_thread=True,
            reply_limit=5,
            time_limit_minutes=10,
            opened_at=self.NOW - timedelta(minutes=4),
            closed_at=None,
            reply_count=2,
            now=self.NOW,
        )
        kwargs.update(overrides)
        return compute_popup_status(**kwargs)

    def test_open_reports_remaining_budget(self):
        status = self._status()
        assert status.is_closed is False
        assert status.remaining_replies == 3
        assert status.remaining_time_ms == 6 * 60 * 1000

    def test_reply_limit_closes(self):
        status = self._status(reply_count=5)
        assert (status.is_closed, status.reason, status.remaining_replies) == (True, "replies", 0)

    def test_time_limit_closes(self):
        status = self._status(opened_at=self.NOW - timedelta(minutes=10))
        assert (status.is_closed, status.reason, status.remaining_time_ms) == (True, "time", 0)

    def test_manual_close(self):
        status = self._status(closed_at=self.NOW)
        assert (status.is_closed, status.reason) == (True, "manual")

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"reply_count": 5, "opened_at": NOW - timedelta(hours=1), "closed_at": NOW}, "replies"),
            ({"opened_at": NOW - timedelta(hours=1), "closed_at": NOW}, "time"),
        ],
    )
    def test_rules_checked_in_order(self, overrides, reason):
        assert self._status(**overrides).reason == reason

    def test_plain_post_never_closed(self):
        status = self._status(is_popup_thread=False, reply_count=99, closed_at=self.NOW)
        assert status.is_closed is False
        assert status.reason is None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

class TestPopupEndpoints:
    def test_create_with_limits_opens_thread(self, make_user):
        user = make_user()
        post = _popup(user["token"], replies=2, minutes=30)
        status = client.get(f"/posts/{post['id']}/popup").json()
        assert status["is_closed"] is False
        assert status["remaining_replies"] == 2
        assert 0 < status["remaining_time_ms"] <= 30 * 60 * 1000

    def test_reply_limit_closes_thread(self, make_user):
        owner = make_user()
        other = make_user()
        post = _popup(owner["token"], replies=2)
        assert _reply(other["token"], post["id"]).status_code == 201
        assert _reply(other["token"], post["id"]).status_code == 201

        late = _reply(other["token"], post["id"])
        assert late.status_code == 409
        assert "replies" in late.json()["detail"]
        assert client.get(f"/posts/{post['id']}/popup").json()["reason"] == "replies"

    def test_time_limit_closes_thread(self, make_user):
        owner = make_user()
        post = _popup(owner["token"], minutes=5)
        with db_session() as session:
            threads = session.execute(
                select(PopupThread).where(PopupThread.post_id == post["id"])
            ).scalars()
            for thread in threads:
                thread.created_at = utcnow() - timedelta(minutes=6)
        resp = _reply(owner["token"], post["id"])
        assert resp.status_code == 409
        assert client.get(f"/posts/{post['id']}/popup").json()["reason"] == "time"

    def test_manual_close_and_reopen(self, make_user):
        owner = make_user()
        post = _popup(owner["token"])
        closed = client.post(f"/posts/{post['id']}/popup/close", headers=_headers(owner["token"]))
        assert closed.status_code == 200
        assert closed.json()["reason"] == "manual"
        assert _reply(owner["token"], post["id"]).status_code == 409

        reopened = client.post(
            f"/posts/{post['id']}/popup",
            json={"reply_limit": 5, "time_limit_minutes": 10},
            headers=_headers(owner["token"]),
        )
        assert reopened.status_code == 201
        assert reopened.json()["is_closed"] is False
        assert _reply(owner["token"], post["id"]).status_code == 201

    def test_only_owner_manages(self, make_user):
        owner = make_user()
        other = make_user()
        post = _popup(owner["token"])
        assert client.post(f"/posts/{post['id']}/popup/close", headers=_headers(other["token"])).status_code == 403
        resp = client.post(
            f"/posts/{post['id']}/popup",
            json={"reply_limit": 1, "time_limit_minutes": 1},
            headers=_headers(other["token"]),
        )
        assert resp.status_code == 403

    def test_close_plain_post_rejected(self, make_user):
        owner = make_user()
        post = client.post("/posts", json={"content": "plain"}, headers=_headers(owner["token"])).json()
        resp = client.post(f"/posts/{post['id']}/popup/close", headers=_headers(owner["token"]))
        assert resp.status_code == 400

    def test_plain_post_status_is_open(self, make_user):
        owner = make_user()
        post = client.post("/posts", json={"content": "plain"}, headers=_headers(owner["token"])).json()
        assert client.get(f"/posts/{post['id']}/popup").json() == {
            "is_closed": False,
            "reason": None,
            "remaining_replies": None,
            "remaining_time_ms": None,
        }
