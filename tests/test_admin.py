"""
Tests for admin and moderator maintenance endpoints.

Run with: pytest tests/test_admin.py -v
"""
from __future__ import annotations

from datetime import timedelta

from fastapi.testclient import TestClient

from noisegarden.api import routes_admin
from noisegarden.database import db_session
from noisegarden.main import app
from noisegarden.models import Post, utcnow

client = TestClient(app)


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestRoles:
    def test_role_change_applies_without_relogin(self, make_user, admin_token):
        user = make_user()
        assert client.get("/admin/stats", headers=_headers(user["token"])).status_code == 403
        resp = client.patch(
            f"/admin/users/{user['id']}/role", json={"role": "moderator"}, headers=_headers(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "moderator"
        assert client.get("/admin/stats", headers=_headers(user["token"])).status_code == 200

    def test_unknown_role(self, make_user, admin_token):
        user = make_user()
        resp = client.patch(
            f"/admin/users/{user['id']}/role", json={"role": "overlord"}, headers=_headers(admin_token)
        )
        assert resp.status_code == 422

    def test_admin_cannot_change_own_role(self, admin_token):
        admin_id = client.get("/auth/me", headers=_headers(admin_token)).json()["id"]
        resp = client.patch(f"/admin/users/{admin_id}/role", json={"role": "user"}, headers=_headers(admin_token))
        assert resp.status_code == 400

    def test_moderator_cannot_change_roles(self, make_user):
        mod = make_user(role="moderator")
        target = make_user()
        resp = client.patch(
            f"/admin/users/{target['id']}/role", json={"role": "admin"}, headers=_headers(mod["token"])
        )
        assert resp.status_code == 403

    def test_user_list_for_moderators(self, make_user):
        mod = make_user(role="moderator")
        users = client.get("/admin/users", headers=_headers(mod["token"])).json()
        assert mod["username"] in [u["username"] for u in users]
        assert all("password_hash" not in u for u in users)


class TestMaintenance:
    def test_stats_count_live_posts_only(self, make_user, admin_token):
        user = make_user()
        before = client.get("/admin/stats", headers=_headers(admin_token)).json()
        post = client.post("/posts", json={"content": "counted"}, headers=_headers(user["token"])).json()
        during = client.get("/admin/stats", headers=_headers(admin_token)).json()
        assert during["total_posts"] == before["total_posts"] + 1

        with db_session() as session:
            session.get(Post, post["id"]).expires_at = utcnow() - timedelta(seconds=1)
        after = client.get("/admin/stats", headers=_headers(admin_token)).json()
        assert after["total_posts"] == before["total_posts"]

    def test_purge_expired(self, make_user, admin_token):
        user = make_user()
        post = client.post("/posts", json={"content": "short-lived"}, headers=_headers(user["token"])).json()
        with db_session() as session:
            session.get(Post, post["id"]).expires_at = utcnow() - timedelta(seconds=1)

        resp = client.post("/admin/purge-expired", headers=_headers(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["posts"] >= 1
        assert body["deleted"] == body["posts"] + body["reply_keys"] + body["mutes"]
        with db_session() as session:
            assert session.get(Post, post["id"]) is None

    def test_purge_is_admin_only(self, make_user):
        mod = make_user(role="moderator")
        assert client.post("/admin/purge-expired", headers=_headers(mod["token"])).status_code == 403

    def test_login_history_filter(self, make_user, admin_token):
        user = make_user()
        client.post("/auth/login", json={"username": user["username"], "password": "Garden123"})
        rows = client.get(
            f"/admin/login-history?user_id={user['id']}", headers=_headers(admin_token)
        ).json()
        assert [r["username"] for r in rows] == [user["username"]]

    def test_role_changes_are_audited(self, make_user, admin_token):
        make_user(role="community_manager")
        events = client.get(
            "/admin/security-events?event=role_changed&limit=1", headers=_headers(admin_token)
        ).json()
        assert len(events) == 1
        assert '"new_role": "community_manager"' in events[0]["details_json"]

    def test_broadcast(self, admin_token, monkeypatch):
        monkeypatch.setattr(routes_admin, "dispatch_push", lambda payload, user_ids=None: 3)
        resp = client.post(
            "/admin/broadcast", json={"title": "Hello", "body": "Maintenance tonight"}, headers=_headers(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json() == {"sent": 3}
