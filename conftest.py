"""
pytest configuration – point the app at a throwaway SQLite file, make
bcrypt cheap, and switch the rate limiter off before anything imports the
app. Provides a session-scoped admin token and a factory for fresh
invited members.
"""
import os
import uuid

os.environ.setdefault("GARDEN_DATABASE_URL", "sqlite:///./test_garden.db")
os.environ.setdefault("GARDEN_BCRYPT_ROUNDS", "4")
os.environ.setdefault("GARDEN_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("GARDEN_LOG_FORMAT", "text")
os.environ.setdefault("GARDEN_ALTCHA_HMAC_KEY", "")
os.environ.setdefault("GARDEN_PUSH_GATEWAY_URL", "")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from noisegarden.database import Base, engine  # noqa: E402
from noisegarden import models  # noqa: E402,F401 – registers ORM mappings with Base.metadata
from noisegarden.auth.seed import seed_admin  # noqa: E402
from noisegarden.main import app  # noqa: E402

TEST_PASSWORD = "Garden123"


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    seed_admin()
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if os.path.exists("test_garden.db"):
        os.remove("test_garden.db")


@pytest.fixture(scope="session")
def client() -> TestClient:
    return TestClient(app)


# Session-scoped admin token: login happens once per test run
_session_token: str | None = None


@pytest.fixture(scope="session")
def admin_token(create_tables) -> str:
    global _session_token
    if _session_token is None:
        c = TestClient(app)
        resp = c.post("/auth/login", json={"username": "admin", "password": "changeme"})
        assert resp.status_code == 200, f"Login failed: {resp.text}"
        _session_token = resp.json()["access_token"]
    return _session_token


@pytest.fixture
def make_user(client, admin_token):
    """
    Create a member through the real invite → signup flow.

    Returns a dict with id, username, token and backup_codes.
    """

    def _make(role: str | None = None) -> dict:
        invite = client.post("/admin/invites", headers=_headers(admin_token))
        assert invite.status_code == 200, invite.text
        username = f"u_{uuid.uuid4().hex[:10]}"
        resp = client.post(
            "/auth/signup",
            json={
                "username": username,
                "password": TEST_PASSWORD,
                "invite_code": invite.json()["code"],
            },
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        user = {
            "id": body["user"]["id"],
            "username": username,
            "token": body["access_token"],
            "backup_codes": body["backup_codes"],
        }
        if role:
            r = client.patch(
                f"/admin/users/{user['id']}/role",
                json={"role": role},
                headers=_headers(admin_token),
            )
            assert r.status_code == 200, r.text
        return user

    return _make


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
