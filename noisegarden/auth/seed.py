from __future__ import annotations

import sys

from sqlalchemy import select

from .core import hash_password
from ..config import settings
from ..database import db_session
from ..models import User


_DEFAULT_PASSWORD = "changeme"


def seed_admin() -> None:
    """
    Create the first admin account on startup if no users exist.

    The admin is the root of the invite tree: every other account is
    created from an invite that traces back to it. Credentials come from
    GARDEN_ADMIN_USERNAME / GARDEN_ADMIN_PASSWORD (local defaults:
    admin / changeme).
    """
    username = settings.admin_username
    password = settings.admin_password

    with db_session() as session:
        existing = session.execute(select(User.id).limit(1)).first()
        if existing:
            return  # already seeded

        if password == _DEFAULT_PASSWORD:
            print(
                "\nWARNING: Seeding admin with DEFAULT password 'changeme'.\n"
                "   Set GARDEN_ADMIN_PASSWORD before deploying to production.\n",
                file=sys.stderr,
            )
            if settings.environment != "development":
                print(
                    "REFUSING to seed default password in non-development "
                    f"environment ({settings.environment}).\n"
                    "   Set GARDEN_ADMIN_PASSWORD env var.\n",
                    file=sys.stderr,
                )
                return

        session.add(
            User(
                username=username,
                password_hash=hash_password(password),
                role="admin",
            )
        )
        print(f"[seed] Default admin created: {username}")
