from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import jwt

from ..config import settings

# ---------------------------------------------------------------------------
# Password / secret hashing
# ---------------------------------------------------------------------------

def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode()


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # Malformed hash in the row; treat as a mismatch.
        return False


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

ALGORITHM = "HS256"


def create_access_token(
    user_id: str,
    username: str,
    role: str,
    expires_minutes: int | None = None,
) -> str:
    minutes = expires_minutes or settings.jwt_expire_minutes
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "username": username,
        "role": role,
        "exp": now + timedelta(minutes=minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])


# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------

_INVITE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_BACKUP_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def _pick(alphabet: str, n: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(n))


def generate_invite_code() -> str:
    return "-".join(_pick(_INVITE_ALPHABET, 4) for _ in range(3))


def generate_backup_code() -> str:
    return "-".join(_pick(_BACKUP_ALPHABET, 4) for _ in range(4))


def generate_reply_key() -> str:
    return secrets.token_hex(32)
