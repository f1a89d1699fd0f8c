"""
rate_limit.py — Request rate limiting
=====================================
Uses slowapi with its in-memory storage. Every route gets the default
per-IP limits (60/minute, 1000/hour); signup, login and feedback carry
tighter limits of their own. Counters live in process memory and reset
on restart.
"""
from __future__ import annotations

from fastapi import Request
from jose import JWTError
from slowapi import Limiter
from slowapi.util import get_remote_address

from .auth.core import decode_token
from .config import settings


def client_key(request: Request) -> str:
    """Rate-limit key: first X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def user_or_client_key(request: Request) -> str:
    """Key authenticated requests by user id so NAT'd users don't share a bucket."""
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        try:
            payload = decode_token(auth[7:])
            if payload.get("sub"):
                return f"user:{payload['sub']}"
        except JWTError:
            pass
    return client_key(request)


limiter = Limiter(
    key_func=client_key,
    default_limits=settings.default_rate_limits,
    enabled=settings.rate_limit_enabled,
)
