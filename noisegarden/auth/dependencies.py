from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Query, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select

from .core import decode_token
from ..database import db_session
from ..models import BannedUser, MODERATOR_ROLES, STAFF_ROLES, User

bearer_scheme = HTTPBearer(auto_error=False)


def _resolve_token(
    bearer: HTTPAuthorizationCredentials | None,
    token: str | None,
) -> Optional[str]:
    return (bearer.credentials if bearer and bearer.credentials else None) or token


def _load_user(jwt_token: str) -> User:
    try:
        payload = decode_token(jwt_token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid or expired token.")
    user_id = payload.get("sub")
    if not user_id or not payload.get("username") or not payload.get("role"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Malformed token.")

    with db_session() as session:
        user = session.get(User, str(user_id))
        banned = session.execute(
            select(BannedUser.id).where(BannedUser.user_id == str(user_id))
        ).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="User not found.")
    if banned:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Account is banned.")
    return user


# ---------------------------------------------------------------------------
# Resolve current user from JWT
# ---------------------------------------------------------------------------

def get_current_user(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    token: str | None = Query(None, description="JWT via query param (for SSE/EventSource)"),
) -> User:
    """
    Accepts either:
      - Authorization: Bearer <jwt>
      - ?token=<jwt>  (query param, for EventSource which can't set headers)
    Returns the matching User or raises 401 (403 when banned).
    """
    jwt_token = _resolve_token(bearer, token)
    if not jwt_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No credentials provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _load_user(jwt_token)


def get_optional_user(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> Optional[User]:
    """Like get_current_user, but anonymous requests resolve to None."""
    if not bearer or not bearer.credentials:
        return None
    return _load_user(bearer.credentials)


# ---------------------------------------------------------------------------
# Role guards
# ---------------------------------------------------------------------------

def is_moderator(user: Optional[User]) -> bool:
    return user is not None and user.role in MODERATOR_ROLES


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Admin access required.")
    return current_user


def require_moderator(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in MODERATOR_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Moderator or Admin access required.")
    return current_user


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    """Admins, moderators and community managers."""
    if current_user.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Insufficient permissions.")
    return current_user


def require_editor(current_user: User = Depends(get_current_user)) -> User:
    """Who may publish news: admins and community managers."""
    if current_user.role not in ("admin", "community_manager"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Insufficient permissions.")
    return current_user
