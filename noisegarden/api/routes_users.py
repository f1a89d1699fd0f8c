from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select

from ..access.visibility import post_select, to_post_read, whisper_filter
from ..auth.dependencies import get_current_user, get_optional_user
from ..database import db_session
from ..models import Post, User, utcnow
from ..schemas import PostRead, ProfileUpdate, UserRead
from ..security.audit import log_security_event
from ..security.validation import sanitize_html

router = APIRouter(prefix="/users", tags=["users"])


# ---------------------------------------------------------------------------
# My account
# ---------------------------------------------------------------------------

@router.patch("/me", response_model=UserRead)
def update_profile(body: ProfileUpdate, current_user: User = Depends(get_current_user)) -> UserRead:
    with db_session() as session:
        user = session.get(User, current_user.id)
        if body.avatar_url is not None:
            user.avatar_url = body.avatar_url.strip() or None
        if body.bio is not None:
            user.bio = sanitize_html(body.bio.strip()) or None
        session.flush()
        return UserRead.model_validate(user)


@router.delete("/me", status_code=204)
def delete_account(request: Request, current_user: User = Depends(get_current_user)) -> None:
    """Delete the account. Posts, replies, keys and notifications cascade."""
    with db_session() as session:
        user = session.get(User, current_user.id)
        session.delete(user)
    log_security_event("account_deleted", request, current_user)


@router.get("/me/export")
def export_account(current_user: User = Depends(get_current_user)) -> dict:
    """Everything the account owns that is still live, as one JSON document."""
    with db_session() as session:
        rows = session.execute(
            post_select()
            .where(Post.user_id == current_user.id)
            .order_by(Post.created_at.desc())
        ).all()
    items = [to_post_read(r).model_dump(mode="json") for r in rows]
    return {
        "exported_at": utcnow().isoformat(),
        "user": UserRead.model_validate(current_user).model_dump(mode="json"),
        "posts": [p for p in items if p["parent_id"] is None],
        "replies": [p for p in items if p["parent_id"] is not None],
    }


# ---------------------------------------------------------------------------
# Public profiles
# ---------------------------------------------------------------------------

def _user_by_name(session, username: str) -> User:
    user = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    return user


@router.get("/{username}", response_model=UserRead)
def get_profile(username: str) -> UserRead:
    with db_session() as session:
        return UserRead.model_validate(_user_by_name(session, username))


@router.get("/{username}/posts", response_model=List[PostRead])
def get_user_posts(
    username: str,
    viewer: Optional[User] = Depends(get_optional_user),
) -> List[PostRead]:
    with db_session() as session:
        user = _user_by_name(session, username)
        rows = session.execute(
            post_select()
            .where(Post.user_id == user.id, whisper_filter(viewer))
            .order_by(Post.created_at.desc())
        ).all()
    return [to_post_read(r) for r in rows]
