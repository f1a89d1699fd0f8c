from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import BannedUser, MODERATOR_ROLES, MutedUser, Post, User, utcnow


def active_ban(session: Session, user_id: str) -> Optional[BannedUser]:
    return session.execute(
        select(BannedUser).where(BannedUser.user_id == user_id)
    ).scalar_one_or_none()


def active_mute(session: Session, user_id: str) -> Optional[MutedUser]:
    """The user's mute row, or None when there is none or it has lapsed."""
    return session.execute(
        select(MutedUser).where(
            MutedUser.user_id == user_id,
            MutedUser.expires_at > utcnow(),
        )
    ).scalar_one_or_none()


def ensure_not_muted(session: Session, user: User) -> None:
    mute = active_mute(session, user.id)
    if mute is not None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are muted and cannot post right now.",
        )


def ensure_can_restrict(actor: User, target: User) -> None:
    """Moderators may not ban or mute admins, and nobody may restrict themselves."""
    if target.id == actor.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="You cannot restrict your own account.")
    if target.role == "admin" and actor.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Moderators cannot restrict admins.")


def can_view_whisper(whisper: Post, parent_user_id: Optional[str], viewer: Optional[User]) -> bool:
    """A whisper is readable by its author, the parent's author and moderators."""
    if viewer is None:
        return False
    if viewer.role in MODERATOR_ROLES:
        return True
    return viewer.id in (whisper.user_id, parent_user_id)
