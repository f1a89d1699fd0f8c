from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from .popups import popup_status_for
from .reply_keys import match_reply_key
from ..models import Post, User


def ensure_can_reply(
    session: Session,
    parent: Post,
    user: User,
    reply_key: Optional[str] = None,
) -> None:
    """
    Raise unless ``user`` may reply under ``parent``.

    Closed popup threads refuse everyone (409). When the parent has replies
    disabled, only its author and the holder of a valid reply key for it
    (recipient or creator) get through (403).
    """
    popup = popup_status_for(session, parent)
    if popup.is_closed:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail=f"This popup thread is closed ({popup.reason}).")

    if not parent.replies_disabled or parent.user_id == user.id:
        return

    key = match_reply_key(session, parent.id, reply_key) if reply_key else None
    if key is None or user.id not in (key.recipient_id, key.creator_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Replies are disabled for this post.")
