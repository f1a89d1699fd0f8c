"""
api/routes_reply_keys.py — Consent-scoped reply keys
====================================================
A reply key lets one named member keep a conversation going under a reply
whose author has switched replies off. The key is only returned when it is
created; what is stored is a bcrypt hash. Keys expire after
``GARDEN_REPLY_KEY_TTL_HOURS`` (24 by default).
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.orm import aliased

from ..access.reply_keys import issue_reply_key, match_reply_key
from ..access.visibility import get_live_post
from ..auth.dependencies import get_current_user
from ..database import db_session
from ..models import Post, ReplyKey, User, utcnow
from ..schemas import (
    ReplyKeyCreate,
    ReplyKeyIssued,
    ReplyKeyRead,
    ReplyKeyValidate,
    ReplyKeyValidation,
)

router = APIRouter(prefix="/reply-keys", tags=["reply-keys"])


@router.post("", response_model=ReplyKeyIssued, status_code=201)
def create_reply_key(body: ReplyKeyCreate, current_user: User = Depends(get_current_user)) -> ReplyKeyIssued:
    with db_session() as session:
        post = get_live_post(session, body.post_id)
        if post.parent_id is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="only_replies_allowed")
        if post.is_whisper:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="Whispers cannot carry reply keys.")

        parent = session.get(Post, post.parent_id)
        if current_user.id not in (post.user_id, parent.user_id if parent else None):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="Only participants in this conversation can issue keys.")

        if session.get(User, body.recipient_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                                detail="Recipient not found.")

        row, plaintext = issue_reply_key(
            session,
            post_id=post.id,
            creator_id=current_user.id,
            recipient_id=body.recipient_id,
        )
        return ReplyKeyIssued(id=row.id, reply_key=plaintext, expires_at=row.expires_at)


@router.post("/validate", response_model=ReplyKeyValidation)
def validate_reply_key(body: ReplyKeyValidate) -> ReplyKeyValidation:
    with db_session() as session:
        row = match_reply_key(session, body.post_id, body.reply_key)
        if row is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="invalid_or_expired_key")
        creator = session.get(User, row.creator_id)
        recipient = session.get(User, row.recipient_id)
        return ReplyKeyValidation(
            creator_username=creator.username,
            recipient_username=recipient.username,
            expires_at=row.expires_at,
        )


@router.get("", response_model=List[ReplyKeyRead])
def list_reply_keys(current_user: User = Depends(get_current_user)) -> List[ReplyKeyRead]:
    """Unexpired keys I created or received, soonest expiry first."""
    creator = aliased(User)
    recipient = aliased(User)
    with db_session() as session:
        rows = session.execute(
            select(ReplyKey, creator.username, recipient.username, Post.content)
            .join(creator, creator.id == ReplyKey.creator_id)
            .join(recipient, recipient.id == ReplyKey.recipient_id)
            .join(Post, Post.id == ReplyKey.post_id)
            .where(
                or_(ReplyKey.creator_id == current_user.id, ReplyKey.recipient_id == current_user.id),
                ReplyKey.expires_at > utcnow(),
            )
            .order_by(ReplyKey.expires_at.asc())
        ).all()
    return [
        ReplyKeyRead(
            id=key.id,
            post_id=key.post_id,
            creator_username=creator_name,
            recipient_username=recipient_name,
            expires_at=key.expires_at,
            post_content=content,
        )
        for key, creator_name, recipient_name, content in rows
    ]


@router.delete("/{key_id}", status_code=204)
def revoke_reply_key(key_id: str, current_user: User = Depends(get_current_user)) -> None:
    with db_session() as session:
        row = session.get(ReplyKey, key_id)
        if row is None or row.creator_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not_authorized")
        session.delete(row)
