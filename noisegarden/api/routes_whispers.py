"""
api/routes_whispers.py — Private replies
========================================
A whisper is a reply only three parties can read: its author, the author
of the post it answers, and moderators/admins. Everyone else is told the
whisper does not exist.
"""
from __future__ import annotations

from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import aliased

from ..access.replies import ensure_can_reply
from ..access.restrictions import ensure_not_muted
from ..access.visibility import fetch_post_read, get_live_post, post_select, to_post_read
from ..auth.dependencies import get_current_user, is_moderator
from ..database import db_session
from ..models import Post, User, utcnow
from ..notify.service import add_notification, deliver
from ..schemas import PostRead, WhisperCreate, WhisperRead
from ..security.audit import log_security_event
from ..security.validation import check_content, clean_post_content

router = APIRouter(prefix="/whispers", tags=["whispers"])


@router.post("", response_model=WhisperRead, status_code=201)
def create_whisper(
    request: Request,
    body: WhisperCreate,
    current_user: User = Depends(get_current_user),
) -> WhisperRead:
    errors = check_content(body.content)
    if errors:
        log_security_event("whisper_rejected", request, current_user, errors=errors)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=errors)

    content = clean_post_content(body.content)
    with db_session() as session:
        ensure_not_muted(session, current_user)
        parent = get_live_post(session, body.parent_id, detail="Parent post not found.")
        if parent.is_whisper:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="Cannot whisper to a whisper.")
        ensure_can_reply(session, parent, current_user)

        whisper = Post(
            user_id=current_user.id,
            content=content,
            parent_id=parent.id,
            image_url=body.image_url,
            is_whisper=True,
        )
        if body.ttl_seconds and body.ttl_seconds > 0:
            whisper.expires_at = utcnow() + timedelta(seconds=body.ttl_seconds)
        session.add(whisper)
        session.flush()

        note = add_notification(session, user_id=parent.user_id, type="whisper",
                                actor=current_user, post_id=whisper.id)
        session.flush()
        read = fetch_post_read(session, whisper.id)
        result = WhisperRead(
            **read.model_dump(),
            parent_content=parent.content,
            parent_user_id=parent.user_id,
        )

    deliver([note])
    return result


@router.get("/post/{post_id}", response_model=List[PostRead])
def whispers_for_post(post_id: str, current_user: User = Depends(get_current_user)) -> List[PostRead]:
    """Whispers on a post. Only its author and moderators may list them."""
    with db_session() as session:
        post = get_live_post(session, post_id)
        if post.user_id != current_user.id and not is_moderator(current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="Only the post author can view its whispers.")
        rows = session.execute(
            post_select()
            .where(Post.parent_id == post_id, Post.is_whisper.is_(True))
            .order_by(Post.created_at.asc())
        ).all()
    return [to_post_read(r) for r in rows]


@router.get("/mine", response_model=List[WhisperRead])
def my_whispers(current_user: User = Depends(get_current_user)) -> List[WhisperRead]:
    parent = aliased(Post)
    with db_session() as session:
        rows = session.execute(
            post_select()
            .add_columns(parent.content, parent.user_id)
            .outerjoin(parent, parent.id == Post.parent_id)
            .where(Post.user_id == current_user.id, Post.is_whisper.is_(True))
            .order_by(Post.created_at.desc())
        ).all()
    return [
        WhisperRead(
            **to_post_read(r[:6]).model_dump(),
            parent_content=r[6],
            parent_user_id=r[7],
        )
        for r in rows
    ]


@router.delete("/{whisper_id}", status_code=204)
def delete_whisper(whisper_id: str, current_user: User = Depends(get_current_user)) -> None:
    with db_session() as session:
        whisper = session.get(Post, whisper_id)
        if whisper is None or not whisper.is_whisper:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Whisper not found.")
        if whisper.user_id != current_user.id and not is_moderator(current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="You can only delete your own whispers.")
        session.delete(whisper)
