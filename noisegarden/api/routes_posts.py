"""
api/routes_posts.py — Feed, posts, replies and reposts
======================================================
Every post carries an ``expires_at``; nothing past it is ever returned.
Reading the feed also purges expired rows so the table stays small.

Replies pass through the reply gate (closed popup threads, disabled
replies, reply keys) before they are written. The parent's author and any
``@mentioned`` members are notified after the write commits.
"""
from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..access.expiry import purge_expired_posts
from ..access.replies import ensure_can_reply
from ..access.restrictions import can_view_whisper, ensure_not_muted
from ..access.visibility import (
    fetch_post_read,
    get_live_post,
    post_select,
    to_post_read,
    whisper_filter,
)
from ..auth.dependencies import get_current_user, get_optional_user, is_moderator
from ..database import db_session
from ..models import Post, PopupThread, User, utcnow
from ..notify.service import add_mention_notifications, add_notification, deliver
from ..schemas import PostCreate, PostRead, RepliesDisabledUpdate
from ..security.audit import log_security_event
from ..security.validation import check_content, clean_post_content, extract_mentions

router = APIRouter(prefix="/posts", tags=["posts"])

MAX_FEED_LIMIT = 100


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

@router.get("", response_model=List[PostRead])
def get_feed(
    limit: int = Query(20, ge=1, le=MAX_FEED_LIMIT),
    offset: int = Query(0, ge=0),
    sort: str = Query("newest", pattern="^(newest|oldest)$"),
    viewer: Optional[User] = Depends(get_optional_user),
) -> List[PostRead]:
    """Top-level posts that have not expired, with reply counts."""
    order = Post.created_at.desc() if sort == "newest" else Post.created_at.asc()
    with db_session() as session:
        purge_expired_posts(session)
        rows = session.execute(
            post_select()
            .where(Post.parent_id.is_(None), whisper_filter(viewer))
            .order_by(order)
            .limit(limit)
            .offset(offset)
        ).all()
    return [to_post_read(r) for r in rows]


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@router.post("", response_model=PostRead, status_code=201)
def create_post(
    request: Request,
    body: PostCreate,
    current_user: User = Depends(get_current_user),
) -> PostRead:
    errors = check_content(body.content)
    if errors:
        log_security_event("post_rejected", request, current_user, errors=errors)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=errors)

    is_popup = body.popup_reply_limit is not None or body.popup_time_limit is not None
    if is_popup and (body.popup_reply_limit is None or body.popup_time_limit is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Popup threads need both a reply limit and a time limit.",
        )

    content = clean_post_content(body.content)
    notes = []
    with db_session() as session:
        ensure_not_muted(session, current_user)

        parent: Optional[Post] = None
        if body.parent_id:
            parent = get_live_post(session, body.parent_id, detail="Parent post not found.")
            if parent.is_whisper:
                ensure_whisper_visible(session, parent, current_user)
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                    detail="Cannot reply to a whisper.")
            ensure_can_reply(session, parent, current_user, body.reply_key)

        post = Post(
            user_id=current_user.id,
            content=content,
            parent_id=parent.id if parent else None,
            image_url=body.image_url,
            replies_disabled=body.replies_disabled,
            is_popup_thread=is_popup,
            popup_reply_limit=body.popup_reply_limit,
            popup_time_limit=body.popup_time_limit,
        )
        if body.ttl_seconds and body.ttl_seconds > 0:
            post.expires_at = utcnow() + timedelta(seconds=body.ttl_seconds)
        session.add(post)
        session.flush()

        if is_popup:
            session.add(
                PopupThread(
                    post_id=post.id,
                    reply_limit=body.popup_reply_limit,
                    time_limit_minutes=body.popup_time_limit,
                )
            )

        if parent is not None:
            notes.append(
                add_notification(session, user_id=parent.user_id, type="reply",
                                 actor=current_user, post_id=post.id)
            )
        notes.extend(
            add_mention_notifications(session, extract_mentions(content), current_user, post.id)
        )
        session.flush()
        result = fetch_post_read(session, post.id)

    deliver(notes)
    return result


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def ensure_whisper_visible(session, post: Post, viewer: Optional[User]) -> None:
    """404 unless the viewer may read this whisper, so its existence is not leaked."""
    parent = session.get(Post, post.parent_id) if post.parent_id else None
    if not can_view_whisper(post, parent.user_id if parent else None, viewer):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found.")


@router.get("/{post_id}", response_model=PostRead)
def get_post(post_id: str, viewer: Optional[User] = Depends(get_optional_user)) -> PostRead:
    with db_session() as session:
        post = get_live_post(session, post_id)
        if post.is_whisper:
            ensure_whisper_visible(session, post, viewer)
        return fetch_post_read(session, post_id)


@router.get("/{post_id}/replies", response_model=List[PostRead])
def get_replies(post_id: str, viewer: Optional[User] = Depends(get_optional_user)) -> List[PostRead]:
    """Unexpired replies, oldest first. Whispers only for those allowed to read them."""
    with db_session() as session:
        post = get_live_post(session, post_id)
        if post.is_whisper:
            ensure_whisper_visible(session, post, viewer)
        rows = session.execute(
            post_select()
            .where(Post.parent_id == post_id, whisper_filter(viewer))
            .order_by(Post.created_at.asc())
        ).all()
    return [to_post_read(r) for r in rows]


# ---------------------------------------------------------------------------
# Delete / repost / reply switch
# ---------------------------------------------------------------------------

@router.delete("/{post_id}", status_code=204)
def delete_post(
    request: Request,
    post_id: str,
    current_user: User = Depends(get_current_user),
) -> None:
    with db_session() as session:
        post = session.get(Post, post_id)
        if post is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found.")
        if post.user_id != current_user.id and not is_moderator(current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="You can only delete your own posts.")
        author_id = post.user_id
        session.delete(post)

    if author_id != current_user.id:
        log_security_event("post_deleted_by_moderator", request, current_user, post_id=post_id)


@router.post("/{post_id}/repost", response_model=PostRead, status_code=201)
def repost(post_id: str, current_user: User = Depends(get_current_user)) -> PostRead:
    with db_session() as session:
        ensure_not_muted(session, current_user)
        source = get_live_post(session, post_id)
        if source.is_whisper:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="Whispers cannot be reposted.")
        post = Post(
            user_id=current_user.id,
            content=source.content,
            image_url=source.image_url,
            repost_of=source.id,
        )
        session.add(post)
        session.flush()
        note = add_notification(session, user_id=source.user_id, type="repost",
                                actor=current_user, post_id=source.id)
        session.flush()
        result = fetch_post_read(session, post.id)

    deliver([note])
    return result


@router.patch("/{post_id}/replies-disabled", response_model=PostRead)
def set_replies_disabled(
    post_id: str,
    body: RepliesDisabledUpdate,
    current_user: User = Depends(get_current_user),
) -> PostRead:
    with db_session() as session:
        post = get_live_post(session, post_id)
        if post.user_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="Only the author can change this.")
        post.replies_disabled = body.replies_disabled
        session.flush()
        return fetch_post_read(session, post_id)
