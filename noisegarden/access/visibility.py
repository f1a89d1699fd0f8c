"""
access/visibility.py — What a viewer may read
=============================================
Every post read goes through ``post_select()`` so that the liveness
predicate (``expires_at > now``) and the reply / repost counters are
applied the same way everywhere. Whisper filtering is layered on top with
``whisper_filter(viewer)``.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

from fastapi import HTTPException, status
from sqlalchemy import and_, false, func, or_, select, true
from sqlalchemy.orm import aliased
from sqlalchemy.sql import Select

from ..models import MODERATOR_ROLES, Post, User, utcnow
from ..schemas import PostRead


def live():
    """Predicate: the post has not expired."""
    return Post.expires_at > utcnow()


def post_select() -> Select:
    """
    SELECT of (Post, username, role, avatar_url, reply_count, repost_count)
    joined to the author. Counters only count unexpired rows.
    """
    now = utcnow()
    reply = aliased(Post)
    repost = aliased(Post)
    reply_count = (
        select(func.count(reply.id))
        .where(reply.parent_id == Post.id, reply.expires_at > now)
        .correlate(Post)
        .scalar_subquery()
    )
    repost_count = (
        select(func.count(repost.id))
        .where(repost.repost_of == Post.id, repost.expires_at > now)
        .correlate(Post)
        .scalar_subquery()
    )
    return (
        select(
            Post,
            User.username,
            User.role,
            User.avatar_url,
            reply_count.label("reply_count"),
            repost_count.label("repost_count"),
        )
        .join(User, User.id == Post.user_id)
        .where(Post.expires_at > now)
    )


def whisper_filter(viewer: Optional[User]):
    """
    Predicate hiding whispers the viewer may not read. Moderators see all;
    everyone else sees their own whispers and whispers on their posts.
    """
    if viewer is not None and viewer.role in MODERATOR_ROLES:
        return true()
    if viewer is None:
        return Post.is_whisper == false()
    parent = aliased(Post)
    on_my_post = (
        select(parent.id)
        .where(and_(parent.id == Post.parent_id, parent.user_id == viewer.id))
        .correlate(Post)
        .exists()
    )
    return or_(Post.is_whisper == false(), Post.user_id == viewer.id, on_my_post)


def to_post_read(row: Sequence[Any]) -> PostRead:
    post, username, role, avatar_url, reply_count, repost_count = row
    return PostRead(
        id=post.id,
        user_id=post.user_id,
        username=username,
        role=role,
        avatar_url=avatar_url,
        content=post.content,
        created_at=post.created_at,
        expires_at=post.expires_at,
        parent_id=post.parent_id,
        repost_of=post.repost_of,
        image_url=post.image_url,
        is_whisper=bool(post.is_whisper),
        is_quarantined=bool(post.is_quarantined),
        is_popup_thread=bool(post.is_popup_thread),
        popup_reply_limit=post.popup_reply_limit,
        popup_time_limit=post.popup_time_limit,
        popup_closed_at=post.popup_closed_at,
        replies_disabled=bool(post.replies_disabled),
        reply_count=int(reply_count or 0),
        repost_count=int(repost_count or 0),
    )


def get_live_post(session, post_id: str, detail: str = "Post not found.") -> Post:
    """The unexpired post, or 404."""
    post = session.execute(select(Post).where(Post.id == post_id, live())).scalar_one_or_none()
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return post


def fetch_post_read(session, post_id: str) -> Optional[PostRead]:
    row = session.execute(post_select().where(Post.id == post_id)).first()
    return to_post_read(row) if row is not None else None
