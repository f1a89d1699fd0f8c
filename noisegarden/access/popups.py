"""
access/popups.py — Popup thread closing rules
=============================================
A popup thread is a post that stops accepting replies once one of its
limits is hit. Rules are checked in a fixed order and the first one that
fires is reported as the reason:

  1. replies: reply count has reached ``reply_limit``
  2. time: ``time_limit_minutes`` have elapsed since the thread opened
  3. manual: the owner closed it

Until then the status carries the remaining reply budget and the
remaining time in milliseconds.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models import Post, PopupThread, as_utc, utcnow


@dataclass
class PopupStatus:
    is_closed: bool
    reason: Optional[str] = None  # replies | time | manual
    remaining_replies: Optional[int] = None
    remaining_time_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "is_closed": self.is_closed,
            "reason": self.reason,
            "remaining_replies": self.remaining_replies,
            "remaining_time_ms": self.remaining_time_ms,
        }


def compute_popup_status(
    *,
    is_popup_thread: bool,
    reply_limit: Optional[int],
    time_limit_minutes: Optional[int],
    opened_at: Optional[datetime],
    closed_at: Optional[datetime],
    reply_count: int,
    now: Optional[datetime] = None,
) -> PopupStatus:
    if not is_popup_thread:
        return PopupStatus(is_closed=False)

    now = now or utcnow()
    limit_ms = (time_limit_minutes or 0) * 60 * 1000
    elapsed_ms: Optional[int] = None
    if opened_at is not None:
        elapsed_ms = int((now - as_utc(opened_at)).total_seconds() * 1000)

    if reply_limit and reply_count >= reply_limit:
        return PopupStatus(is_closed=True, reason="replies", remaining_replies=0)

    if limit_ms > 0 and elapsed_ms is not None and elapsed_ms >= limit_ms:
        return PopupStatus(is_closed=True, reason="time", remaining_time_ms=0)

    if closed_at is not None:
        return PopupStatus(is_closed=True, reason="manual")

    return PopupStatus(
        is_closed=False,
        remaining_replies=max(0, reply_limit - reply_count) if reply_limit else None,
        remaining_time_ms=(
            max(0, limit_ms - elapsed_ms) if limit_ms > 0 and elapsed_ms is not None else None
        ),
    )


def latest_thread(session: Session, post_id: str) -> Optional[PopupThread]:
    return session.execute(
        select(PopupThread)
        .where(PopupThread.post_id == post_id)
        .order_by(PopupThread.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def popup_status_for(session: Session, post: Post) -> PopupStatus:
    """
    Status of a stored post. Limits come from the newest popup_threads row,
    falling back to the columns on the post itself (opened at creation).
    Whispers count towards the reply limit.
    """
    if not post.is_popup_thread:
        return PopupStatus(is_closed=False)

    thread = latest_thread(session, post.id)
    reply_count = session.execute(
        select(func.count(Post.id)).where(Post.parent_id == post.id, Post.expires_at > utcnow())
    ).scalar_one()

    if thread is not None:
        reply_limit = thread.reply_limit
        time_limit = thread.time_limit_minutes
        opened_at = thread.created_at
        closed_at = post.popup_closed_at or thread.closed_at
    else:
        reply_limit = post.popup_reply_limit
        time_limit = post.popup_time_limit
        opened_at = post.created_at
        closed_at = post.popup_closed_at

    return compute_popup_status(
        is_popup_thread=True,
        reply_limit=reply_limit,
        time_limit_minutes=time_limit,
        opened_at=opened_at,
        closed_at=closed_at,
        reply_count=reply_count,
    )
