"""
api/routes_flags.py — Community flags
=====================================
Members flag posts with a reason; one flag per member per post (flagging
again replaces the reason). A post that collects
``GARDEN_QUARANTINE_FLAG_THRESHOLD`` flags is quarantined automatically
and its author is told.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select

from ..access.visibility import get_live_post
from ..auth.dependencies import get_current_user
from ..config import settings
from ..database import db_session
from ..models import Flag, User
from ..notify.service import add_notification, deliver
from ..schemas import FlagCreate, FlagRead, FlagReasonCount, FlagResult, FlagSummary
from ..security.audit import log_security_event
from ..security.validation import sanitize_html

router = APIRouter(prefix="/posts", tags=["flags"])


@router.post("/{post_id}/flags", response_model=FlagResult)
def flag_post(
    request: Request,
    post_id: str,
    body: FlagCreate,
    current_user: User = Depends(get_current_user),
) -> FlagResult:
    reason = sanitize_html(body.reason.strip())
    note = None
    with db_session() as session:
        post = get_live_post(session, post_id)
        existing = session.execute(
            select(Flag).where(Flag.post_id == post_id, Flag.user_id == current_user.id)
        ).scalar_one_or_none()
        if existing is not None:
            existing.reason = reason
        else:
            session.add(Flag(post_id=post_id, user_id=current_user.id, reason=reason))
        session.flush()

        count = session.execute(
            select(func.count(Flag.id)).where(Flag.post_id == post_id)
        ).scalar_one()
        newly_quarantined = count >= settings.quarantine_flag_threshold and not post.is_quarantined
        if newly_quarantined:
            post.is_quarantined = True
            note = add_notification(session, user_id=post.user_id, type="quarantine",
                                    actor=current_user, post_id=post_id)
        quarantined = bool(post.is_quarantined)

    if newly_quarantined:
        log_security_event("post_auto_quarantined", request, current_user,
                           post_id=post_id, flag_count=count)
        deliver([note])
    return FlagResult(flag_count=count, quarantined=quarantined)


@router.get("/{post_id}/flags", response_model=List[FlagRead])
def list_flags(post_id: str) -> List[FlagRead]:
    with db_session() as session:
        rows = session.execute(
            select(Flag, User.username)
            .join(User, User.id == Flag.user_id)
            .where(Flag.post_id == post_id)
            .order_by(Flag.created_at.desc())
        ).all()
    return [
        FlagRead(
            id=f.id,
            post_id=f.post_id,
            user_id=f.user_id,
            username=username,
            reason=f.reason,
            created_at=f.created_at,
        )
        for f, username in rows
    ]


@router.get("/{post_id}/flags/summary", response_model=FlagSummary)
def flag_summary(post_id: str) -> FlagSummary:
    with db_session() as session:
        rows = session.execute(
            select(Flag.reason, func.count(Flag.id))
            .where(Flag.post_id == post_id)
            .group_by(Flag.reason)
            .order_by(func.count(Flag.id).desc())
        ).all()
    reasons = [FlagReasonCount(reason=r, count=c) for r, c in rows]
    return FlagSummary(total=sum(r.count for r in reasons), reasons=reasons)
