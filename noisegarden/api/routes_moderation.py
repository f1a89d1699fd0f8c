"""
api/routes_moderation.py — Moderator tools
==========================================
Flag review, quarantine, bans and mutes. Everything here requires the
moderator or admin role except the two status lookups, which any client
may call to explain why an account cannot post.

A ban is permanent until lifted and blocks authentication outright. A
mute is time-boxed (1 hour to 1 year) and only blocks writing.
"""
from __future__ import annotations

from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from ..access.restrictions import active_ban, active_mute, ensure_can_restrict
from ..access.visibility import get_live_post, post_select, to_post_read
from ..auth.dependencies import require_moderator
from ..database import db_session
from ..models import BannedUser, Flag, MutedUser, Post, User, utcnow
from ..notify.service import add_notification, deliver
from ..schemas import (
    BanCreate,
    BanRead,
    BanStatus,
    FlaggedPostRead,
    MuteCreate,
    MuteRead,
    MuteStatus,
    PostRead,
)
from ..security.audit import log_security_event
from ..security.validation import sanitize_html

router = APIRouter(prefix="/moderation", tags=["moderation"])


def _target_user(session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    return user


# ---------------------------------------------------------------------------
# Flags & quarantine
# ---------------------------------------------------------------------------

@router.get("/flagged", response_model=List[FlaggedPostRead])
def flagged_posts(_mod: User = Depends(require_moderator)) -> List[FlaggedPostRead]:
    flag_count = (
        select(func.count(Flag.id)).where(Flag.post_id == Post.id).correlate(Post).scalar_subquery()
    )
    with db_session() as session:
        rows = session.execute(
            post_select()
            .add_columns(flag_count.label("flag_count"))
            .where(select(Flag.id).where(Flag.post_id == Post.id).correlate(Post).exists())
            .order_by(Post.created_at.desc())
        ).all()
    return [
        FlaggedPostRead(**to_post_read(r[:6]).model_dump(), flag_count=int(r[6] or 0))
        for r in rows
    ]


@router.post("/posts/{post_id}/quarantine", response_model=PostRead)
def quarantine_post(
    request: Request,
    post_id: str,
    mod: User = Depends(require_moderator),
) -> PostRead:
    note = None
    with db_session() as session:
        post = get_live_post(session, post_id)
        if not post.is_quarantined:
            post.is_quarantined = True
            note = add_notification(session, user_id=post.user_id, type="quarantine",
                                    actor=mod, post_id=post_id)
        session.flush()
        row = session.execute(post_select().where(Post.id == post_id)).first()
    log_security_event("post_quarantined", request, mod, post_id=post_id)
    deliver([note])
    return to_post_read(row)


@router.delete("/posts/{post_id}/quarantine", response_model=PostRead)
def lift_quarantine(
    request: Request,
    post_id: str,
    mod: User = Depends(require_moderator),
) -> PostRead:
    with db_session() as session:
        post = get_live_post(session, post_id)
        post.is_quarantined = False
        session.flush()
        row = session.execute(post_select().where(Post.id == post_id)).first()
    log_security_event("post_unquarantined", request, mod, post_id=post_id)
    return to_post_read(row)


# ---------------------------------------------------------------------------
# Bans
# ---------------------------------------------------------------------------

@router.post("/bans", response_model=BanStatus)
def ban_user(request: Request, body: BanCreate, mod: User = Depends(require_moderator)) -> BanStatus:
    with db_session() as session:
        target = _target_user(session, body.user_id)
        ensure_can_restrict(mod, target)
        ban = active_ban(session, target.id)
        if ban is None:
            ban = BannedUser(user_id=target.id)
            session.add(ban)
        ban.reason = sanitize_html(body.reason.strip())
        ban.banned_by = mod.id
        ban.banned_at = utcnow()
        session.flush()
        result = BanStatus(banned=True, reason=ban.reason, banned_at=ban.banned_at, banned_by=mod.username)
    log_security_event("user_banned", request, mod, target_user_id=body.user_id, reason=result.reason)
    return result


@router.delete("/bans/{user_id}", status_code=204)
def unban_user(request: Request, user_id: str, mod: User = Depends(require_moderator)) -> None:
    with db_session() as session:
        ban = active_ban(session, user_id)
        if ban is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User is not banned.")
        session.delete(ban)
    log_security_event("user_unbanned", request, mod, target_user_id=user_id)


@router.get("/bans", response_model=List[BanRead])
def list_bans(_mod: User = Depends(require_moderator)) -> List[BanRead]:
    banner = aliased(User)
    with db_session() as session:
        rows = session.execute(
            select(BannedUser, User.username, banner.username)
            .join(User, User.id == BannedUser.user_id)
            .outerjoin(banner, banner.id == BannedUser.banned_by)
            .order_by(BannedUser.banned_at.desc())
        ).all()
    return [
        BanRead(id=b.user_id, username=name, reason=b.reason, banned_at=b.banned_at, banned_by=by)
        for b, name, by in rows
    ]


@router.get("/bans/{user_id}", response_model=BanStatus)
def ban_status(user_id: str) -> BanStatus:
    banner = aliased(User)
    with db_session() as session:
        row = session.execute(
            select(BannedUser, banner.username)
            .outerjoin(banner, banner.id == BannedUser.banned_by)
            .where(BannedUser.user_id == user_id)
        ).first()
    if row is None:
        return BanStatus(banned=False)
    ban, by = row
    return BanStatus(banned=True, reason=ban.reason, banned_at=ban.banned_at, banned_by=by)


# ---------------------------------------------------------------------------
# Mutes
# ---------------------------------------------------------------------------

@router.post("/mutes", response_model=MuteStatus)
def mute_user(request: Request, body: MuteCreate, mod: User = Depends(require_moderator)) -> MuteStatus:
    with db_session() as session:
        target = _target_user(session, body.user_id)
        ensure_can_restrict(mod, target)
        mute = session.execute(
            select(MutedUser).where(MutedUser.user_id == target.id)
        ).scalar_one_or_none()
        if mute is None:
            mute = MutedUser(user_id=target.id)
            session.add(mute)
        now = utcnow()
        mute.reason = sanitize_html(body.reason.strip())
        mute.muted_by = mod.id
        mute.muted_at = now
        mute.expires_at = now + timedelta(hours=body.duration_hours)
        session.flush()
        result = MuteStatus(muted=True, reason=mute.reason, expires_at=mute.expires_at,
                            muted_by=mod.username)
    log_security_event("user_muted", request, mod, target_user_id=body.user_id,
                       duration_hours=body.duration_hours)
    return result


@router.delete("/mutes/{user_id}", status_code=204)
def unmute_user(request: Request, user_id: str, mod: User = Depends(require_moderator)) -> None:
    with db_session() as session:
        mute = session.execute(
            select(MutedUser).where(MutedUser.user_id == user_id)
        ).scalar_one_or_none()
        if mute is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User is not muted.")
        session.delete(mute)
    log_security_event("user_unmuted", request, mod, target_user_id=user_id)


@router.get("/mutes", response_model=List[MuteRead])
def list_mutes(_mod: User = Depends(require_moderator)) -> List[MuteRead]:
    """Active mutes only."""
    muter = aliased(User)
    with db_session() as session:
        rows = session.execute(
            select(MutedUser, User.username, muter.username)
            .join(User, User.id == MutedUser.user_id)
            .outerjoin(muter, muter.id == MutedUser.muted_by)
            .where(MutedUser.expires_at > utcnow())
            .order_by(MutedUser.expires_at.asc())
        ).all()
    return [
        MuteRead(
            id=m.user_id,
            username=name,
            reason=m.reason,
            muted_at=m.muted_at,
            expires_at=m.expires_at,
            muted_by=by,
        )
        for m, name, by in rows
    ]


@router.get("/mutes/{user_id}", response_model=MuteStatus)
def mute_status(user_id: str) -> MuteStatus:
    with db_session() as session:
        mute = active_mute(session, user_id)
        if mute is None:
            return MuteStatus(muted=False)
        muter = session.get(User, mute.muted_by) if mute.muted_by else None
        return MuteStatus(
            muted=True,
            reason=mute.reason,
            expires_at=mute.expires_at,
            muted_by=muter.username if muter else None,
        )
