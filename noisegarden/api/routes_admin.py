from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select

from .routes_invites import mint_invite
from ..access.expiry import purge_expired
from ..auth.dependencies import require_admin, require_moderator
from ..database import db_session
from ..models import Invite, LoginHistory, Post, SecurityEvent, User, utcnow
from ..notify.push import dispatch_push
from ..schemas import (
    BroadcastRequest,
    InviteRead,
    LoginHistoryRead,
    RoleUpdate,
    SecurityEventRead,
    StatsRead,
    UserRead,
)
from ..security.audit import log_security_event

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@router.get("/users", response_model=List[UserRead])
def list_users(_mod: User = Depends(require_moderator)) -> List[UserRead]:
    with db_session() as session:
        users = session.execute(select(User).order_by(User.created_at)).scalars().all()
        return [UserRead.model_validate(u) for u in users]


@router.patch("/users/{user_id}/role", response_model=UserRead)
def set_role(
    request: Request,
    user_id: str,
    body: RoleUpdate,
    admin: User = Depends(require_admin),
) -> UserRead:
    if user_id == admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="You cannot change your own role.")
    with db_session() as session:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
        old_role = user.role
        user.role = body.role
        session.flush()
        result = UserRead.model_validate(user)
    log_security_event("role_changed", request, admin, target_user_id=user_id,
                       old_role=old_role, new_role=body.role)
    return result


# ---------------------------------------------------------------------------
# Stats & maintenance
# ---------------------------------------------------------------------------

@router.get("/stats", response_model=StatsRead)
def stats(_mod: User = Depends(require_moderator)) -> StatsRead:
    with db_session() as session:
        users = session.execute(select(func.count(User.id))).scalar_one()
        posts = session.execute(
            select(func.count(Post.id)).where(Post.expires_at > utcnow())
        ).scalar_one()
        invites = session.execute(select(func.count(Invite.code))).scalar_one()
    return StatsRead(total_users=users, total_posts=posts, total_invites=invites)


@router.post("/invites", response_model=InviteRead)
def admin_create_invite(admin: User = Depends(require_admin)) -> InviteRead:
    with db_session() as session:
        return InviteRead.model_validate(mint_invite(session, admin.id))


@router.post("/purge-expired")
def purge(request: Request, admin: User = Depends(require_admin)) -> dict:
    counts = purge_expired()
    log_security_event("purge_expired", request, admin, **counts)
    return {"deleted": sum(counts.values()), **counts}


# ---------------------------------------------------------------------------
# Audit trails
# ---------------------------------------------------------------------------

@router.get("/security-events", response_model=List[SecurityEventRead])
def security_events(
    event: Optional[str] = Query(None, description="Filter by event name"),
    limit: int = Query(100, ge=1, le=500),
    _admin: User = Depends(require_admin),
) -> List[SecurityEventRead]:
    with db_session() as session:
        stmt = select(SecurityEvent).order_by(SecurityEvent.id.desc()).limit(limit)
        if event:
            stmt = stmt.where(SecurityEvent.event == event)
        rows = session.execute(stmt).scalars().all()
        return [SecurityEventRead.model_validate(r) for r in rows]


@router.get("/login-history", response_model=List[LoginHistoryRead])
def login_history(
    user_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    _admin: User = Depends(require_admin),
) -> List[LoginHistoryRead]:
    with db_session() as session:
        stmt = select(LoginHistory).order_by(LoginHistory.id.desc()).limit(limit)
        if user_id:
            stmt = stmt.where(LoginHistory.user_id == user_id)
        rows = session.execute(stmt).scalars().all()
        return [LoginHistoryRead.model_validate(r) for r in rows]


# ---------------------------------------------------------------------------
# Broadcast
# ---------------------------------------------------------------------------

@router.post("/broadcast")
def broadcast(request: Request, body: BroadcastRequest, admin: User = Depends(require_admin)) -> dict:
    """Push a message to every registered device."""
    sent = dispatch_push(body.model_dump())
    log_security_event("broadcast", request, admin, title=body.title, sent=sent)
    return {"sent": sent}
