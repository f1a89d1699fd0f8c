"""
routes_invites.py — Invite codes
================================
Accounts can only be created from an invite. Each member gets exactly one
invite to hand out; asking again returns the same code whether or not it
has been used. Admins mint a fresh code on every call.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import aliased

from ..auth.core import generate_invite_code
from ..auth.dependencies import get_current_user
from ..database import db_session
from ..models import Invite, User
from ..schemas import InviteRead, InviterRead, InviteUsage

router = APIRouter(prefix="/invites", tags=["invites"])


def mint_invite(session, creator_id: str) -> Invite:
    invite = Invite(code=generate_invite_code(), created_by=creator_id)
    session.add(invite)
    session.flush()
    return invite


@router.post("", response_model=InviteRead)
def create_invite(current_user: User = Depends(get_current_user)) -> InviteRead:
    with db_session() as session:
        if current_user.role != "admin":
            existing = session.execute(
                select(Invite)
                .where(Invite.created_by == current_user.id)
                .order_by(Invite.created_at)
                .limit(1)
            ).scalar_one_or_none()
            if existing is not None:
                return InviteRead.model_validate(existing)
        return InviteRead.model_validate(mint_invite(session, current_user.id))


@router.get("/mine", response_model=List[InviteUsage])
def my_invites(current_user: User = Depends(get_current_user)) -> List[InviteUsage]:
    used_by = aliased(User)
    with db_session() as session:
        rows = session.execute(
            select(Invite.code, Invite.used_by, used_by.username)
            .outerjoin(used_by, used_by.id == Invite.used_by)
            .where(Invite.created_by == current_user.id)
            .order_by(Invite.created_at.desc())
        ).all()
    return [InviteUsage(code=c, used_by=u, used_by_username=n) for c, u, n in rows]


@router.get("/inviter", response_model=InviterRead)
def my_inviter(current_user: User = Depends(get_current_user)) -> InviterRead:
    with db_session() as session:
        row = session.execute(
            select(User.id, User.username)
            .join(Invite, Invite.created_by == User.id)
            .where(Invite.used_by == current_user.id)
        ).first()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No inviter found.")
    return InviterRead(inviter_id=row[0], inviter_username=row[1])


@router.get("/{code}", response_model=InviteRead)
def get_invite(code: str) -> InviteRead:
    with db_session() as session:
        invite = session.get(Invite, code.strip().upper())
        if invite is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invite not found.")
        return InviteRead.model_validate(invite)
