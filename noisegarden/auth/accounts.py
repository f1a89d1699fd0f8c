"""
auth/accounts.py — Account creation and login bookkeeping
=========================================================
Shared by password signup (``/auth/signup``) and passkey registration
(``/webauthn/register/verify``): both validate the same fields, consume
an invite in the same transaction as the user insert, and record logins
the same way.
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import HTTPException, Request, status
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .core import generate_backup_code, hash_password
from ..config import settings
from ..models import BackupCode, Invite, LoginHistory, User, utcnow
from ..security.audit import client_ip
from ..security.validation import check_invite_code, check_password, check_username


def validate_signup_fields(username: str, password: str, invite_code: str) -> None:
    errors = check_username(username) + check_password(password) + check_invite_code(invite_code)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=errors)


def _username_taken() -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken.")


def ensure_username_free(session: Session, username: str) -> None:
    taken = session.execute(select(User.id).where(User.username == username)).first()
    if taken:
        raise _username_taken()


def create_account(
    session: Session,
    *,
    username: str,
    password: str,
    invite_code: str,
    credential_id: Optional[bytes] = None,
    public_key: Optional[bytes] = None,
    sign_count: int = 0,
) -> User:
    """
    Insert the user and consume the invite. Must run inside one session so
    a failed invite claim rolls the user insert back.
    """
    ensure_username_free(session, username)

    invite = session.get(Invite, invite_code)
    if invite is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Invalid invite code.")
    if invite.used_by is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail="Invite code has already been used.")

    user = User(
        username=username,
        password_hash=hash_password(password),
        role="user",
        webauthn_credential_id=credential_id,
        webauthn_public_key=public_key,
        webauthn_sign_count=sign_count,
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError as exc:
        # a concurrent signup claimed the name after the check above
        raise _username_taken() from exc

    claimed = session.execute(
        update(Invite)
        .where(Invite.code == invite_code, Invite.used_by.is_(None))
        .values(used_by=user.id, used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail="Invite code has already been used.")
    return user


def issue_backup_codes(session: Session, user_id: str) -> List[str]:
    """Replace the user's backup codes. Returns the plaintext codes (shown once)."""
    session.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
    codes = [generate_backup_code() for _ in range(settings.backup_code_count)]
    for code in codes:
        session.add(BackupCode(user_id=user_id, code_hash=hash_password(code)))
    return codes


def record_login(session: Session, user: User, request: Request, method: str) -> None:
    row = session.get(User, user.id)
    if row is not None:
        row.last_login_at = utcnow()
        row.login_count = (row.login_count or 0) + 1
    session.add(
        LoginHistory(
            user_id=user.id,
            username=user.username,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent", "")[:512],
            method=method,
        )
    )
