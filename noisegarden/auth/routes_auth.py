from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy import select

from ..access.restrictions import active_ban
from .accounts import create_account, issue_backup_codes, record_login, validate_signup_fields
from .core import create_access_token, hash_password, verify_password
from .dependencies import get_current_user
from ..config import settings
from ..database import db_session
from ..models import BackupCode, User
from ..rate_limit import limiter
from ..schemas import UserRead
from ..security.audit import detect_suspicious_activity, log_security_event
from ..security.captcha import captcha_enabled, verify_payload
from ..security.validation import check_password

router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class SignupRequest(BaseModel):
    username: str
    password: str
    invite_code: str
    altcha_payload: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class SignupResponse(TokenResponse):
    backup_codes: List[str]


class PasswordChange(BaseModel):
    current_password: str
    new_password: str


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]


class RecoverRequest(BaseModel):
    username: str
    backup_code: str = Field(..., min_length=4, max_length=32)
    new_password: str


def _token_for(user: User) -> str:
    return create_access_token(user.id, user.username, user.role)


# ---------------------------------------------------------------------------
# Signup (invite required)
# ---------------------------------------------------------------------------

@router.post("/signup", response_model=SignupResponse, status_code=201)
@limiter.limit(settings.signup_rate_limit)
def signup(request: Request, body: SignupRequest) -> SignupResponse:
    detect_suspicious_activity(request)

    if captcha_enabled() and not verify_payload(body.altcha_payload):
        log_security_event("signup_captcha_failed", request, username=body.username)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="CAPTCHA verification failed.")

    invite_code = body.invite_code.strip().upper()
    try:
        validate_signup_fields(body.username, body.password, invite_code)
    except HTTPException as exc:
        log_security_event("signup_rejected", request, username=body.username, errors=exc.detail)
        raise

    with db_session() as session:
        user = create_account(
            session,
            username=body.username,
            password=body.password,
            invite_code=invite_code,
        )
        codes = issue_backup_codes(session, user.id)

    log_security_event("signup", request, user, invite_code=invite_code)
    return SignupResponse(
        access_token=_token_for(user),
        user=UserRead.model_validate(user),
        backup_codes=codes,
    )


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

@router.post("/login", response_model=TokenResponse)
@limiter.limit(settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> TokenResponse:
    detect_suspicious_activity(request)

    with db_session() as session:
        user = session.execute(
            select(User).where(User.username == body.username)
        ).scalar_one_or_none()

    if not user or not verify_password(body.password, user.password_hash):
        log_security_event("login_failed", request, username=body.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid credentials.")

    with db_session() as session:
        if active_ban(session, user.id) is not None:
            banned = True
        else:
            banned = False
            record_login(session, user, request, method="password")

    if banned:
        log_security_event("login_banned", request, user)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Account is banned.")

    return TokenResponse(access_token=_token_for(user), user=UserRead.model_validate(user))


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)


@router.put("/password")
def change_password(
    request: Request,
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
):
    if not verify_password(body.current_password, current_user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Current password is incorrect.")
    errors = check_password(body.new_password)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=errors)

    with db_session() as session:
        row = session.get(User, current_user.id)
        row.password_hash = hash_password(body.new_password)

    log_security_event("password_changed", request, current_user)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Backup codes & recovery
# ---------------------------------------------------------------------------

@router.post("/backup-codes", response_model=BackupCodesResponse)
def regenerate_backup_codes(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> BackupCodesResponse:
    with db_session() as session:
        codes = issue_backup_codes(session, current_user.id)
    log_security_event("backup_codes_regenerated", request, current_user)
    return BackupCodesResponse(backup_codes=codes)


@router.post("/recover", response_model=TokenResponse)
@limiter.limit(settings.login_rate_limit)
def recover(request: Request, body: RecoverRequest) -> TokenResponse:
    errors = check_password(body.new_password)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=errors)

    code = body.backup_code.strip().upper()
    with db_session() as session:
        user = session.execute(
            select(User).where(User.username == body.username)
        ).scalar_one_or_none()
        matched: Optional[BackupCode] = None
        if user is not None:
            unused = session.execute(
                select(BackupCode)
                .where(BackupCode.user_id == user.id, BackupCode.used.is_(False))
                .order_by(BackupCode.created_at)
            ).scalars().all()
            matched = next((c for c in unused if verify_password(code, c.code_hash)), None)

        if user is None or matched is None:
            recovered = None
        else:
            matched.used = True
            user.password_hash = hash_password(body.new_password)
            record_login(session, user, request, method="backup_code")
            recovered = user

    if recovered is None:
        log_security_event("recovery_failed", request, username=body.username)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Invalid username or backup code.")

    log_security_event("account_recovered", request, recovered)
    return TokenResponse(access_token=_token_for(recovered), user=UserRead.model_validate(recovered))
