"""
auth/routes_webauthn.py — Passkey signup and login
==================================================
Two ceremonies, each split into options + verify:

  register  options → the browser creates a credential → verify
            (verify also consumes an invite and creates the account)
  login     options → the browser signs the challenge → verify

Challenges are kept in process memory for
``GARDEN_WEBAUTHN_CHALLENGE_TTL_SECONDS`` (5 minutes) and are single-use.
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy import select
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, options_to_json
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
)
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    PublicKeyCredentialDescriptor,
    UserVerificationRequirement,
)

from .accounts import create_account, issue_backup_codes, record_login, validate_signup_fields
from .challenges import challenge_store
from .core import create_access_token
from .routes_auth import SignupResponse, TokenResponse
from ..access.restrictions import active_ban
from ..config import settings
from ..database import db_session
from ..models import User
from ..rate_limit import limiter
from ..schemas import UserRead
from ..security.audit import log_security_event
from ..security.validation import check_username

router = APIRouter(prefix="/webauthn", tags=["webauthn"])


class UsernameRequest(BaseModel):
    username: str


class RegisterVerifyRequest(BaseModel):
    username: str
    password: str
    invite_code: str
    credential: Dict[str, Any]


class LoginVerifyRequest(BaseModel):
    username: str
    credential: Dict[str, Any]


def _json(options) -> Response:
    return Response(content=options_to_json(options), media_type="application/json")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

@router.post("/register/options")
def register_options(body: UsernameRequest) -> Response:
    errors = check_username(body.username)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=errors)
    with db_session() as session:
        taken = session.execute(select(User.id).where(User.username == body.username)).first()
    if taken:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken.")

    options = generate_registration_options(
        rp_id=settings.webauthn_rp_id,
        rp_name=settings.webauthn_rp_name,
        user_name=body.username,
        attestation=AttestationConveyancePreference.NONE,
    )
    challenge_store.put("register", body.username, options.challenge)
    return _json(options)


@router.post("/register/verify", response_model=SignupResponse, status_code=201)
@limiter.limit(settings.signup_rate_limit)
def register_verify(request: Request, body: RegisterVerifyRequest) -> SignupResponse:
    invite_code = body.invite_code.strip().upper()
    validate_signup_fields(body.username, body.password, invite_code)

    challenge = challenge_store.pop("register", body.username)
    if challenge is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Registration challenge expired or missing.")
    try:
        verification = verify_registration_response(
            credential=body.credential,
            expected_challenge=challenge,
            expected_rp_id=settings.webauthn_rp_id,
            expected_origin=settings.expected_origin,
        )
    except (InvalidRegistrationResponse, InvalidJSONStructure, KeyError, ValueError) as exc:
        log_security_event("webauthn_register_failed", request, username=body.username, error=str(exc))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Passkey registration failed.")

    with db_session() as session:
        user = create_account(
            session,
            username=body.username,
            password=body.password,
            invite_code=invite_code,
            credential_id=verification.credential_id,
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count,
        )
        codes = issue_backup_codes(session, user.id)

    log_security_event("signup", request, user, method="webauthn", invite_code=invite_code)
    return SignupResponse(
        access_token=create_access_token(user.id, user.username, user.role),
        user=UserRead.model_validate(user),
        backup_codes=codes,
    )


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

def _passkey_user(username: str) -> User:
    with db_session() as session:
        user = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if user is None or not user.webauthn_credential_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail="No passkey registered for this user.")
    return user


@router.post("/login/options")
def login_options(body: UsernameRequest) -> Response:
    user = _passkey_user(body.username)
    options = generate_authentication_options(
        rp_id=settings.webauthn_rp_id,
        allow_credentials=[PublicKeyCredentialDescriptor(id=user.webauthn_credential_id)],
        user_verification=UserVerificationRequirement.PREFERRED,
    )
    challenge_store.put("login", body.username, options.challenge)
    return _json(options)


@router.post("/login/verify", response_model=TokenResponse)
@limiter.limit(settings.login_rate_limit)
def login_verify(request: Request, body: LoginVerifyRequest) -> TokenResponse:
    user = _passkey_user(body.username)

    challenge = challenge_store.pop("login", body.username)
    if challenge is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Login challenge expired or missing.")

    try:
        if base64url_to_bytes(str(body.credential.get("id", ""))) != user.webauthn_credential_id:
            raise InvalidAuthenticationResponse("Unknown credential")
        verification = verify_authentication_response(
            credential=body.credential,
            expected_challenge=challenge,
            expected_rp_id=settings.webauthn_rp_id,
            expected_origin=settings.expected_origin,
            credential_public_key=user.webauthn_public_key,
            credential_current_sign_count=user.webauthn_sign_count or 0,
        )
    except (InvalidAuthenticationResponse, InvalidJSONStructure, KeyError, ValueError) as exc:
        log_security_event("login_failed", request, user, method="webauthn", error=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Passkey verification failed.")

    with db_session() as session:
        if active_ban(session, user.id) is not None:
            banned = True
        else:
            banned = False
            row = session.get(User, user.id)
            row.webauthn_sign_count = verification.new_sign_count
            record_login(session, user, request, method="webauthn")

    if banned:
        log_security_event("login_banned", request, user)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is banned.")

    return TokenResponse(
        access_token=create_access_token(user.id, user.username, user.role),
        user=UserRead.model_validate(user),
    )
