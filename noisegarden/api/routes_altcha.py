from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from ..security.captcha import captcha_enabled, new_challenge, verify_payload

router = APIRouter(prefix="/altcha", tags=["captcha"])


class VerifyRequest(BaseModel):
    payload: Optional[str] = None


@router.get("/challenge")
def challenge() -> dict:
    if not captcha_enabled():
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="altcha_env_missing")
    return new_challenge()


@router.post("/verify")
def verify(body: VerifyRequest) -> dict:
    if not body.payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing_payload")
    if not captcha_enabled():
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="altcha_env_missing")
    return {"verified": verify_payload(body.payload)}
