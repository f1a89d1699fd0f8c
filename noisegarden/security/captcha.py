"""
security/captcha.py — ALTCHA proof-of-work challenges
=====================================================
Thin wrapper over the ``altcha`` library. Challenges are HMAC-signed with
``GARDEN_ALTCHA_HMAC_KEY``; when the key is unset CAPTCHA is disabled and
signup does not ask for a payload.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from altcha import ChallengeOptions, create_challenge, verify_solution

from ..config import settings

logger = logging.getLogger("garden.captcha")

CHALLENGE_TTL_MINUTES = 10


def captcha_enabled() -> bool:
    return bool(settings.altcha_hmac_key)


def new_challenge() -> Dict[str, Any]:
    challenge = create_challenge(
        ChallengeOptions(
            hmac_key=settings.altcha_hmac_key,
            max_number=settings.altcha_max_number,
            expires=datetime.now(timezone.utc) + timedelta(minutes=CHALLENGE_TTL_MINUTES),
        )
    )
    return {
        "algorithm": challenge.algorithm,
        "challenge": challenge.challenge,
        "maxnumber": challenge.max_number,
        "salt": challenge.salt,
        "signature": challenge.signature,
    }


def verify_payload(payload: Optional[str]) -> bool:
    if not payload:
        return False
    try:
        ok, err = verify_solution(payload, settings.altcha_hmac_key, check_expires=True)
    except (ValueError, TypeError, KeyError) as exc:
        logger.info("Malformed ALTCHA payload: %s", exc)
        return False
    if not ok:
        logger.info("ALTCHA verification failed: %s", err)
    return bool(ok)
