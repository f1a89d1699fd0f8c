"""
access/reply_keys.py — Reply key issue and matching
===================================================
A reply key is a random 32-byte secret (64 hex chars) tied to one reply,
one creator and one recipient. Only the bcrypt hash is stored; the
plaintext is returned once, to the creator, who passes it on.

Matching walks the post's unexpired keys and bcrypt-checks each one, so
an expired key is indistinguishable from a wrong one.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth.core import generate_reply_key, hash_password, verify_password
from ..config import settings
from ..models import ReplyKey, utcnow


def issue_reply_key(
    session: Session,
    *,
    post_id: str,
    creator_id: str,
    recipient_id: str,
) -> Tuple[ReplyKey, str]:
    """Stage a new key row. Returns (row, plaintext)."""
    plaintext = generate_reply_key()
    row = ReplyKey(
        key_hash=hash_password(plaintext),
        post_id=post_id,
        creator_id=creator_id,
        recipient_id=recipient_id,
        expires_at=utcnow() + timedelta(hours=settings.reply_key_ttl_hours),
    )
    session.add(row)
    session.flush()
    return row, plaintext


def match_reply_key(session: Session, post_id: str, plaintext: str) -> Optional[ReplyKey]:
    if not plaintext:
        return None
    candidates = session.execute(
        select(ReplyKey).where(
            ReplyKey.post_id == post_id,
            ReplyKey.expires_at > utcnow(),
        )
    ).scalars().all()
    for row in candidates:
        if verify_password(plaintext, row.key_hash):
            return row
    return None
