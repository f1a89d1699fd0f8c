from __future__ import annotations

import logging
from typing import Dict

from sqlalchemy import delete
from sqlalchemy.orm import Session

from ..database import db_session
from ..models import MutedUser, Post, ReplyKey, utcnow

logger = logging.getLogger("garden.expiry")


def purge_expired_posts(session: Session) -> int:
    """Delete expired posts. Replies, flags and keys go with them via cascade."""
    result = session.execute(delete(Post).where(Post.expires_at <= utcnow()))
    return result.rowcount or 0


def purge_expired() -> Dict[str, int]:
    """Delete every expired post, reply key and mute. Returns per-table counts."""
    now = utcnow()
    with db_session() as session:
        posts = purge_expired_posts(session)
        keys = session.execute(delete(ReplyKey).where(ReplyKey.expires_at <= now)).rowcount or 0
        mutes = session.execute(delete(MutedUser).where(MutedUser.expires_at <= now)).rowcount or 0
    counts = {"posts": posts, "reply_keys": keys, "mutes": mutes}
    if any(counts.values()):
        logger.info("Purged expired rows: %s", counts)
    return counts
