from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Notification, User
from .event_bus import NotificationEvent, notification_bus
from .push import dispatch_push

logger = logging.getLogger("garden.notifications")

_PUSH_TITLES = {
    "reply": "New reply",
    "repost": "Your post was reposted",
    "mention": "You were mentioned",
    "whisper": "New whisper",
    "quarantine": "Your post was quarantined",
    "news": "noise.garden news",
}


def add_notification(
    session: Session,
    *,
    user_id: str,
    type: str,
    actor: User,
    post_id: Optional[str] = None,
) -> Optional[Notification]:
    """Stage a notification row. Returns None when the actor is the recipient."""
    if user_id == actor.id:
        return None
    row = Notification(
        user_id=user_id,
        type=type,
        post_id=post_id,
        from_user_id=actor.id,
        from_username=actor.username,
    )
    session.add(row)
    return row


def add_mention_notifications(
    session: Session,
    usernames: Iterable[str],
    actor: User,
    post_id: str,
) -> List[Notification]:
    names = list(usernames)
    if not names:
        return []
    ids = session.execute(select(User.id).where(User.username.in_(names))).scalars().all()
    rows = []
    for user_id in ids:
        row = add_notification(session, user_id=user_id, type="mention", actor=actor, post_id=post_id)
        if row is not None:
            rows.append(row)
    return rows


def deliver(notifications: Iterable[Optional[Notification]]) -> None:
    """
    Fan committed notifications out to live SSE subscribers and push devices.

    Call after the session that wrote the rows has committed.
    """
    for row in notifications:
        if row is None:
            continue
        logger.debug("Delivering %s notification to %s", row.type, row.user_id)
        notification_bus.publish(NotificationEvent.from_row(row))
        dispatch_push(
            {
                "title": _PUSH_TITLES.get(row.type, "noise.garden"),
                "body": f"@{row.from_username}",
                "data": {"type": row.type, "post_id": row.post_id or ""},
            },
            user_ids=[row.user_id],
        )
