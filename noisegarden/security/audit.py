from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

from fastapi import Request

from ..database import db_session
from ..models import SecurityEvent, User

logger = logging.getLogger("garden.security")

MIN_USER_AGENT_LENGTH = 10


def client_ip(request: Optional[Request]) -> str:
    """First hop of X-Forwarded-For, else the socket peer."""
    if request is None:
        return "unknown"
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def log_security_event(
    event: str,
    request: Optional[Request] = None,
    user: Optional[User] = None,
    **details: Any,
) -> None:
    """
    Emit a security event on the ``garden.security`` logger and persist it.

    The request supplies IP and user agent; the user (when known) supplies
    id and username. Remaining keyword arguments are stored as JSON.
    """
    ip = client_ip(request)
    user_agent = request.headers.get("user-agent", "")[:512] if request is not None else ""
    user_id = user.id if user is not None else details.pop("user_id", None)
    username = user.username if user is not None else details.pop("username", None)

    logger.info(
        "[SECURITY] %s",
        event,
        extra={
            "event": event,
            "user_id": user_id,
            "username": username,
            "ip": ip,
            "user_agent": user_agent or "unknown",
            "details": details,
        },
    )

    with db_session() as session:
        session.add(
            SecurityEvent(
                event=event,
                user_id=user_id,
                username=username,
                ip_address=ip,
                user_agent=user_agent or None,
                details_json=json.dumps(details, default=str) if details else None,
            )
        )


def detect_suspicious_activity(request: Request, user: Optional[User] = None) -> List[str]:
    """Flag requests that look scripted. Findings are logged, never blocked."""
    suspicious: List[str] = []
    user_agent = request.headers.get("user-agent", "")
    if len(user_agent) < MIN_USER_AGENT_LENGTH:
        suspicious.append("Suspicious user agent")
    if suspicious:
        log_security_event("suspicious_activity", request, user, suspicious=suspicious)
    return suspicious
