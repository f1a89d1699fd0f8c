"""
notify/push.py — Push message dispatch
======================================
Sends push messages to registered devices through an HTTP messaging
gateway (FCM-compatible JSON body: ``to`` + ``notification`` + ``data``).

Dispatch is best-effort: failures are logged and counted on the device
row, and never propagate to the request that triggered them. When no
gateway is configured nothing is sent.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

import httpx
from sqlalchemy import select

from ..config import settings
from ..database import db_session
from ..models import DeviceToken, utcnow

logger = logging.getLogger("garden.push")

PUSH_TIMEOUT_SECONDS = 10.0


def _send_one(client: httpx.Client, token: str, payload: dict) -> bool:
    body = {
        "to": token,
        "notification": {
            "title": payload.get("title", "noise.garden"),
            "body": payload.get("body", ""),
        },
        "data": payload.get("data", {}),
    }
    headers = {}
    if settings.push_gateway_token:
        headers["Authorization"] = f"Bearer {settings.push_gateway_token}"
    try:
        resp = client.post(settings.push_gateway_url, json=body, headers=headers)
    except httpx.HTTPError as exc:
        logger.warning("Push to device failed: %s", exc)
        return False
    if resp.status_code >= 400:
        logger.warning("Push gateway returned %d", resp.status_code)
        return False
    return True


def dispatch_push(payload: dict, user_ids: Optional[Iterable[str]] = None) -> int:
    """
    Send ``payload`` ({title, body, data}) to the devices of ``user_ids``,
    or to every registered device when ``user_ids`` is None.

    Returns the number of devices that accepted the message.
    """
    if not settings.push_gateway_url:
        logger.debug("Push gateway not configured; skipping dispatch")
        return 0

    sent = 0
    with db_session() as session:
        stmt = select(DeviceToken)
        if user_ids is not None:
            ids = list(user_ids)
            if not ids:
                return 0
            stmt = stmt.where(DeviceToken.user_id.in_(ids))
        devices = session.execute(stmt).scalars().all()
        if not devices:
            return 0

        with httpx.Client(timeout=PUSH_TIMEOUT_SECONDS) as client:
            for device in devices:
                if _send_one(client, device.token, payload):
                    device.last_sent_at = utcnow()
                    sent += 1
                else:
                    device.error_count = (device.error_count or 0) + 1

    logger.info("Push dispatched to %d/%d device(s)", sent, len(devices))
    return sent
