"""
api/routes_notifications.py — Notifications, live stream and push devices
=========================================================================
``GET /notifications/stream`` is a Server-Sent Events feed of the caller's
new notifications. EventSource cannot set headers, so the JWT may be
passed as ``?token=``. Each message has ``event: notification`` and
``data: <json>``; a ``: heartbeat`` comment is sent every 15 s to keep the
connection open through proxies.
"""
from __future__ import annotations

import asyncio
from typing import AsyncGenerator, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy import delete, func, select, update

from ..auth.dependencies import get_current_user
from ..database import db_session
from ..models import DeviceToken, Notification, User
from ..notify.event_bus import NotificationEvent, notification_bus
from ..schemas import DeviceRegister, NotificationRead

router = APIRouter(prefix="/notifications", tags=["notifications"])

HEARTBEAT_INTERVAL = 15  # seconds


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

@router.get("", response_model=List[NotificationRead])
def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
) -> List[NotificationRead]:
    with db_session() as session:
        rows = session.execute(
            select(Notification)
            .where(Notification.user_id == current_user.id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        ).scalars().all()
        return [NotificationRead.model_validate(r) for r in rows]


@router.get("/unread-count")
def unread_count(current_user: User = Depends(get_current_user)) -> dict:
    with db_session() as session:
        count = session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == current_user.id,
                Notification.read.is_(False),
            )
        ).scalar_one()
    return {"count": count}


@router.post("/read-all")
def mark_all_read(current_user: User = Depends(get_current_user)) -> dict:
    with db_session() as session:
        result = session.execute(
            update(Notification)
            .where(Notification.user_id == current_user.id, Notification.read.is_(False))
            .values(read=True)
        )
    return {"updated": result.rowcount or 0}


# ---------------------------------------------------------------------------
# Live stream (SSE)
# ---------------------------------------------------------------------------

async def _event_generator(
    request: Request,
    user_id: str,
    queue: asyncio.Queue[NotificationEvent],
) -> AsyncGenerator[str, None]:
    try:
        yield "event: connected\ndata: {\"status\":\"streaming\"}\n\n"

        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_INTERVAL)
                yield f"event: {event.event_type}\ndata: {event.to_json()}\n\n"
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
    finally:
        notification_bus.unsubscribe(user_id, queue)


@router.get(
    "/stream",
    response_class=StreamingResponse,
    summary="Real-time notification stream (SSE)",
    responses={
        200: {
            "description": "SSE stream of the caller's notifications",
            "content": {"text/event-stream": {}},
        }
    },
)
async def stream_notifications(
    request: Request,
    current_user: User = Depends(get_current_user),
):
    queue = notification_bus.subscribe(current_user.id)
    return StreamingResponse(
        _event_generator(request, current_user.id, queue),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Nginx: disable response buffering
        },
    )


@router.get("/stream/status")
def stream_status(current_user: User = Depends(get_current_user)) -> dict:
    return {"subscribers": notification_bus.subscriber_count(current_user.id)}


# ---------------------------------------------------------------------------
# Push devices
# ---------------------------------------------------------------------------

@router.post("/devices", status_code=201)
def register_device(body: DeviceRegister, current_user: User = Depends(get_current_user)) -> dict:
    """Register a push token. A token moves to whoever registered it last."""
    with db_session() as session:
        device = session.execute(
            select(DeviceToken).where(DeviceToken.token == body.token)
        ).scalar_one_or_none()
        if device is None:
            device = DeviceToken(token=body.token)
            session.add(device)
        device.user_id = current_user.id
        device.platform = body.platform
        device.error_count = 0
        session.flush()
        return {"id": device.id, "platform": device.platform}


@router.delete("/devices/{device_token}", status_code=204)
def unregister_device(device_token: str, current_user: User = Depends(get_current_user)) -> None:
    with db_session() as session:
        result = session.execute(
            delete(DeviceToken).where(
                DeviceToken.token == device_token,
                DeviceToken.user_id == current_user.id,
            )
        )
    if not result.rowcount:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found.")


# ---------------------------------------------------------------------------
# Single notification
# ---------------------------------------------------------------------------

@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_read(notification_id: str, current_user: User = Depends(get_current_user)) -> NotificationRead:
    with db_session() as session:
        row = session.get(Notification, notification_id)
        if row is None or row.user_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                                detail="Notification not found.")
        row.read = True
        session.flush()
        return NotificationRead.model_validate(row)
