from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..access.popups import latest_thread, popup_status_for
from ..access.visibility import get_live_post
from ..auth.dependencies import get_current_user
from ..database import db_session
from ..models import PopupThread, User, utcnow
from ..schemas import PopupCreate, PopupStatusRead

router = APIRouter(prefix="/posts", tags=["popup-threads"])


def _owned_post(session, post_id: str, user: User):
    post = get_live_post(session, post_id)
    if post.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Only the author can manage this popup thread.")
    return post


@router.post("/{post_id}/popup", response_model=PopupStatusRead, status_code=201)
def open_popup(
    post_id: str,
    body: PopupCreate,
    current_user: User = Depends(get_current_user),
) -> PopupStatusRead:
    """Turn a post into a popup thread. Reopening resets the clock."""
    with db_session() as session:
        post = _owned_post(session, post_id, current_user)
        post.is_popup_thread = True
        post.popup_reply_limit = body.reply_limit
        post.popup_time_limit = body.time_limit_minutes
        post.popup_closed_at = None
        session.add(
            PopupThread(
                post_id=post.id,
                reply_limit=body.reply_limit,
                time_limit_minutes=body.time_limit_minutes,
            )
        )
        session.flush()
        return PopupStatusRead(**popup_status_for(session, post).to_dict())


@router.post("/{post_id}/popup/close", response_model=PopupStatusRead)
def close_popup(post_id: str, current_user: User = Depends(get_current_user)) -> PopupStatusRead:
    with db_session() as session:
        post = _owned_post(session, post_id, current_user)
        if not post.is_popup_thread:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="Post is not a popup thread.")
        now = utcnow()
        post.popup_closed_at = now
        thread = latest_thread(session, post.id)
        if thread is not None:
            thread.closed_at = now
        session.flush()
        return PopupStatusRead(**popup_status_for(session, post).to_dict())


@router.get("/{post_id}/popup", response_model=PopupStatusRead)
def popup_status(post_id: str) -> PopupStatusRead:
    with db_session() as session:
        post = get_live_post(session, post_id)
        return PopupStatusRead(**popup_status_for(session, post).to_dict())
