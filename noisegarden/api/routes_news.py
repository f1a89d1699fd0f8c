from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select

from ..auth.dependencies import get_optional_user, require_editor
from ..database import db_session
from ..models import NewsPost, User
from ..notify.push import dispatch_push
from ..schemas import NewsCreate, NewsRead, NewsUpdate

router = APIRouter(prefix="/news", tags=["news"])

_EDITOR_ROLES = ("admin", "community_manager")


def _is_editor(user: Optional[User]) -> bool:
    return user is not None and user.role in _EDITOR_ROLES


def _announce(entry: NewsPost) -> None:
    dispatch_push(
        {
            "title": "noise.garden news",
            "body": entry.title,
            "data": {"type": "news", "news_id": entry.id},
        }
    )


@router.get("", response_model=List[NewsRead])
def list_news(
    published_only: bool = Query(True),
    viewer: Optional[User] = Depends(get_optional_user),
) -> List[NewsRead]:
    """Published entries, newest first. Editors may ask for drafts too."""
    stmt = select(NewsPost).order_by(NewsPost.created_at.desc())
    if published_only or not _is_editor(viewer):
        stmt = stmt.where(NewsPost.is_published.is_(True))
    with db_session() as session:
        return [NewsRead.model_validate(n) for n in session.execute(stmt).scalars().all()]


@router.get("/{news_id}", response_model=NewsRead)
def get_news(news_id: str, viewer: Optional[User] = Depends(get_optional_user)) -> NewsRead:
    with db_session() as session:
        entry = session.get(NewsPost, news_id)
        if entry is None or (not entry.is_published and not _is_editor(viewer)):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="News entry not found.")
        return NewsRead.model_validate(entry)


@router.post("", response_model=NewsRead, status_code=201)
def create_news(body: NewsCreate, editor: User = Depends(require_editor)) -> NewsRead:
    if not body.title.strip() or not body.content.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Title and content are required.")
    with db_session() as session:
        entry = NewsPost(
            author_id=editor.id,
            title=body.title.strip(),
            content=body.content.strip(),
            is_published=body.is_published,
        )
        session.add(entry)
        session.flush()
        result = NewsRead.model_validate(entry)
    if result.is_published:
        _announce(entry)
    return result


@router.patch("/{news_id}", response_model=NewsRead)
def update_news(news_id: str, body: NewsUpdate, _editor: User = Depends(require_editor)) -> NewsRead:
    if (body.title is not None and not body.title.strip()) or (
        body.content is not None and not body.content.strip()
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Title and content are required.")
    with db_session() as session:
        entry = session.get(NewsPost, news_id)
        if entry is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="News entry not found.")
        was_published = entry.is_published
        if body.title is not None:
            entry.title = body.title.strip()
        if body.content is not None:
            entry.content = body.content.strip()
        if body.is_published is not None:
            entry.is_published = body.is_published
        session.flush()
        result = NewsRead.model_validate(entry)
    if result.is_published and not was_published:
        _announce(entry)
    return result


@router.delete("/{news_id}", status_code=204)
def delete_news(news_id: str, _editor: User = Depends(require_editor)) -> None:
    with db_session() as session:
        entry = session.get(NewsPost, news_id)
        if entry is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="News entry not found.")
        session.delete(entry)
