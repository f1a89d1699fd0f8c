from __future__ import annotations

import re

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response

from ..auth.dependencies import get_current_user
from ..config import settings
from ..database import db_session
from ..models import UploadedFile, User

router = APIRouter(tags=["uploads"])

FILE_CACHE_SECONDS = 31536000  # one year; file ids are immutable
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@router.post("/uploads", status_code=201)
def upload_audio(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
) -> dict:
    """Store an audio clip in the database and return its URL."""
    content_type = (file.content_type or "").lower()
    if not content_type.startswith("audio/"):
        raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                            detail="Only audio uploads are supported.")

    data = file.file.read(settings.upload_max_bytes + 1)
    if len(data) > settings.upload_max_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                            detail="File is too large.")

    with db_session() as session:
        row = UploadedFile(
            user_id=current_user.id,
            filename=_UNSAFE_FILENAME_CHARS.sub("_", file.filename or "audio")[:256],
            file_type=content_type,
            file_size=len(data),
            file_data=data,
        )
        session.add(row)
        session.flush()
        file_id = row.id

    return {"id": file_id, "url": f"/files/{file_id}", "size": len(data), "type": content_type}


@router.get("/files/{file_id}")
def get_file(file_id: str) -> Response:
    with db_session() as session:
        row = session.get(UploadedFile, file_id)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found.")
        data, content_type, filename = row.file_data, row.file_type, row.filename

    return Response(
        content=data,
        media_type=content_type,
        headers={
            "Content-Disposition": f'inline; filename="{filename}"',
            "Cache-Control": f"public, max-age={FILE_CACHE_SECONDS}, immutable",
        },
    )
