"""
madina.services.upload_service — Image uploads
==============================================

KYC document photos, event and post images and the landing page
background are all uploaded here.  Files land in ``MADINA_UPLOAD_DIR``
under a random name, are served from ``/api/uploads/<name>``, and get a
``media_files`` row recording who uploaded them and for what.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from madina.constants import iso
from madina.database.models import MediaFile

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("MADINA_UPLOAD_DIR", "uploads"))
UPLOAD_URL_PREFIX = "/api/uploads/"
MAX_FILE_SIZE = 10 * 1024 * 1024
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}
ALLOWED_MIME_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp"}
UPLOAD_PURPOSES = {"kyc", "event", "post", "hero"}


def ensure_upload_dir() -> None:
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)


def validate_upload(filename: str, content: bytes, content_type: str | None = None) -> str:
    """Check size, extension and MIME type; returns the lower-cased extension.

    Raises
    ------
    ValueError
        Empty or oversized file, or a type outside the image allow-list.
    """
    if not content:
        raise ValueError("File is empty")
    if len(content) > MAX_FILE_SIZE:
        raise ValueError(
            f"File too large: {len(content)} bytes (max {MAX_FILE_SIZE // 1024 // 1024}MB)"
        )
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValueError(
            f"File type not allowed: {ext!r}. "
            f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if content_type and content_type not in ALLOWED_MIME_TYPES:
        raise ValueError(
            f"MIME type not allowed: {content_type!r}. "
            f"Allowed: {', '.join(sorted(ALLOWED_MIME_TYPES))}"
        )
    return ext


async def save_upload(filename: str, content: bytes, content_type: str | None = None) -> str:
    """Validate and write *content*; returns its ``/api/uploads/...`` URL."""
    ext = validate_upload(filename, content, content_type)
    unique_name = f"{uuid.uuid4().hex}{ext}"
    ensure_upload_dir()
    await asyncio.to_thread((UPLOAD_DIR / unique_name).write_bytes, content)
    logger.info("Stored upload %s (%d bytes)", unique_name, len(content))
    return f"{UPLOAD_URL_PREFIX}{unique_name}"


def record_upload(
    engine,
    *,
    url: str,
    original_name: str,
    content_type: str | None,
    size_bytes: int,
    purpose: str | None,
    uploaded_by: int | None,
) -> MediaFile:
    with Session(engine, expire_on_commit=False) as session:
        media = MediaFile(
            filename=url.rsplit("/", 1)[-1],
            original_name=original_name,
            url=url,
            content_type=content_type,
            size_bytes=size_bytes,
            purpose=purpose,
            uploaded_by=uploaded_by,
        )
        session.add(media)
        session.commit()
        session.refresh(media)
        session.expunge(media)
        return media


def media_to_dict(m: MediaFile) -> dict:
    return {
        "id": m.id,
        "url": m.url,
        "filename": m.filename,
        "original_name": m.original_name,
        "content_type": m.content_type,
        "size_bytes": m.size_bytes,
        "purpose": m.purpose,
        "uploaded_by": m.uploaded_by,
        "uploaded_at": iso(m.uploaded_at),
    }


def list_media(engine, *, purpose: str | None = None) -> list[dict]:
    with Session(engine) as session:
        stmt = select(MediaFile).order_by(MediaFile.uploaded_at.desc(), MediaFile.id.desc())
        if purpose:
            stmt = stmt.where(MediaFile.purpose == purpose)
        return [media_to_dict(m) for m in session.scalars(stmt).all()]


def delete_upload(url_path: str) -> bool:
    """Remove an uploaded file by its URL path.

    Returns True if the file existed and was deleted.
    """
    if not url_path or not url_path.startswith(UPLOAD_URL_PREFIX):
        return False
    filepath = UPLOAD_DIR / url_path.rsplit("/", 1)[-1]
    if filepath.is_file():
        filepath.unlink()
        return True
    return False


def delete_media(engine, media_id: int) -> bool:
    """Delete a media row and its file.  ``False`` if the row is missing."""
    with Session(engine) as session:
        media = session.get(MediaFile, media_id)
        if media is None:
            return False
        url = media.url
        session.delete(media)
        session.commit()
    delete_upload(url)
    return True
