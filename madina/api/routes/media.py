"""
madina.api.routes.media — Image upload
======================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile

from madina.api.deps import get_current_user, get_engine, maintenance_guard
from madina.api.rate_limit import rate_limited_admin
from madina.database.engine import run_db
from madina.services import upload_service

router = APIRouter(tags=["media"])
logger = logging.getLogger(__name__)


@router.post("/media", status_code=201, dependencies=[Depends(maintenance_guard)])
async def upload(
    file: UploadFile,
    purpose: str | None = Form(default=None),
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Upload an image (KYC document, event or post image, hero background)."""
    if purpose is not None and purpose not in upload_service.UPLOAD_PURPOSES:
        raise HTTPException(400, f"Unknown upload purpose: {purpose!r}")
    content = await file.read()
    try:
        url = await upload_service.save_upload(
            file.filename or "upload.png", content, file.content_type
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))

    media = await run_db(
        upload_service.record_upload,
        engine,
        url=url,
        original_name=file.filename or "upload",
        content_type=file.content_type,
        size_bytes=len(content),
        purpose=purpose,
        uploaded_by=user["id"],
    )
    logger.info("User %s uploaded %s (%s)", user["id"], url, purpose or "general")
    return upload_service.media_to_dict(media)


@router.get("/admin/media")
def list_media(
    purpose: str | None = None,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    return {"files": upload_service.list_media(engine, purpose=purpose)}


@router.delete("/admin/media/{media_id}")
def delete_media(
    media_id: int,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    if not upload_service.delete_media(engine, media_id):
        raise HTTPException(404, "Media not found")
    return {"deleted": True}
