"""
madina.api.routes.messages — Contact form, inbox and notifications
==================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from madina.api.deps import (
    get_current_user,
    get_engine,
    get_optional_user,
    maintenance_guard,
    service_errors,
)
from madina.services import message_service, notification_service

router = APIRouter(tags=["messages"], dependencies=[Depends(maintenance_guard)])


class ContactCreate(BaseModel):
    email: str
    subject: str
    message: str
    name: str | None = None


# ---------------------------------------------------------------------------
# Contact form (public)
# ---------------------------------------------------------------------------
@router.post("/contact", status_code=201)
def contact(
    body: ContactCreate,
    user: dict | None = Depends(get_optional_user),
    engine=Depends(get_engine),
):
    with service_errors():
        msg = message_service.submit_contact_message(
            engine,
            email=body.email,
            subject=body.subject,
            message=body.message,
            name=body.name,
            user_id=user["id"] if user else None,
        )
    return message_service.contact_to_dict(msg)


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------
@router.get("/messages")
def inbox(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return {"messages": message_service.get_user_messages(engine, user["id"])}


@router.get("/messages/summary")
def inbox_summary(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return message_service.user_has_messages(engine, user["id"])


@router.post("/messages/{message_id}/read")
def read_message(message_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        ok = message_service.mark_message_as_read(engine, message_id, user_id=user["id"])
    if not ok:
        raise HTTPException(404, "Message not found")
    return {"read": True}


@router.delete("/messages/{message_id}")
def delete_message(message_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        ok = message_service.delete_message_by_user(engine, message_id, user_id=user["id"])
    if not ok:
        raise HTTPException(404, "Message not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
@router.get("/notifications")
def notifications(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return {
        "notifications": notification_service.get_user_notifications(engine, user["id"]),
        "unread": notification_service.get_unread_notification_count(engine, user["id"]),
    }


@router.post("/notifications/{notification_id}/read")
def read_notification(
    notification_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine),
):
    if not notification_service.mark_notification_as_read(
        engine, notification_id, user_id=user["id"]
    ):
        raise HTTPException(404, "Notification not found")
    return {"read": True}


@router.post("/notifications/read-all")
def read_all_notifications(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return {"updated": notification_service.mark_all_notifications_as_read(engine, user["id"])}
