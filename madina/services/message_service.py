"""
madina.services.message_service — Contact form & admin messages
===============================================================

Two inboxes:

* ``contact_messages`` — anyone (signed in or not) writes to the team.
* ``user_messages`` — an admin writes to one user.  Both sides delete
  softly: a user hiding a message does not remove it from the admin view
  and vice versa.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from madina.constants import EMAIL_REGEX, iso, utcnow
from madina.database.models import ContactMessage, NotificationType, User, UserMessage
from madina.services.notification_service import add_notification

logger = logging.getLogger(__name__)


def contact_to_dict(m: ContactMessage) -> dict:
    return {
        "id": m.id,
        "user_id": m.user_id,
        "name": m.name,
        "email": m.email,
        "subject": m.subject,
        "message": m.message,
        "status": m.status,
        "read_at": iso(m.read_at),
        "read_by": m.read_by,
        "created_at": iso(m.created_at),
    }


def user_message_to_dict(m: UserMessage, email: str | None = None) -> dict:
    return {
        "id": m.id,
        "user_id": m.user_id,
        "user_email": email,
        "sender_id": m.sender_id,
        "subject": m.subject,
        "message": m.message,
        "read": m.read,
        "read_at": iso(m.read_at),
        "created_at": iso(m.created_at),
    }


# ---------------------------------------------------------------------------
# Contact form
# ---------------------------------------------------------------------------
def submit_contact_message(
    engine,
    *,
    email: str,
    subject: str,
    message: str,
    name: str | None = None,
    user_id: int | None = None,
) -> ContactMessage:
    email = (email or "").strip().lower()
    subject = (subject or "").strip()
    message = (message or "").strip()
    if not email or not subject or not message:
        raise ValueError("Email, subject and message are required")
    if not EMAIL_REGEX.match(email):
        raise ValueError("Invalid email format")

    with Session(engine, expire_on_commit=False) as session:
        msg = ContactMessage(
            user_id=user_id,
            name=(name or "").strip() or None,
            email=email,
            subject=subject,
            message=message,
            status="new",
        )
        session.add(msg)
        session.commit()
        session.refresh(msg)
        session.expunge(msg)
    logger.info("Contact message %s received from %s", msg.id, email)
    return msg


def get_all_contact_messages(engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(ContactMessage)
            .order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc())
        ).all()
        return [contact_to_dict(m) for m in rows]


def mark_contact_read(engine, message_id: int, *, admin_id: int) -> bool:
    with Session(engine) as session:
        msg = session.get(ContactMessage, message_id)
        if msg is None:
            return False
        msg.status = "read"
        msg.read_at = utcnow()
        msg.read_by = admin_id
        session.commit()
        return True


# ---------------------------------------------------------------------------
# Admin → user messages
# ---------------------------------------------------------------------------
def send_message_to_user(
    engine, admin_id: int, user_id: int, *, subject: str, message: str,
) -> UserMessage:
    subject = (subject or "").strip()
    message = (message or "").strip()
    if not subject or not message:
        raise ValueError("Subject and message are required")

    with Session(engine, expire_on_commit=False) as session:
        if session.get(User, user_id) is None:
            raise ValueError("User not found")
        msg = UserMessage(
            user_id=user_id,
            sender_id=admin_id,
            subject=subject,
            message=message,
            read=False,
        )
        session.add(msg)
        session.flush()
        add_notification(
            session,
            user_id=user_id,
            type=NotificationType.MESSAGE,
            title="New Message",
            message=subject,
            link="/messages",
            meta={"message_id": msg.id},
        )
        session.commit()
        session.refresh(msg)
        session.expunge(msg)
    logger.info("Admin %s sent message %s to user %s", admin_id, msg.id, user_id)
    return msg


def user_has_messages(engine, user_id: int) -> dict:
    with Session(engine) as session:
        visible = (
            UserMessage.user_id == user_id,
            UserMessage.deleted_by_user.is_(False),
        )
        total = session.scalar(
            select(func.count()).select_from(UserMessage).where(*visible)
        ) or 0
        unread = session.scalar(
            select(func.count())
            .select_from(UserMessage)
            .where(*visible, UserMessage.read.is_(False))
        ) or 0
        return {"has_messages": total > 0, "count": total, "unread_count": unread}


def get_user_messages(engine, user_id: int) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(UserMessage)
            .where(UserMessage.user_id == user_id, UserMessage.deleted_by_user.is_(False))
            .order_by(UserMessage.created_at.desc(), UserMessage.id.desc())
        ).all()
        return [user_message_to_dict(m) for m in rows]


def get_all_user_messages(engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.execute(
            select(UserMessage, User.email)
            .join(User, User.id == UserMessage.user_id)
            .where(UserMessage.deleted_by_admin.is_(False))
            .order_by(UserMessage.created_at.desc(), UserMessage.id.desc())
        ).all()
        return [user_message_to_dict(m, email) for m, email in rows]


def _owned_message(session: Session, message_id: int, user_id: int) -> UserMessage | None:
    msg = session.get(UserMessage, message_id)
    if msg is None or msg.deleted_by_user:
        return None
    if msg.user_id != user_id:
        raise PermissionError("This message belongs to another user")
    return msg


def mark_message_as_read(engine, message_id: int, *, user_id: int) -> bool:
    with Session(engine) as session:
        msg = _owned_message(session, message_id, user_id)
        if msg is None:
            return False
        if not msg.read:
            msg.read = True
            msg.read_at = utcnow()
            session.commit()
        return True


def delete_message_by_user(engine, message_id: int, *, user_id: int) -> bool:
    with Session(engine) as session:
        msg = _owned_message(session, message_id, user_id)
        if msg is None:
            return False
        msg.deleted_by_user = True
        session.commit()
        return True


def delete_message_by_admin(engine, message_id: int) -> bool:
    with Session(engine) as session:
        msg = session.get(UserMessage, message_id)
        if msg is None or msg.deleted_by_admin:
            return False
        msg.deleted_by_admin = True
        session.commit()
        return True
