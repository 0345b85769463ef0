"""
madina.services.notification_service — Per-user notification feed
==================================================================

Other services call :func:`add_notification` with their open session so
the notification commits (or rolls back) together with the action that
caused it.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from madina.constants import NOTIFICATION_LIST_LIMIT, iso
from madina.database.models import Notification, NotificationType, User

logger = logging.getLogger(__name__)


def add_notification(
    session: Session,
    *,
    user_id: int,
    type: str,
    title: str,
    message: str,
    link: str | None = None,
    meta: dict | None = None,
) -> Notification:
    """Queue a notification on *session* (no commit)."""
    if type not in {t.value for t in NotificationType}:
        raise ValueError(f"Unknown notification type: {type!r}")
    note = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=link,
        meta=meta,
        read=False,
    )
    session.add(note)
    return note


def create_notification(
    engine,
    *,
    user_id: int,
    type: str,
    title: str,
    message: str,
    link: str | None = None,
    meta: dict | None = None,
) -> Notification:
    with Session(engine, expire_on_commit=False) as session:
        if session.get(User, user_id) is None:
            raise ValueError("User not found")
        note = add_notification(
            session, user_id=user_id, type=type, title=title,
            message=message, link=link, meta=meta,
        )
        session.commit()
        session.refresh(note)
        session.expunge(note)
        return note


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "link": n.link,
        "meta": n.meta,
        "read": n.read,
        "created_at": iso(n.created_at),
    }


def get_user_notifications(engine, user_id: int) -> list[dict]:
    """Most recent notifications first, capped at the list limit."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(NOTIFICATION_LIST_LIMIT)
        ).all()
        return [notification_to_dict(n) for n in rows]


def get_unread_notification_count(engine, user_id: int) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
        ) or 0


def mark_notification_as_read(engine, notification_id: int, *, user_id: int) -> bool:
    """Mark one of *user_id*'s notifications read.  ``False`` if not theirs."""
    with Session(engine) as session:
        note = session.get(Notification, notification_id)
        if note is None or note.user_id != user_id:
            return False
        note.read = True
        session.commit()
        return True


def mark_all_notifications_as_read(engine, user_id: int) -> int:
    """Returns the number of notifications flipped to read."""
    with Session(engine) as session:
        result = session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
        )
        session.commit()
        return result.rowcount or 0
