"""
madina.services.kyc_service — Identity verification
===================================================

A user submits name, phone, address and two ID images.  A reviewer
(admin or employee) approves or rejects the application; approval opens
the user's wallet if they don't already have one.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from madina.constants import iso, utcnow
from madina.database.models import KycApplication, KycStatus, User
from madina.services.wallet_service import get_wallet_by_user, open_wallet

logger = logging.getLogger(__name__)

DOCUMENT_TYPES = ("id_front", "id_back")


def kyc_to_dict(app: KycApplication, email: str | None = None) -> dict:
    return {
        "id": app.id,
        "user_id": app.user_id,
        "email": email,
        "first_name": app.first_name,
        "last_name": app.last_name,
        "full_name": app.full_name,
        "phone": app.phone,
        "address": app.address,
        "status": app.status,
        "documents": app.documents or [],
        "submitted_at": iso(app.submitted_at),
        "reviewed_at": iso(app.reviewed_at),
        "reviewed_by": app.reviewed_by,
        "rejection_reason": app.rejection_reason,
    }


def _get_for_user(session: Session, user_id: int) -> KycApplication | None:
    return session.scalar(select(KycApplication).where(KycApplication.user_id == user_id))


def submit_kyc_application(
    engine,
    user_id: int,
    *,
    first_name: str,
    last_name: str,
    phone: str,
    address: str,
    id_front_url: str,
    id_back_url: str,
) -> KycApplication:
    """Submit (or, after a rejection, resubmit) a KYC application.

    Raises
    ------
    ValueError
        A field is blank, or an application is already pending or approved.
    """
    fields = {
        "first_name": (first_name or "").strip(),
        "last_name": (last_name or "").strip(),
        "phone": (phone or "").strip(),
        "address": (address or "").strip(),
    }
    urls = [(id_front_url or "").strip(), (id_back_url or "").strip()]
    if not all(fields.values()) or not all(urls):
        raise ValueError("All fields are required, including both sides of your ID")

    now = utcnow()
    documents = [
        {"type": doc_type, "url": url, "uploaded_at": now.isoformat()}
        for doc_type, url in zip(DOCUMENT_TYPES, urls, strict=True)
    ]

    with Session(engine, expire_on_commit=False) as session:
        existing = _get_for_user(session, user_id)
        if existing is not None:
            if existing.status == KycStatus.PENDING:
                raise ValueError("You already have a KYC application under review")
            if existing.status == KycStatus.APPROVED:
                raise ValueError("Your KYC application has already been approved")
            session.delete(existing)
            session.flush()

        app = KycApplication(
            user_id=user_id,
            status=KycStatus.PENDING,
            documents=documents,
            **fields,
        )
        session.add(app)
        session.commit()
        session.refresh(app)
        session.expunge(app)

    logger.info("KYC application %s submitted by user %s", app.id, user_id)
    return app


def get_kyc_status(engine, user_id: int) -> dict | None:
    with Session(engine) as session:
        app = _get_for_user(session, user_id)
        if app is None:
            return None
        return {
            "id": app.id,
            "status": app.status,
            "submitted_at": iso(app.submitted_at),
            "reviewed_at": iso(app.reviewed_at),
            "rejection_reason": app.rejection_reason,
        }


def get_kyc_user_info(engine, user_id: int) -> dict | None:
    """Name, phone and address from the user's application, for prefilling forms."""
    with Session(engine) as session:
        app = _get_for_user(session, user_id)
        if app is None:
            return None
        return {
            "first_name": app.first_name,
            "last_name": app.last_name,
            "phone": app.phone,
            "address": app.address,
        }


def get_all_kyc_applications(engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.execute(
            select(KycApplication, User.email)
            .join(User, User.id == KycApplication.user_id)
            .order_by(KycApplication.submitted_at.desc(), KycApplication.id.desc())
        ).all()
        return [kyc_to_dict(app, email) for app, email in rows]


def _pending_application(session: Session, application_id: int) -> KycApplication:
    app = session.get(KycApplication, application_id, with_for_update=True)
    if app is None:
        raise ValueError("KYC application not found")
    if app.status != KycStatus.PENDING:
        raise ValueError(f"KYC application is already {app.status}")
    return app


def approve_kyc(engine, reviewer_id: int, application_id: int) -> dict:
    """Approve a pending application and open the wallet if missing."""
    with Session(engine) as session:
        app = _pending_application(session, application_id)
        app.status = KycStatus.APPROVED
        app.reviewed_by = reviewer_id
        app.reviewed_at = utcnow()
        app.rejection_reason = None

        wallet = get_wallet_by_user(session, app.user_id)
        if wallet is None:
            wallet = open_wallet(session, app.user_id)
        session.commit()

        logger.info("KYC %s approved by %s, wallet %s", app.id, reviewer_id, wallet.wallet_id)
        return {"application": kyc_to_dict(app), "wallet_id": wallet.wallet_id}


def reject_kyc(engine, reviewer_id: int, application_id: int, reason: str) -> dict:
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A rejection reason is required")
    with Session(engine) as session:
        app = _pending_application(session, application_id)
        app.status = KycStatus.REJECTED
        app.reviewed_by = reviewer_id
        app.reviewed_at = utcnow()
        app.rejection_reason = reason
        session.commit()
        logger.info("KYC %s rejected by %s", app.id, reviewer_id)
        return kyc_to_dict(app)
