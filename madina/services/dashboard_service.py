"""
madina.services.dashboard_service — Personal dashboard summary
==============================================================
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from madina.database.models import (
    Event,
    EventStatus,
    Invoice,
    InvoiceStatus,
    Post,
    Transaction,
)
from madina.engine.money import from_cents
from madina.services.wallet_service import get_wallet_by_user


def _count(session: Session, model, *where) -> int:
    return session.scalar(select(func.count()).select_from(model).where(*where)) or 0


def get_dashboard_stats(engine, user_id: int) -> dict:
    """Counts of the user's events, invoices, posts and wallet activity."""
    with Session(engine) as session:
        mine = Event.creator_user_id == user_id
        events = {
            "total": _count(session, Event, mine),
            "approved": _count(session, Event, mine, Event.status == EventStatus.APPROVED),
            "pending": _count(session, Event, mine, Event.status == EventStatus.PENDING),
            "rejected": _count(session, Event, mine, Event.status == EventStatus.REJECTED),
            "live": _count(session, Event, mine, Event.status == EventStatus.LIVE),
        }

        issued = Invoice.issuer_user_id == user_id
        invoices = {
            "issued": _count(session, Invoice, issued),
            "issued_paid": _count(session, Invoice, issued, Invoice.status == InvoiceStatus.PAID),
            "issued_unpaid": _count(
                session, Invoice, issued, Invoice.status == InvoiceStatus.UNPAID
            ),
            "received": 0,
            "received_paid": 0,
            "received_unpaid": 0,
        }

        wallet = get_wallet_by_user(session, user_id)
        wallet_info = None
        if wallet is not None:
            received = Invoice.recipient_wallet_id == wallet.wallet_id
            invoices["received"] = _count(session, Invoice, received)
            invoices["received_paid"] = _count(
                session, Invoice, received, Invoice.status == InvoiceStatus.PAID
            )
            invoices["received_unpaid"] = _count(
                session, Invoice, received, Invoice.status == InvoiceStatus.UNPAID
            )
            wallet_info = {
                "wallet_id": wallet.wallet_id,
                "status": wallet.status,
                "balance_cents": wallet.balance,
                "balance": from_cents(wallet.balance),
                "transaction_count": _count(
                    session, Transaction, Transaction.user_id == user_id
                ),
            }

        return {
            "events": events,
            "invoices": invoices,
            "wallet": wallet_info,
            "posts": _count(session, Post, Post.author_user_id == user_id),
        }
