"""
madina.services.event_service — Community events & ticket sales
===============================================================

Free events are published immediately; paid events wait for an admin.
Ticket money is split at purchase time: the buyer pays the ticket price,
the platform keeps ``ticket_fee_percentage`` per ticket (fee ledger) and
the net is held for the creator until they press *deposit*.

Each purchase writes one ``tickets`` row per unit (``qty == 1`` with a
serial number) plus one summary row (``qty == n``) sharing a
``purchase_group_id``.  ``Event.ticket_quantity`` is the number still for
sale and is decremented on every purchase.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from madina.constants import as_utc, iso, utcnow
from madina.database.models import (
    Event,
    EventStatus,
    FeeType,
    NotificationType,
    Ticket,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    WalletStatus,
)
from madina.engine.money import (
    fee_for,
    from_cents,
    generate_reference,
    generate_ticket_serial,
    to_cents,
)
from madina.services.notification_service import add_notification
from madina.services.settings_service import load_system_settings
from madina.services.wallet_service import (
    credit,
    debit,
    get_wallet_by_user,
    lock_wallet_for_user,
    record_fee,
    record_transaction,
)

logger = logging.getLogger(__name__)

PUBLIC_STATUSES = (EventStatus.APPROVED, EventStatus.LIVE, EventStatus.ENDED)
REVIEW_ERROR = "Event not found or already reviewed"


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------
def display_status(event: Event, now: datetime | None = None) -> str:
    """``scheduled`` / ``live`` / ``ended`` / ``rejected`` relative to *now*."""
    now = now or utcnow()
    start, end = as_utc(event.start_time), as_utc(event.end_time)
    if event.status == EventStatus.ENDED or end < now:
        return "ended"
    if event.status == EventStatus.LIVE or start <= now <= end:
        return "live"
    if event.status == EventStatus.REJECTED:
        return "rejected"
    return "scheduled"


def event_to_dict(event: Event, now: datetime | None = None) -> dict:
    return {
        "id": event.id,
        "creator_user_id": event.creator_user_id,
        "title": event.title,
        "description": event.description,
        "image_url": event.image_url,
        "start_time": iso(event.start_time),
        "end_time": iso(event.end_time),
        "event_date": iso(event.event_date),
        "is_free": event.is_free,
        "ticket_price_cents": event.ticket_price_cents,
        "ticket_price": (
            from_cents(event.ticket_price_cents) if event.ticket_price_cents else None
        ),
        "ticket_quantity": event.ticket_quantity,
        "status": event.status,
        "display_status": display_status(event, now),
        "rejected_reason": event.rejected_reason,
        "created_at": iso(event.created_at),
    }


def ticket_to_dict(ticket: Ticket, event: Event | None = None) -> dict:
    data = {
        "id": ticket.id,
        "event_id": ticket.event_id,
        "buyer_user_id": ticket.buyer_user_id,
        "qty": ticket.qty,
        "total_paid": from_cents(ticket.total_paid_cents),
        "total_paid_cents": ticket.total_paid_cents,
        "fee_cents": ticket.fee_cents,
        "net_cents": ticket.net_cents,
        "deposited": ticket.deposited,
        "deposited_at": iso(ticket.deposited_at),
        "hidden_by_buyer": ticket.hidden_by_buyer,
        "serial_number": ticket.serial_number,
        "reference_number": ticket.reference_number,
        "purchase_group_id": ticket.purchase_group_id,
        "created_at": iso(ticket.created_at),
    }
    if event is not None:
        data["event"] = {
            "id": event.id,
            "title": event.title,
            "start_time": iso(event.start_time),
            "end_time": iso(event.end_time),
            "image_url": event.image_url,
            "display_status": display_status(event),
        }
    return data


# ---------------------------------------------------------------------------
# Creation & review
# ---------------------------------------------------------------------------
def create_event(
    engine,
    creator_id: int,
    *,
    title: str,
    description: str,
    start_time: datetime,
    end_time: datetime,
    image_url: str | None = None,
    is_free: bool = True,
    ticket_price=None,
    ticket_quantity: int | None = None,
) -> Event:
    """Create an event.  Free events are live at once, paid ones go to review.

    Raises
    ------
    ValueError
        Missing title/description, end not after start, or a paid event
        without a positive price and quantity.
    """
    title = (title or "").strip()
    description = (description or "").strip()
    if not title or not description:
        raise ValueError("Title and description are required")
    if start_time is None or end_time is None:
        raise ValueError("Start and end time are required")
    start, end = as_utc(start_time), as_utc(end_time)
    if end <= start:
        raise ValueError("End time must be after start time")

    price_cents = None
    quantity = None
    if not is_free:
        price_cents = to_cents(ticket_price) if ticket_price is not None else 0
        if price_cents <= 0:
            raise ValueError("Paid events need a ticket price greater than 0")
        quantity = int(ticket_quantity or 0)
        if quantity <= 0:
            raise ValueError("Paid events need a ticket quantity greater than 0")

    with Session(engine, expire_on_commit=False) as session:
        event = Event(
            creator_user_id=creator_id,
            title=title,
            description=description,
            start_time=start,
            end_time=end,
            event_date=start,
            image_url=(image_url or "").strip() or None,
            is_free=is_free,
            ticket_price_cents=price_cents,
            ticket_quantity=quantity,
            status=EventStatus.APPROVED if is_free else EventStatus.PENDING,
        )
        session.add(event)
        session.commit()
        session.refresh(event)
        session.expunge(event)

    logger.info("Event %s created by %s (status %s)", event.id, creator_id, event.status)
    return event


def get_events(engine) -> list[dict]:
    """Published events, soonest first."""
    now = utcnow()
    with Session(engine) as session:
        rows = session.scalars(
            select(Event)
            .where(Event.status.in_(PUBLIC_STATUSES))
            .order_by(Event.start_time.asc(), Event.created_at.desc())
        ).all()
        return [event_to_dict(e, now) for e in rows]


def get_user_events(engine, user_id: int) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(Event)
            .where(Event.creator_user_id == user_id)
            .order_by(Event.created_at.desc(), Event.id.desc())
        ).all()
        return [event_to_dict(e) for e in rows]


def get_event(engine, event_id: int) -> dict | None:
    with Session(engine) as session:
        event = session.get(Event, event_id)
        return event_to_dict(event) if event else None


def get_pending_events(engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.execute(
            select(Event, User.email)
            .join(User, User.id == Event.creator_user_id)
            .where(Event.status == EventStatus.PENDING)
            .order_by(Event.created_at.asc(), Event.id.asc())
        ).all()
        return [event_to_dict(e) | {"creator_email": email} for e, email in rows]


def _pending_event(session: Session, event_id: int) -> Event:
    event = session.get(Event, event_id, with_for_update=True)
    if event is None or event.status != EventStatus.PENDING:
        raise ValueError(REVIEW_ERROR)
    return event


def approve_event(engine, admin_id: int, event_id: int) -> dict:
    with Session(engine) as session:
        event = _pending_event(session, event_id)
        event.status = EventStatus.APPROVED
        event.reviewed_by = admin_id
        event.reviewed_at = utcnow()
        add_notification(
            session,
            user_id=event.creator_user_id,
            type=NotificationType.EVENT_APPROVAL,
            title="Event Approved",
            message=f'Your event "{event.title}" has been approved.',
            link=f"/events/{event.id}",
            meta={"event_id": event.id},
        )
        session.commit()
        logger.info("Event %s approved by %s", event_id, admin_id)
        return event_to_dict(event)


def reject_event(engine, admin_id: int, event_id: int, reason: str) -> dict:
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A rejection reason is required")
    with Session(engine) as session:
        event = _pending_event(session, event_id)
        event.status = EventStatus.REJECTED
        event.rejected_reason = reason
        event.reviewed_by = admin_id
        event.reviewed_at = utcnow()
        add_notification(
            session,
            user_id=event.creator_user_id,
            type=NotificationType.EVENT_APPROVAL,
            title="Event Rejected",
            message=f'Your event "{event.title}" was rejected: {reason}',
            link="/dashboard",
            meta={"event_id": event.id},
        )
        session.commit()
        logger.info("Event %s rejected by %s", event_id, admin_id)
        return event_to_dict(event)


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------
def purchase_ticket(engine, buyer_id: int, event_id: int, quantity: int) -> dict:
    """Buy *quantity* tickets for a paid event.

    The buyer pays ``price × quantity``.  The fee is computed per ticket, so
    the summary row and the ledger entry always equal the sum of the
    individual tickets.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError("Quantity must be a positive integer")

    with Session(engine) as session:
        event = session.get(Event, event_id, with_for_update=True)
        if event is None:
            raise ValueError("Event not found")
        if event.status not in (EventStatus.APPROVED, EventStatus.LIVE):
            raise ValueError("Tickets are not on sale for this event")
        if event.is_free:
            raise ValueError("This is a free event. No ticket purchase required.")
        if not event.ticket_price_cents or event.ticket_price_cents <= 0:
            raise ValueError("Ticket price not set for this event")
        if not event.ticket_quantity or event.ticket_quantity < quantity:
            raise ValueError(f"Only {event.ticket_quantity or 0} tickets available")

        buyer = lock_wallet_for_user(session, buyer_id)
        if buyer is None:
            raise ValueError("Wallet not found. Please complete KYC application.")
        if buyer.status != WalletStatus.ACTIVE:
            raise ValueError(f"Your wallet is {buyer.status}. Cannot purchase tickets.")

        price = event.ticket_price_cents
        total = price * quantity
        if buyer.balance < total:
            raise ValueError("Insufficient balance to purchase tickets")

        seller = get_wallet_by_user(session, event.creator_user_id)
        if seller is None:
            raise ValueError("Event creator wallet not found")

        percentage = load_system_settings(session).ticket_fee_percentage
        fee_per_ticket = fee_for(price, percentage)
        net_per_ticket = price - fee_per_ticket
        total_fee = fee_per_ticket * quantity
        total_net = net_per_ticket * quantity

        debit(buyer, total)
        group_id = str(uuid.uuid4())
        refs: list[str] = []
        for i in range(quantity):
            ref = generate_reference()
            refs.append(ref)
            session.add(Ticket(
                event_id=event.id,
                buyer_user_id=buyer_id,
                qty=1,
                total_paid_cents=price,
                fee_cents=fee_per_ticket,
                net_cents=net_per_ticket,
                deposited=False,
                serial_number=generate_ticket_serial(i + 1),
                reference_number=ref,
                purchase_group_id=group_id,
            ))
        session.add(Ticket(
            event_id=event.id,
            buyer_user_id=buyer_id,
            qty=quantity,
            total_paid_cents=total,
            fee_cents=total_fee,
            net_cents=total_net,
            deposited=False,
            purchase_group_id=group_id,
        ))
        event.ticket_quantity -= quantity

        purchase_ref = refs[0]
        buyer_tx = record_transaction(
            session,
            user_id=buyer_id,
            type=TransactionType.TICKET_PAYOUT,
            amount=total,
            from_wallet_id=buyer.wallet_id,
            note=f"{quantity} ticket(s): {event.title}",
            ref=purchase_ref,
            meta={"event_id": event.id, "purchase_group_id": group_id},
        )
        record_transaction(
            session,
            user_id=event.creator_user_id,
            type=TransactionType.RECEIVE,
            amount=total_net,
            to_wallet_id=seller.wallet_id,
            note=f"Ticket sales: {event.title}",
            ref=purchase_ref,
            status=TransactionStatus.PENDING,
            meta={
                "event_id": event.id,
                "pending_deposit": True,
                "purchase_group_id": group_id,
            },
        )
        if total_fee > 0:
            record_fee(
                session,
                type=FeeType.TRANSACTION,
                amount=total_fee,
                percentage=percentage,
                user_id=event.creator_user_id,
                transaction_id=buyer_tx.id,
            )
        session.commit()

        logger.info("User %s bought %d tickets for event %s (ref %s)",
                    buyer_id, quantity, event.id, purchase_ref)
        return {
            "reference_number": purchase_ref,
            "purchase_group_id": group_id,
            "quantity": quantity,
            "total": from_cents(total),
            "fee": from_cents(total_fee),
            "new_balance": from_cents(buyer.balance),
        }


def get_user_purchased_tickets(engine, user_id: int) -> list[dict]:
    """Individual tickets bought by *user_id*, newest first, with event info."""
    with Session(engine) as session:
        rows = session.execute(
            select(Ticket, Event)
            .join(Event, Event.id == Ticket.event_id)
            .where(
                Ticket.buyer_user_id == user_id,
                Ticket.qty == 1,
                Ticket.serial_number.is_not(None),
                Ticket.hidden_by_buyer.is_(False),
            )
            .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        ).all()
        return [ticket_to_dict(t, e) for t, e in rows]


def get_user_event_tickets(engine, user_id: int, event_id: int | None = None) -> list[dict]:
    """Individual tickets sold for events created by *user_id*."""
    with Session(engine) as session:
        stmt = (
            select(Ticket, Event, User.email)
            .join(Event, Event.id == Ticket.event_id)
            .outerjoin(User, User.id == Ticket.buyer_user_id)
            .where(
                Event.creator_user_id == user_id,
                Ticket.qty == 1,
                Ticket.serial_number.is_not(None),
            )
            .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        )
        if event_id is not None:
            stmt = stmt.where(Event.id == event_id)
        return [
            ticket_to_dict(t, e) | {"buyer_email": email}
            for t, e, email in session.execute(stmt).all()
        ]


def delete_ticket(engine, user_id: int, ticket_id: int) -> bool:
    """Remove one of the buyer's tickets from their list.  ``False`` if missing.

    The row is only hidden: the organiser's held revenue is computed from
    it until the sales are deposited.

    Raises
    ------
    PermissionError
        The ticket was bought by someone else.
    ValueError
        *ticket_id* is a purchase summary row, not a ticket.
    """
    with Session(engine) as session:
        ticket = session.get(Ticket, ticket_id, with_for_update=True)
        if ticket is None or ticket.hidden_by_buyer:
            return False
        if ticket.buyer_user_id != user_id:
            raise PermissionError("You can only delete your own tickets")
        if not ticket.is_individual:
            raise ValueError("Purchase summaries cannot be deleted")
        ticket.hidden_by_buyer = True
        session.commit()
        logger.info("User %s hid ticket %s", user_id, ticket_id)
        return True


# ---------------------------------------------------------------------------
# Seller side
# ---------------------------------------------------------------------------
def get_user_event_ticket_sales(engine, user_id: int) -> list[dict]:
    """Per paid event created by *user_id*: sold, remaining, revenue, fees."""
    with Session(engine) as session:
        events = session.scalars(
            select(Event)
            .where(Event.creator_user_id == user_id, Event.is_free.is_(False))
            .order_by(Event.created_at.desc(), Event.id.desc())
        ).all()
        sales = []
        for event in events:
            tickets = session.scalars(
                select(Ticket).where(
                    Ticket.event_id == event.id,
                    Ticket.qty == 1,
                    Ticket.serial_number.is_not(None),
                )
            ).all()
            remaining = max(0, event.ticket_quantity or 0)
            sales.append({
                "event_id": event.id,
                "event_title": event.title,
                "status": event.status,
                "ticket_price_cents": event.ticket_price_cents or 0,
                "tickets_sold": len(tickets),
                "remaining_tickets": remaining,
                "total_revenue_cents": sum(t.total_paid_cents for t in tickets),
                "total_net_cents": sum(t.net_cents for t in tickets if not t.deposited),
                "total_fee_cents": sum(t.fee_cents for t in tickets),
                "is_selling": remaining > 0,
                "created_at": iso(event.created_at),
            })
        return sales


def _own_event(session: Session, user_id: int, event_id: int) -> Event:
    event = session.get(Event, event_id, with_for_update=True)
    if event is None:
        raise ValueError("Event not found")
    if event.creator_user_id != user_id:
        raise PermissionError("Only the event creator can do this")
    return event


def deposit_ticket_sales(engine, user_id: int, event_id: int) -> dict:
    """Move the held net revenue of *event_id* into the creator's wallet."""
    with Session(engine) as session:
        event = _own_event(session, user_id, event_id)
        tickets = session.scalars(
            select(Ticket)
            .where(
                Ticket.event_id == event.id,
                Ticket.qty == 1,
                Ticket.serial_number.is_not(None),
                Ticket.deposited.is_(False),
            )
            .with_for_update()
        ).all()
        total = sum(t.net_cents for t in tickets)
        if total <= 0:
            raise ValueError("No ticket sales to deposit")

        wallet = lock_wallet_for_user(session, user_id)
        if wallet is None:
            raise ValueError("Wallet not found")
        if wallet.status != WalletStatus.ACTIVE:
            raise ValueError(f"Your wallet is {wallet.status}. Deposits are not allowed.")
        credit(wallet, total)

        now = utcnow()
        for t in tickets:
            t.deposited = True
            t.deposited_at = now
        summaries = session.scalars(
            select(Ticket).where(
                Ticket.event_id == event.id,
                Ticket.serial_number.is_(None),
                Ticket.deposited.is_(False),
            )
        ).all()
        for t in summaries:
            t.deposited = True
            t.deposited_at = now

        pending = session.scalars(
            select(Transaction).where(
                Transaction.user_id == user_id,
                Transaction.type == TransactionType.RECEIVE,
                Transaction.status == TransactionStatus.PENDING,
            )
        ).all()
        for tx in pending:
            meta = tx.meta or {}
            if meta.get("event_id") == event.id and meta.get("pending_deposit"):
                tx.status = TransactionStatus.SUCCESS
                tx.meta = {**meta, "pending_deposit": False}

        ref = generate_reference()
        record_transaction(
            session,
            user_id=user_id,
            type=TransactionType.DEPOSIT,
            amount=total,
            to_wallet_id=wallet.wallet_id,
            note=f"Ticket sales deposit: {event.title}",
            ref=ref,
            meta={"event_id": event.id},
        )
        session.commit()

        logger.info("Event %s: %d cents of ticket sales deposited to %s",
                    event.id, total, wallet.wallet_id)
        return {
            "ref": ref,
            "tickets": len(tickets),
            "amount": from_cents(total),
            "amount_cents": total,
            "new_balance": from_cents(wallet.balance),
        }


def stop_selling_tickets(engine, user_id: int, event_id: int) -> dict:
    with Session(engine) as session:
        event = _own_event(session, user_id, event_id)
        event.ticket_quantity = 0
        session.commit()
        logger.info("Event %s: ticket sales stopped by creator", event.id)
        return event_to_dict(event)


def delete_event(engine, user_id: int, event_id: int) -> None:
    """Delete an event nobody has bought tickets for."""
    with Session(engine) as session:
        event = _own_event(session, user_id, event_id)
        sold = session.scalar(select(Ticket.id).where(Ticket.event_id == event.id).limit(1))
        if sold is not None:
            raise ValueError("Cannot delete an event that has sold tickets")
        session.delete(event)
        session.commit()
        logger.info("Event %s deleted by creator", event_id)
