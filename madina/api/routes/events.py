"""
madina.api.routes.events — Events, review and ticket sales
==========================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from madina.api.deps import (
    get_current_admin,
    get_current_user,
    get_engine,
    maintenance_guard,
    service_errors,
)
from madina.services import event_service

router = APIRouter(prefix="/events", tags=["events"], dependencies=[Depends(maintenance_guard)])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    image_url: str | None = None
    is_free: bool = True
    ticket_price: float | None = None
    ticket_quantity: int | None = None


class EventReject(BaseModel):
    reason: str


class TicketPurchase(BaseModel):
    quantity: int = Field(default=1, gt=0)


# ---------------------------------------------------------------------------
# Public listing
# ---------------------------------------------------------------------------
@router.get("")
def list_events(engine=Depends(get_engine)):
    return {"events": event_service.get_events(engine)}


@router.post("", status_code=201)
def create_event(
    body: EventCreate,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        event = event_service.create_event(engine, user["id"], **body.model_dump())
    return event_service.event_to_dict(event)


@router.get("/mine")
def my_events(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return {"events": event_service.get_user_events(engine, user["id"])}


@router.get("/pending")
def pending_events(admin: dict = Depends(get_current_admin), engine=Depends(get_engine)):
    return {"events": event_service.get_pending_events(engine)}


# ---------------------------------------------------------------------------
# Tickets (buyer side)
# ---------------------------------------------------------------------------
@router.get("/tickets")
def my_tickets(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return {"tickets": event_service.get_user_purchased_tickets(engine, user["id"])}


@router.delete("/tickets/{ticket_id}")
def delete_ticket(
    ticket_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine),
):
    with service_errors():
        deleted = event_service.delete_ticket(engine, user["id"], ticket_id)
    if not deleted:
        raise HTTPException(404, "Ticket not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Tickets (seller side)
# ---------------------------------------------------------------------------
@router.get("/sales")
def my_sales(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return {"sales": event_service.get_user_event_ticket_sales(engine, user["id"])}


@router.get("/sold-tickets")
def sold_tickets(
    event_id: int | None = None,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return {"tickets": event_service.get_user_event_tickets(engine, user["id"], event_id)}


# ---------------------------------------------------------------------------
# Single event
# ---------------------------------------------------------------------------
@router.get("/{event_id}")
def get_event(event_id: int, engine=Depends(get_engine)):
    found = event_service.get_event(engine, event_id)
    if found is None:
        raise HTTPException(404, "Event not found")
    return found


@router.delete("/{event_id}")
def delete_event(event_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        event_service.delete_event(engine, user["id"], event_id)
    return {"deleted": True}


@router.post("/{event_id}/approve")
def approve_event(event_id: int, admin: dict = Depends(get_current_admin), engine=Depends(get_engine)):
    with service_errors():
        return event_service.approve_event(engine, admin["id"], event_id)


@router.post("/{event_id}/reject")
def reject_event(
    event_id: int,
    body: EventReject,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    with service_errors():
        return event_service.reject_event(engine, admin["id"], event_id, body.reason)


@router.post("/{event_id}/tickets")
def purchase(
    event_id: int,
    body: TicketPurchase,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        return event_service.purchase_ticket(engine, user["id"], event_id, body.quantity)


@router.post("/{event_id}/deposit")
def deposit_sales(event_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        return event_service.deposit_ticket_sales(engine, user["id"], event_id)


@router.post("/{event_id}/stop-selling")
def stop_selling(event_id: int, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        return event_service.stop_selling_tickets(engine, user["id"], event_id)
