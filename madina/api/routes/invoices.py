"""
madina.api.routes.invoices — Issue, view, pay and delete invoices
=================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from madina.api.deps import get_current_user, get_engine, maintenance_guard, service_errors
from madina.services import invoice_service
from madina.services.invoice_service import invoice_to_dict

router = APIRouter(
    prefix="/invoices", tags=["invoices"], dependencies=[Depends(maintenance_guard)],
)


class InvoiceCreate(BaseModel):
    recipient_wallet_id: str
    description: str = Field(min_length=1, max_length=500)
    amount: float = Field(gt=0)
    quantity: int | None = Field(default=None, gt=0)
    note: str | None = None


@router.get("")
def my_invoices(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return invoice_service.get_user_invoices(engine, user["id"])


@router.post("", status_code=201)
def create_invoice(
    body: InvoiceCreate,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        inv = invoice_service.create_invoice(
            engine,
            user["id"],
            recipient_wallet_id=body.recipient_wallet_id,
            description=body.description,
            amount=body.amount,
            quantity=body.quantity,
            note=body.note,
        )
    return invoice_to_dict(inv)


@router.get("/{ref}")
def get_invoice(ref: str, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    found = invoice_service.get_invoice_by_ref(engine, ref)
    if found is None:
        raise HTTPException(404, "Invoice not found")
    return found


@router.post("/{ref}/pay")
def pay_invoice(ref: str, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        return invoice_service.pay_invoice(engine, user["id"], ref)


@router.delete("/{ref}")
def delete_invoice(
    ref: str, user: dict = Depends(get_current_user), engine=Depends(get_engine),
):
    with service_errors():
        deleted = invoice_service.delete_invoice(engine, user["id"], ref)
    if not deleted:
        raise HTTPException(404, "Invoice not found")
    return {"deleted": True}
