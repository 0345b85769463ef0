"""
madina.api.routes.wallet — Wallet, transfers, redeem codes, cash requests
=========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from madina.api.deps import (
    get_config,
    get_current_user,
    get_engine,
    maintenance_guard,
    service_errors,
)
from madina.config import MadinaConfig
from madina.engine.money import from_cents
from madina.services import redeem_service, wallet_service, withdrawal_service
from madina.services.withdrawal_service import withdrawal_to_dict

router = APIRouter(
    prefix="/wallet", tags=["wallet"], dependencies=[Depends(maintenance_guard)],
)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SendMoney(BaseModel):
    recipient_wallet_id: str
    amount: float = Field(gt=0)
    note: str | None = Field(default=None, max_length=500)


class RedeemRequest(BaseModel):
    code: str
    pin: str


class CashRequest(BaseModel):
    amount: float = Field(gt=0)


# ---------------------------------------------------------------------------
# Balance & history
# ---------------------------------------------------------------------------
@router.get("/balance")
def balance(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        return wallet_service.get_balance(engine, user["id"])


@router.get("/transactions")
def transactions(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return {"transactions": wallet_service.get_transactions(engine, user["id"])}


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        deleted = wallet_service.delete_transaction(engine, user["id"], transaction_id)
    if not deleted:
        raise HTTPException(404, "Transaction not found")
    return {"deleted": True}


@router.get("/recipient/{wallet_id}")
def recipient_info(
    wallet_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        return wallet_service.get_recipient_info(engine, wallet_id)


# ---------------------------------------------------------------------------
# Money movements
# ---------------------------------------------------------------------------
@router.post("/send")
def send(
    body: SendMoney,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        result = wallet_service.send_money(
            engine,
            user["id"],
            recipient_wallet_id=body.recipient_wallet_id,
            amount=body.amount,
            note=body.note,
        )
    return result.to_dict()


@router.post("/redeem")
def redeem(
    body: RedeemRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        return redeem_service.redeem_code(engine, user["id"], code=body.code, pin=body.pin)


@router.post("/withdrawals", status_code=201)
def request_cash(
    body: CashRequest,
    user: dict = Depends(get_current_user),
    cfg: MadinaConfig = Depends(get_config),
    engine=Depends(get_engine),
):
    """Put cash aside for pickup at the finance desk."""
    with service_errors():
        w = withdrawal_service.request_cash(
            engine, user["id"], amount=body.amount, hold_hours=cfg.withdrawal_hold_hours,
        )
    data = withdrawal_to_dict(w, user["email"])
    data["message"] = (
        f"Show reference {w.ref} at the finance desk to collect "
        f"{from_cents(w.amount):.2f} within {cfg.withdrawal_hold_hours} hours."
    )
    return data
