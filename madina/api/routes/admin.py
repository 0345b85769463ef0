"""
madina.api.routes.admin — Admin console endpoints (JWT‑protected)
=================================================================

Every route here requires the ``admin`` role; mutations go through the
per-admin rate limiter.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from madina.api.deps import get_engine, service_errors
from madina.api.rate_limit import rate_limited_admin
from madina.constants import iso
from madina.database.models import Wallet
from madina.engine.money import from_cents
from madina.services import (
    admin_service,
    fee_service,
    message_service,
    redeem_service,
    wallet_service,
    withdrawal_service,
)
from madina.services.account_service import user_to_dict
from madina.services.log_buffer import (
    VALID_LEVELS,
    get_current_level,
    get_logs,
    set_capture_level,
)
from madina.services.redeem_service import redeem_code_to_dict

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RoleUpdate(BaseModel):
    role: str


class RedeemCodeCreate(BaseModel):
    amount: float = Field(gt=0)
    pin: str | None = Field(default=None, min_length=4, max_length=4)
    expires_at: datetime | None = None


class RedeemCodeDelete(BaseModel):
    ids: list[int] = Field(default_factory=list)


class UserMessageCreate(BaseModel):
    user_id: int
    subject: str
    message: str


class LogLevelUpdate(BaseModel):
    level: str


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _wallet_out(w: Wallet) -> dict:
    return {
        "id": w.id,
        "wallet_id": w.wallet_id,
        "user_id": w.user_id,
        "balance": from_cents(w.balance),
        "status": w.status,
        "created_at": iso(w.created_at),
    }


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
@router.get("/users")
def list_users(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return {"users": admin_service.get_users(engine)}


@router.get("/users/lookup")
def lookup_user(
    email: str = Query(..., min_length=3),
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    found = wallet_service.find_user_by_email(engine, email)
    if found is None:
        raise HTTPException(404, "User not found")
    return found


@router.put("/users/{user_id}/role")
def set_role(
    user_id: int,
    body: RoleUpdate,
    request: Request,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    with service_errors():
        user = admin_service.update_user_role(
            engine,
            user_id=user_id,
            role=body.role,
            actor_id=admin["id"],
            ip_address=_client_ip(request),
        )
    if user is None:
        raise HTTPException(404, "User not found")
    return user_to_dict(user)


@router.post("/users/{user_id}/wallet", status_code=201)
def open_wallet(
    user_id: int,
    request: Request,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    with service_errors():
        wallet = admin_service.create_wallet_for_user(
            engine, user_id=user_id, actor_id=admin["id"], ip_address=_client_ip(request),
        )
    return _wallet_out(wallet)


@router.delete("/users/{user_id}")
def remove_user(
    user_id: int,
    request: Request,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    with service_errors():
        deleted = admin_service.delete_user(
            engine, user_id=user_id, actor_id=admin["id"], ip_address=_client_ip(request),
        )
    if not deleted:
        raise HTTPException(404, "User not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------
@router.get("/wallets")
def list_wallets(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return {"wallets": admin_service.get_all_wallets(engine)}


@router.get("/wallets/{wallet_id}/transactions")
def wallet_transactions(
    wallet_id: str, admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine),
):
    rows = wallet_service.get_wallet_transactions(engine, wallet_id)
    if rows is None:
        raise HTTPException(404, "Wallet not found")
    return {"transactions": rows}


_STATUS_ACTIONS = {
    "suspend": admin_service.suspend_wallet,
    "reactivate": admin_service.reactivate_wallet,
    "terminate": admin_service.terminate_wallet,
}


@router.post("/wallets/{wallet_id}/{action}")
def change_wallet_status(
    wallet_id: str,
    action: str,
    request: Request,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    """Suspend, reactivate or terminate a wallet."""
    handler = _STATUS_ACTIONS.get(action)
    if handler is None:
        raise HTTPException(404, f"Unknown wallet action: {action}")
    with service_errors():
        wallet = handler(
            engine, wallet_id, actor_id=admin["id"], ip_address=_client_ip(request),
        )
    if wallet is None:
        raise HTTPException(404, "Wallet not found")
    return _wallet_out(wallet)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
@router.get("/stats")
def platform_stats(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return admin_service.get_platform_statistics(engine)


# ---------------------------------------------------------------------------
# Redeem codes
# ---------------------------------------------------------------------------
@router.get("/redeem-codes")
def list_redeem_codes(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return {"codes": redeem_service.get_all_redeem_codes(engine)}


@router.post("/redeem-codes", status_code=201)
def create_redeem_code(
    body: RedeemCodeCreate,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    with service_errors():
        rc = redeem_service.generate_redeem_code(
            engine, admin["id"], amount=body.amount, pin=body.pin, expires_at=body.expires_at,
        )
    return redeem_code_to_dict(rc)


@router.post("/redeem-codes/delete")
def delete_redeem_codes(
    body: RedeemCodeDelete,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    with service_errors():
        count = redeem_service.delete_redeem_codes(engine, body.ids)
    return {"deleted": count}


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------
@router.get("/fees")
def list_fees(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return fee_service.get_all_fees(engine)


@router.get("/fees/deposited")
def deposited_fees(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return {"fees": fee_service.get_deposited_fees(engine)}


@router.post("/fees/deposit")
def deposit_fees(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    """Move every undeposited fee into the acting admin's wallet."""
    with service_errors():
        return fee_service.deposit_total_fees(engine, admin["id"])


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------
@router.post("/withdrawals/expire")
def expire_withdrawals(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return {"expired": withdrawal_service.expire_stale_withdrawals(engine)}


# ---------------------------------------------------------------------------
# Contact messages and direct messages
# ---------------------------------------------------------------------------
@router.get("/contact")
def contact_messages(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return {"messages": message_service.get_all_contact_messages(engine)}


@router.post("/contact/{message_id}/read")
def read_contact(
    message_id: int, admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine),
):
    if not message_service.mark_contact_read(engine, message_id, admin_id=admin["id"]):
        raise HTTPException(404, "Message not found")
    return {"read": True}


@router.get("/messages")
def user_messages(admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine)):
    return {"messages": message_service.get_all_user_messages(engine)}


@router.post("/messages", status_code=201)
def send_user_message(
    body: UserMessageCreate,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    with service_errors():
        msg = message_service.send_message_to_user(
            engine, admin["id"], body.user_id, subject=body.subject, message=body.message,
        )
    return message_service.user_message_to_dict(msg)


@router.delete("/messages/{message_id}")
def delete_user_message(
    message_id: int, admin: dict = Depends(rate_limited_admin), engine=Depends(get_engine),
):
    if not message_service.delete_message_by_admin(engine, message_id):
        raise HTTPException(404, "Message not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------
@router.get("/audit")
def audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    """Paginated admin audit log."""
    return admin_service.get_audit_log(engine, page=page, page_size=page_size)


# ---------------------------------------------------------------------------
# Live Logs
# ---------------------------------------------------------------------------
@router.get("/logs")
def live_logs(
    tail: int = Query(200, ge=1, le=5000),
    level: str | None = Query(None),
    logger_filter: str | None = Query(None, alias="logger"),
    admin: dict = Depends(rate_limited_admin),
):
    """Return recent log entries from the in-memory ring buffer."""
    entries = get_logs(tail=tail, level=level, logger_filter=logger_filter)
    return {
        "entries": entries,
        "total": len(entries),
        "capture_level": get_current_level(),
        "valid_levels": list(VALID_LEVELS),
    }


@router.put("/logs/level")
def change_log_level(body: LogLevelUpdate, admin: dict = Depends(rate_limited_admin)):
    with service_errors():
        new_level = set_capture_level(body.level)
    return {"level": new_level}
