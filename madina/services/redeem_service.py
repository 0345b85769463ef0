"""
madina.services.redeem_service — One-time deposit codes
=======================================================

Admins print codes of the form ``1234-5678-9012-3456`` with a 4-digit PIN.
A user redeems a code once; the amount is credited to their wallet and a
``deposit`` row is written with ``meta.redeem_id``.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from madina.constants import PIN_REGEX, REDEEM_CODE_MAX_ATTEMPTS, as_utc, iso, utcnow
from madina.database.models import RedeemCode, TransactionType
from madina.engine.money import from_cents, generate_pin, generate_redeem_code as new_code
from madina.services.wallet_service import (
    credit,
    parse_amount,
    record_transaction,
    require_active_wallet,
)

logger = logging.getLogger(__name__)


def redeem_code_to_dict(rc: RedeemCode) -> dict:
    return {
        "id": rc.id,
        "code": rc.code,
        "pin": rc.pin,
        "amount": from_cents(rc.amount),
        "amount_cents": rc.amount,
        "used": rc.used,
        "used_by": rc.used_by,
        "used_by_wallet_id": rc.used_by_wallet_id,
        "used_at": iso(rc.used_at),
        "expires_at": iso(rc.expires_at),
        "created_by": rc.created_by,
        "created_at": iso(rc.created_at),
    }


def generate_redeem_code(
    engine,
    admin_id: int,
    *,
    amount,
    pin: str | None = None,
    expires_at: datetime | None = None,
) -> RedeemCode:
    """Create a new unused code worth *amount* (major units).

    Raises
    ------
    ValueError
        Non-positive amount, malformed PIN, or no free code found after
        ``REDEEM_CODE_MAX_ATTEMPTS`` tries.
    """
    cents = parse_amount(amount)
    if pin is not None:
        pin = str(pin).strip()
        if not PIN_REGEX.match(pin):
            raise ValueError("PIN must be exactly 4 digits")
    else:
        pin = generate_pin()

    with Session(engine, expire_on_commit=False) as session:
        code = None
        for _ in range(REDEEM_CODE_MAX_ATTEMPTS):
            candidate = new_code()
            taken = session.scalar(
                select(RedeemCode.id).where(RedeemCode.code == candidate)
            )
            if not taken:
                code = candidate
                break
        if code is None:
            raise ValueError("Failed to generate a unique redeem code. Please try again.")

        rc = RedeemCode(
            code=code,
            pin=pin,
            amount=cents,
            used=False,
            expires_at=expires_at,
            created_by=admin_id,
        )
        session.add(rc)
        session.commit()
        session.refresh(rc)
        session.expunge(rc)

    logger.info("Redeem code %s generated by %s for %d cents", rc.id, admin_id, cents)
    return rc


def get_all_redeem_codes(engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(RedeemCode).order_by(RedeemCode.created_at.desc(), RedeemCode.id.desc())
        ).all()
        return [redeem_code_to_dict(rc) for rc in rows]


def delete_redeem_codes(engine, ids: list[int]) -> int:
    """Delete codes by id; returns how many rows went."""
    if not ids:
        raise ValueError("No redeem codes selected")
    with Session(engine) as session:
        result = session.execute(delete(RedeemCode).where(RedeemCode.id.in_(ids)))
        session.commit()
        return result.rowcount or 0


def redeem_code(engine, user_id: int, *, code: str, pin: str) -> dict:
    """Credit *user_id*'s wallet with the value of *code*.

    Returns the credited amount and the new balance.
    """
    code = (code or "").strip().upper()
    pin = (pin or "").strip()
    if not code or not pin:
        raise ValueError("Code and PIN are required")

    with Session(engine) as session:
        wallet = require_active_wallet(session, user_id, action="Redeeming codes")

        rc = session.scalar(
            select(RedeemCode).where(RedeemCode.code == code).with_for_update()
        )
        if rc is None:
            raise ValueError("Invalid redeem code")
        if rc.pin != pin:
            raise ValueError("Invalid PIN")
        if rc.used:
            raise ValueError("This code has already been used")
        if rc.expires_at is not None and as_utc(rc.expires_at) < utcnow():
            raise ValueError("This code has expired")

        rc.used = True
        rc.used_by = user_id
        rc.used_by_wallet_id = wallet.wallet_id
        rc.used_at = utcnow()
        credit(wallet, rc.amount)
        record_transaction(
            session,
            user_id=user_id,
            type=TransactionType.DEPOSIT,
            amount=rc.amount,
            to_wallet_id=wallet.wallet_id,
            note="Redeem code deposit",
            meta={"redeem_id": rc.id},
        )
        session.commit()

        logger.info("Redeem code %s used by wallet %s", rc.id, wallet.wallet_id)
        return {
            "amount": from_cents(rc.amount),
            "amount_cents": rc.amount,
            "new_balance": from_cents(wallet.balance),
            "wallet_id": wallet.wallet_id,
        }
