"""
madina.services.fee_service — Fee ledger
========================================

Every fee charged on a transfer, invoice, ticket sale or cash payout is
written to ``fees`` with ``deposited = False``.  An admin periodically moves
the undeposited total into the admin wallet with :func:`deposit_total_fees`.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from madina.constants import FEE_SOURCE_LABELS, iso, utcnow
from madina.database.models import (
    AdminActionType,
    AdminLog,
    Fee,
    FeeType,
    Transaction,
    TransactionType,
    WalletStatus,
)
from madina.engine.money import from_cents, generate_fee_deposit_reference
from madina.services.wallet_service import (
    credit,
    lock_wallet_for_user,
    open_wallet,
    record_transaction,
)

logger = logging.getLogger(__name__)


def fee_source(fee: Fee, tx_type: str | None) -> str:
    """Display label for where *fee* came from."""
    if fee.type == FeeType.WITHDRAWAL:
        return "withdrawal"
    return FEE_SOURCE_LABELS.get(tx_type or "", fee.type)


def _fee_rows(session: Session, *, deposited: bool | None = None) -> list[dict]:
    stmt = (
        select(Fee, Transaction.type, Transaction.from_wallet_id, Transaction.ref)
        .outerjoin(Transaction, Transaction.id == Fee.transaction_id)
        .order_by(Fee.created_at.desc(), Fee.id.desc())
    )
    if deposited is not None:
        stmt = stmt.where(Fee.deposited.is_(deposited))
    return [
        {
            "id": fee.id,
            "type": fee.type,
            "source": fee_source(fee, tx_type),
            "amount": from_cents(fee.amount),
            "amount_cents": fee.amount,
            "percentage": fee.percentage,
            "user_id": fee.user_id,
            "transaction_id": fee.transaction_id,
            "from_wallet_id": from_wallet_id,
            "ref": ref,
            "deposited": fee.deposited,
            "deposited_at": iso(fee.deposited_at),
            "created_at": iso(fee.created_at),
        }
        for fee, tx_type, from_wallet_id, ref in session.execute(stmt).all()
    ]


def undeposited_total(session: Session) -> int:
    return session.scalar(
        select(func.coalesce(func.sum(Fee.amount), 0)).where(Fee.deposited.is_(False))
    ) or 0


def get_all_fees(engine) -> dict:
    with Session(engine) as session:
        fees = _fee_rows(session)
    pending = sum(f["amount_cents"] for f in fees if not f["deposited"])
    deposited = sum(f["amount_cents"] for f in fees if f["deposited"])
    return {
        "fees": fees,
        "total_undeposited_cents": pending,
        "total_undeposited": from_cents(pending),
        "total_deposited_cents": deposited,
        "total_deposited": from_cents(deposited),
    }


def get_deposited_fees(engine) -> list[dict]:
    with Session(engine) as session:
        return _fee_rows(session, deposited=True)


def deposit_total_fees(engine, admin_id: int) -> dict:
    """Credit every undeposited fee to *admin_id*'s wallet.

    The admin's wallet is opened on the fly if they do not have one yet.

    Raises
    ------
    ValueError
        Nothing to deposit, or the admin wallet is not active.
    """
    with Session(engine) as session:
        fees = session.scalars(
            select(Fee).where(Fee.deposited.is_(False)).with_for_update()
        ).all()
        total = sum(f.amount for f in fees)
        if total <= 0:
            raise ValueError("No fees to deposit")

        wallet = lock_wallet_for_user(session, admin_id)
        if wallet is None:
            wallet = open_wallet(session, admin_id)
        elif wallet.status != WalletStatus.ACTIVE:
            raise ValueError(f"Your wallet is {wallet.status}. Fees cannot be deposited into it.")
        credit(wallet, total)

        now = utcnow()
        for f in fees:
            f.deposited = True
            f.deposited_at = now

        ref = generate_fee_deposit_reference()
        record_transaction(
            session,
            user_id=admin_id,
            type=TransactionType.DEPOSIT,
            amount=total,
            to_wallet_id=wallet.wallet_id,
            note="Total fees deposit from fee ledger",
            ref=ref,
        )
        session.add(AdminLog(
            actor_id=admin_id,
            action_type=AdminActionType.FEE_DEPOSIT,
            target_table="fees",
            target_id=ref,
            after_snapshot={"count": len(fees), "total_cents": total},
        ))
        session.commit()

        logger.info("Admin %s deposited %d fees (%d cents) ref=%s",
                    admin_id, len(fees), total, ref)
        return {
            "ref": ref,
            "count": len(fees),
            "total": from_cents(total),
            "total_cents": total,
            "wallet_id": wallet.wallet_id,
            "new_balance": from_cents(wallet.balance),
        }
