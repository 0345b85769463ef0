"""
madina.services.withdrawal_service — Cash pool & finance desk
=============================================================

A user asks for cash: the amount leaves their wallet immediately and sits
in the *pool* as a :class:`PendingWithdrawal` for ``withdrawal_hold_hours``.
At the desk a finance user looks the reference up and pays it out, keeping
the withdrawal fee.  Requests nobody collects in time are refunded.

Lifecycle::

    request_cash ──► pending ──► processed   (process_cash_payout)
                        │
                        └──────► expired     (refund, original tx failed)
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from madina.constants import as_utc, iso, utcnow
from madina.database.models import (
    FeeType,
    PendingWithdrawal,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    WithdrawalStatus,
)
from madina.engine.money import fee_for, from_cents, generate_reference
from madina.services.settings_service import load_system_settings
from madina.services.wallet_service import (
    credit,
    debit,
    is_admin_user,
    lock_wallet_by_wallet_id,
    lock_wallet_for_user,
    parse_amount,
    record_fee,
    record_transaction,
    require_active_wallet,
)

logger = logging.getLogger(__name__)

DEFAULT_HOLD_HOURS = 24


def withdrawal_to_dict(w: PendingWithdrawal, email: str | None = None) -> dict:
    expires_at = as_utc(w.expires_at)
    return {
        "id": w.id,
        "ref": w.ref,
        "user_id": w.user_id,
        "email": email,
        "wallet_id": w.wallet_id,
        "amount": from_cents(w.amount),
        "amount_cents": w.amount,
        "status": w.status,
        "created_at": iso(w.created_at),
        "expires_at": iso(expires_at),
        "is_expired": expires_at is not None and expires_at <= utcnow(),
        "processed_at": iso(w.processed_at),
        "processed_by": w.processed_by,
        "fee_cents": w.fee_cents,
        "payout_amount_cents": w.payout_amount_cents,
    }


def _original_tx(session: Session, w: PendingWithdrawal) -> Transaction | None:
    return session.scalar(
        select(Transaction).where(
            Transaction.user_id == w.user_id,
            Transaction.type == TransactionType.CASH_PAYOUT,
            Transaction.ref == w.ref,
            Transaction.status == TransactionStatus.PENDING,
        )
    )


def _refund(session: Session, w: PendingWithdrawal) -> None:
    """Return the held amount to the wallet and close the request as expired."""
    wallet = lock_wallet_by_wallet_id(session, w.wallet_id)
    if wallet is not None:
        credit(wallet, w.amount)
    w.status = WithdrawalStatus.EXPIRED
    tx = _original_tx(session, w)
    if tx is not None:
        tx.status = TransactionStatus.FAILED
    logger.info("Withdrawal %s expired, %d cents refunded", w.ref, w.amount)


# ---------------------------------------------------------------------------
# User side
# ---------------------------------------------------------------------------
def request_cash(
    engine, user_id: int, *, amount, hold_hours: int = DEFAULT_HOLD_HOURS,
) -> PendingWithdrawal:
    """Move *amount* from the user's wallet into the withdrawal pool.

    Raises
    ------
    ValueError
        Bad amount, inactive wallet or insufficient funds.
    """
    cents = parse_amount(amount)
    with Session(engine, expire_on_commit=False) as session:
        wallet = require_active_wallet(session, user_id, action="Withdrawals")
        debit(wallet, cents)

        ref = generate_reference()
        while session.scalar(select(PendingWithdrawal.id).where(PendingWithdrawal.ref == ref)):
            ref = generate_reference()

        w = PendingWithdrawal(
            user_id=user_id,
            wallet_id=wallet.wallet_id,
            amount=cents,
            ref=ref,
            status=WithdrawalStatus.PENDING,
            expires_at=utcnow() + timedelta(hours=hold_hours),
        )
        session.add(w)
        record_transaction(
            session,
            user_id=user_id,
            type=TransactionType.CASH_PAYOUT,
            amount=cents,
            from_wallet_id=wallet.wallet_id,
            note="Cash withdrawal request",
            ref=ref,
            status=TransactionStatus.PENDING,
            meta={"withdrawal_ref": ref},
        )
        session.commit()
        session.refresh(w)
        session.expunge(w)

    logger.info("Cash request %s: %d cents from %s", ref, cents, w.wallet_id)
    return w


# ---------------------------------------------------------------------------
# Finance desk
# ---------------------------------------------------------------------------
def get_pending_withdrawal_by_ref(engine, ref: str) -> dict | None:
    with Session(engine) as session:
        w = session.scalar(
            select(PendingWithdrawal).where(
                PendingWithdrawal.ref == (ref or "").strip(),
                PendingWithdrawal.status == WithdrawalStatus.PENDING,
            )
        )
        if w is None:
            return None
        user = session.get(User, w.user_id)
        return withdrawal_to_dict(w, user.email if user else None)


def get_all_pending_withdrawals(engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.execute(
            select(PendingWithdrawal, User.email)
            .join(User, User.id == PendingWithdrawal.user_id)
            .where(PendingWithdrawal.status == WithdrawalStatus.PENDING)
            .order_by(PendingWithdrawal.created_at.desc(), PendingWithdrawal.id.desc())
        ).all()
        return [withdrawal_to_dict(w, email) for w, email in rows]


def process_cash_payout(engine, finance_user_id: int, ref: str) -> dict:
    """Pay out pending withdrawal *ref* in cash.

    Expired requests are refunded and reported as an error; the refund is
    committed before the error is raised.

    Returns
    -------
    dict
        ``ref``, ``amount``, ``fee``, ``payout`` (major units).

    Raises
    ------
    ValueError
        Unknown ref, self-payout or expired request.
    """
    ref = (ref or "").strip()
    with Session(engine) as session:
        w = session.scalar(
            select(PendingWithdrawal)
            .where(
                PendingWithdrawal.ref == ref,
                PendingWithdrawal.status == WithdrawalStatus.PENDING,
            )
            .with_for_update()
        )
        if w is None:
            raise ValueError("Pending withdrawal not found")

        finance_wallet = lock_wallet_for_user(session, finance_user_id)
        if w.user_id == finance_user_id or (
            finance_wallet is not None and finance_wallet.wallet_id == w.wallet_id
        ):
            logger.warning("Finance user %s tried to pay out own withdrawal %s",
                           finance_user_id, ref)
            raise ValueError("You cannot process a payout to your own wallet")

        if as_utc(w.expires_at) <= utcnow():
            _refund(session, w)
            session.commit()
            raise ValueError("This withdrawal request has expired and was refunded")

        percentage = load_system_settings(session).withdrawal_fee_percentage
        fee_cents = fee_for(w.amount, percentage, exempt=is_admin_user(session, w.user_id))
        payout = w.amount - fee_cents

        original = _original_tx(session, w)
        if fee_cents > 0:
            record_fee(
                session,
                type=FeeType.WITHDRAWAL,
                amount=fee_cents,
                percentage=percentage,
                user_id=w.user_id,
                transaction_id=original.id if original else None,
            )

        record_transaction(
            session,
            user_id=finance_user_id,
            type=TransactionType.CASH_PAYOUT,
            amount=payout,
            from_wallet_id=w.wallet_id,
            to_wallet_id=finance_wallet.wallet_id if finance_wallet else None,
            note="paid cash",
            ref=w.ref,
            meta={"withdrawal_ref": w.ref},
        )

        now = utcnow()
        w.status = WithdrawalStatus.PROCESSED
        w.processed_at = now
        w.processed_by = finance_user_id
        w.fee_cents = fee_cents
        w.payout_amount_cents = payout
        if original is not None:
            original.status = TransactionStatus.SUCCESS
            original.fee_cents = fee_cents
        session.commit()

    logger.info("Withdrawal %s paid by %s: payout %d fee %d",
                ref, finance_user_id, payout, fee_cents)
    return {
        "ref": ref,
        "amount": from_cents(payout + fee_cents),
        "fee": from_cents(fee_cents),
        "payout": from_cents(payout),
    }


def expire_stale_withdrawals(engine) -> int:
    """Refund every pending withdrawal past its expiry; returns how many."""
    now = utcnow()
    count = 0
    with Session(engine) as session:
        rows = session.scalars(
            select(PendingWithdrawal)
            .where(PendingWithdrawal.status == WithdrawalStatus.PENDING)
            .with_for_update()
        ).all()
        for w in rows:
            if as_utc(w.expires_at) <= now:
                _refund(session, w)
                count += 1
        session.commit()
    if count:
        logger.info("Expired %d stale withdrawals", count)
    return count


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
def pool_total(session: Session) -> int:
    """Cents currently held for pending, unexpired withdrawals."""
    now = utcnow()
    rows = session.scalars(
        select(PendingWithdrawal).where(PendingWithdrawal.status == WithdrawalStatus.PENDING)
    ).all()
    return sum(w.amount for w in rows if as_utc(w.expires_at) > now)


def get_pool_details(engine) -> dict:
    now = utcnow()
    with Session(engine) as session:
        rows = session.execute(
            select(PendingWithdrawal, User.email)
            .join(User, User.id == PendingWithdrawal.user_id)
            .where(PendingWithdrawal.status == WithdrawalStatus.PENDING)
            .order_by(PendingWithdrawal.created_at.desc(), PendingWithdrawal.id.desc())
        ).all()
        items = [
            withdrawal_to_dict(w, email)
            for w, email in rows
            if as_utc(w.expires_at) > now
        ]
        total = sum(item["amount_cents"] for item in items)
        return {
            "withdrawals": items,
            "count": len(items),
            "total_cents": total,
            "total": from_cents(total),
        }


def _finance_payout_query():
    return (
        select(Transaction, User.email)
        .join(User, User.id == Transaction.user_id)
        .where(
            Transaction.type == TransactionType.CASH_PAYOUT,
            Transaction.status == TransactionStatus.SUCCESS,
            Transaction.note == "paid cash",
        )
    )


def total_cash_paid_out(session: Session) -> int:
    return session.scalar(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.type == TransactionType.CASH_PAYOUT,
            Transaction.status == TransactionStatus.SUCCESS,
            Transaction.note == "paid cash",
        )
    ) or 0


def get_cash_payout_details(engine) -> dict:
    """Cash handed out at the desk, one row per payout."""
    with Session(engine) as session:
        rows = session.execute(
            _finance_payout_query().order_by(
                Transaction.created_at.desc(), Transaction.id.desc()
            )
        ).all()
        payouts = [
            {
                "id": tx.id,
                "ref": tx.ref,
                "amount": from_cents(tx.amount),
                "amount_cents": tx.amount,
                "from_wallet_id": tx.from_wallet_id,
                "paid_by": email,
                "created_at": iso(tx.created_at),
            }
            for tx, email in rows
        ]
        total = sum(p["amount_cents"] for p in payouts)
        return {
            "payouts": payouts,
            "count": len(payouts),
            "total_cents": total,
            "total": from_cents(total),
        }
