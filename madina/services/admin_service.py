"""
madina.services.admin_service — Admin back-office
=================================================

User and wallet management for the admin panel.  Every mutation follows
the same pattern:

  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSONB
  5. Commit
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from madina.constants import iso
from madina.database.models import (
    AdminActionType,
    AdminLog,
    Comment,
    Event,
    Fee,
    Invoice,
    KycApplication,
    Notification,
    PendingWithdrawal,
    Post,
    RedeemCode,
    Ticket,
    Transaction,
    User,
    UserMessage,
    Wallet,
    WalletStatus,
)
from madina.engine.money import from_cents, generate_wallet_id
from madina.engine.rbac import WALLET_REQUIRED_ROLES, is_valid_role
from madina.services.fee_service import undeposited_total
from madina.services.settings_service import load_system_settings
from madina.services.wallet_service import get_wallet_by_user, lock_wallet_for_user
from madina.services.withdrawal_service import pool_total, total_cash_paid_out

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------

def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        if col.name == "password_hash":
            continue
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    ip_address: str | None = None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        ip_address=ip_address,
        reason=reason,
    ))


def _audited_create(
    engine,
    row: Any,
    *,
    table_name: str,
    actor_id: int,
    ip_address: str | None = None,
) -> Any:
    """Generic audited CREATE: add -> flush -> log -> commit -> return.

    Parameters
    ----------
    row : ORM instance (already constructed, not yet added to a session).
    """
    with Session(engine, expire_on_commit=False) as session:
        session.add(row)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table=table_name,
            target_id=str(row.id),
            before=None,
            after=_row_to_dict(row),
            ip_address=ip_address,
        )
        session.commit()
        session.refresh(row)
        session.expunge(row)
        return row


def _audited_update(
    engine,
    model_cls: type,
    pk: int,
    *,
    table_name: str,
    actor_id: int,
    action_type: str = AdminActionType.UPDATE,
    frozen_keys: tuple[str, ...] = ("id",),
    ip_address: str | None = None,
    precondition: Callable[[Session, Any], None] | None = None,
    **kwargs: Any,
) -> Any | None:
    """Generic audited UPDATE: lock -> check -> before -> apply kwargs -> log -> commit.

    *precondition* runs against the locked row and raises to abort.
    Returns the updated (expunged) object, or ``None`` if not found.
    """
    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(model_cls, pk, with_for_update=True)
        if obj is None:
            return None
        if precondition is not None:
            precondition(session, obj)
        before = _row_to_dict(obj)
        for key, value in kwargs.items():
            if hasattr(obj, key) and key not in frozen_keys:
                setattr(obj, key, value)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=action_type,
            target_table=table_name,
            target_id=str(obj.id),
            before=before,
            after=_row_to_dict(obj),
            ip_address=ip_address,
        )
        session.commit()
        session.refresh(obj)
        session.expunge(obj)
        return obj


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
def get_users(engine) -> list[dict]:
    """Every account with wallet and KYC summary, newest first."""
    with Session(engine) as session:
        rows = session.execute(
            select(User, Wallet.wallet_id, Wallet.status, KycApplication.status)
            .outerjoin(Wallet, Wallet.user_id == User.id)
            .outerjoin(KycApplication, KycApplication.user_id == User.id)
            .order_by(User.created_at.desc(), User.id.desc())
        ).all()
        return [
            {
                "id": user.id,
                "email": user.email,
                "role": user.role,
                "created_at": iso(user.created_at),
                "has_wallet": wallet_id is not None,
                "wallet_id": wallet_id,
                "wallet_status": wallet_status,
                "kyc_status": kyc_status,
            }
            for user, wallet_id, wallet_status, kyc_status in rows
        ]


def update_user_role(
    engine, *, user_id: int, role: str, actor_id: int, ip_address: str | None = None,
) -> User | None:
    """Change a user's role.  ``None`` if the user does not exist.

    Raises
    ------
    ValueError
        Unknown role, or a staff role for a user without a wallet.
    """
    if not is_valid_role(role):
        raise ValueError(f"Invalid role: {role}")

    def needs_wallet(session: Session, user: User) -> None:
        if role in WALLET_REQUIRED_ROLES and lock_wallet_for_user(session, user.id) is None:
            raise ValueError(
                f"User must have a wallet before being assigned the {role} role"
            )

    user = _audited_update(
        engine, User, user_id,
        precondition=needs_wallet,
        table_name="users",
        actor_id=actor_id,
        action_type=AdminActionType.ROLE_CHANGE,
        ip_address=ip_address,
        role=role,
    )
    if user is not None:
        logger.info("Admin %s set role of user %s to %s", actor_id, user_id, role)
    return user


def create_wallet_for_user(
    engine, *, user_id: int, actor_id: int, ip_address: str | None = None,
) -> Wallet:
    with Session(engine) as session:
        if session.get(User, user_id) is None:
            raise ValueError("User not found")
        if get_wallet_by_user(session, user_id) is not None:
            raise ValueError("User already has a wallet")
        wallet_id = generate_wallet_id()
        while session.scalar(select(Wallet.id).where(Wallet.wallet_id == wallet_id)):
            wallet_id = generate_wallet_id()

    wallet = _audited_create(
        engine,
        Wallet(user_id=user_id, wallet_id=wallet_id, balance=0, status=WalletStatus.ACTIVE),
        table_name="wallets",
        actor_id=actor_id,
        ip_address=ip_address,
    )
    logger.info("Admin %s opened wallet %s for user %s", actor_id, wallet_id, user_id)
    return wallet


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------
def get_all_wallets(engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.execute(
            select(Wallet, User.email)
            .join(User, User.id == Wallet.user_id)
            .order_by(Wallet.created_at.desc(), Wallet.id.desc())
        ).all()
        return [
            {
                "id": w.id,
                "wallet_id": w.wallet_id,
                "user_id": w.user_id,
                "email": email,
                "balance": from_cents(w.balance),
                "balance_cents": w.balance,
                "status": w.status,
                "created_at": iso(w.created_at),
            }
            for w, email in rows
        ]


# Target status → statuses it may be reached from
_WALLET_TRANSITIONS: dict[str, tuple[str, ...]] = {
    WalletStatus.SUSPENDED: (WalletStatus.ACTIVE,),
    WalletStatus.ACTIVE: (WalletStatus.SUSPENDED,),
    WalletStatus.TERMINATED: (WalletStatus.ACTIVE, WalletStatus.SUSPENDED),
}


def _set_wallet_status(
    engine, wallet_id: str, target: str, *, actor_id: int, ip_address: str | None,
) -> Wallet | None:
    with Session(engine) as session:
        pk = session.scalar(
            select(Wallet.id).where(Wallet.wallet_id == wallet_id.strip().upper())
        )
    if pk is None:
        return None

    def allowed(session: Session, wallet: Wallet) -> None:
        if wallet.status not in _WALLET_TRANSITIONS[target]:
            raise ValueError(f"Cannot change wallet from {wallet.status} to {target}")

    updated = _audited_update(
        engine, Wallet, pk,
        precondition=allowed,
        table_name="wallets",
        actor_id=actor_id,
        action_type=AdminActionType.WALLET_STATUS,
        ip_address=ip_address,
        status=target,
    )
    logger.info("Admin %s set wallet %s to %s", actor_id, wallet_id, target)
    return updated


def suspend_wallet(engine, wallet_id: str, *, actor_id: int, ip_address: str | None = None):
    return _set_wallet_status(
        engine, wallet_id, WalletStatus.SUSPENDED, actor_id=actor_id, ip_address=ip_address,
    )


def reactivate_wallet(engine, wallet_id: str, *, actor_id: int, ip_address: str | None = None):
    return _set_wallet_status(
        engine, wallet_id, WalletStatus.ACTIVE, actor_id=actor_id, ip_address=ip_address,
    )


def terminate_wallet(engine, wallet_id: str, *, actor_id: int, ip_address: str | None = None):
    return _set_wallet_status(
        engine, wallet_id, WalletStatus.TERMINATED, actor_id=actor_id, ip_address=ip_address,
    )


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
def get_platform_statistics(engine) -> dict:
    with Session(engine) as session:
        by_status = dict(
            session.execute(
                select(Wallet.status, func.count()).group_by(Wallet.status)
            ).all()
        )
        total_balance = session.scalar(
            select(func.coalesce(func.sum(Wallet.balance), 0))
        ) or 0
        total_users = session.scalar(select(func.count()).select_from(User)) or 0
        cash_out = total_cash_paid_out(session)
        pool = pool_total(session)
        fees = undeposited_total(session)

    return {
        "total_users": total_users,
        "total_wallets": sum(by_status.values()),
        "active_wallets": by_status.get(WalletStatus.ACTIVE, 0),
        "suspended_wallets": by_status.get(WalletStatus.SUSPENDED, 0),
        "terminated_wallets": by_status.get(WalletStatus.TERMINATED, 0),
        "total_balance_cents": total_balance,
        "total_balance": from_cents(total_balance),
        "total_cash_payout_cents": cash_out,
        "total_cash_payout": from_cents(cash_out),
        "withdrawal_pool_cents": pool,
        "withdrawal_pool": from_cents(pool),
        "undeposited_fees_cents": fees,
        "undeposited_fees": from_cents(fees),
    }


# ---------------------------------------------------------------------------
# Account deletion
# ---------------------------------------------------------------------------
def delete_user(
    engine, *, user_id: int, actor_id: int, ip_address: str | None = None,
) -> bool:
    """Remove a user and everything they own.  ``False`` if not found.

    Redeem codes the user consumed are reset to unused.  Fee ledger rows
    are kept.

    Raises
    ------
    ValueError
        Self-deletion, or a wallet balance above ``max_balance_for_deletion``.
    """
    if user_id == actor_id:
        raise ValueError("You cannot delete your own account")

    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            return False
        wallet = get_wallet_by_user(session, user_id)
        limit = load_system_settings(session).max_balance_for_deletion
        own_events = select(Event.id).where(Event.creator_user_id == user_id)
        # Ticket revenue still held for the user counts as balance.
        held = session.scalar(
            select(func.coalesce(func.sum(Ticket.net_cents), 0)).where(
                Ticket.event_id.in_(own_events),
                Ticket.serial_number.is_not(None),
                Ticket.deposited.is_(False),
            )
        ) or 0
        holdings = (wallet.balance if wallet is not None else 0) + held
        if holdings > limit:
            raise ValueError(
                f"Wallet balance {from_cents(holdings):.2f} exceeds the maximum "
                f"of {from_cents(limit):.2f} allowed for deletion"
            )
        before = _row_to_dict(user)
        if wallet is not None:
            before["wallet"] = _row_to_dict(wallet)

        session.execute(
            update(RedeemCode)
            .where(RedeemCode.used_by == user_id)
            .values(used=False, used_by=None, used_by_wallet_id=None, used_at=None)
        )
        own_posts = select(Post.id).where(Post.author_user_id == user_id)
        # Tickets bought from other organisers stay for their sales accounting.
        session.execute(
            update(Ticket)
            .where(Ticket.buyer_user_id == user_id, Ticket.event_id.not_in(own_events))
            .values(buyer_user_id=None, hidden_by_buyer=True)
        )
        session.execute(delete(Ticket).where(Ticket.event_id.in_(own_events)))
        session.execute(delete(Event).where(Event.creator_user_id == user_id))
        session.execute(delete(Comment).where(or_(
            Comment.user_id == user_id, Comment.post_id.in_(own_posts),
        )))
        session.execute(delete(Post).where(Post.author_user_id == user_id))
        session.execute(delete(Transaction).where(Transaction.user_id == user_id))
        session.execute(delete(Invoice).where(Invoice.issuer_user_id == user_id))
        session.execute(delete(PendingWithdrawal).where(PendingWithdrawal.user_id == user_id))
        session.execute(delete(KycApplication).where(KycApplication.user_id == user_id))
        session.execute(delete(UserMessage).where(UserMessage.user_id == user_id))
        session.execute(delete(Notification).where(Notification.user_id == user_id))
        session.execute(delete(Wallet).where(Wallet.user_id == user_id))
        session.execute(update(Fee).where(Fee.user_id == user_id).values(user_id=None))
        session.execute(delete(User).where(User.id == user_id))

        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table="users",
            target_id=str(user_id),
            before=before,
            after=None,
            ip_address=ip_address,
        )
        session.commit()

    logger.info("Admin %s deleted user %s", actor_id, user_id)
    return True


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
def get_audit_log(engine, *, page: int = 1, page_size: int = 50) -> dict:
    page = max(page, 1)
    page_size = min(max(page_size, 1), 200)
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(AdminLog)) or 0
        rows = session.scalars(
            select(AdminLog)
            .order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return {
            "total": total,
            "page": page,
            "page_size": page_size,
            "entries": [
                {
                    "id": r.id,
                    "actor_id": r.actor_id,
                    "action_type": r.action_type,
                    "target_table": r.target_table,
                    "target_id": r.target_id,
                    "before": r.before_snapshot,
                    "after": r.after_snapshot,
                    "ip_address": r.ip_address,
                    "reason": r.reason,
                    "timestamp": iso(r.timestamp),
                }
                for r in rows
            ],
        }
