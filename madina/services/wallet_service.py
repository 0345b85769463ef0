"""
madina.services.wallet_service — Wallets, P2P transfers, history
=================================================================

Every money movement in the portal follows the same pattern:

  1. Open one session (one DB transaction).
  2. Load the wallets involved ``FOR UPDATE``.
  3. Validate status and balance, compute the fee.
  4. Move the cents, write one ``transactions`` row per party, write the
     ``fees`` ledger row when a fee was charged.
  5. Commit once.  Any exception rolls the whole movement back.

The low-level helpers (:func:`lock_wallet_for_user`, :func:`record_transaction`,
:func:`record_fee`, ...) are shared with the redeem, withdrawal, invoice,
event and fee services.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from madina.constants import (
    WALLET_ID_EXAMPLE,
    is_valid_wallet_id,
    iso,
    normalize_wallet_id,
)
from madina.database.models import (
    Fee,
    KycApplication,
    KycStatus,
    NotificationType,
    Role,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    Wallet,
    WalletStatus,
)
from madina.engine.money import (
    fee_for,
    from_cents,
    generate_reference,
    generate_wallet_id,
    to_cents,
)
from madina.services.notification_service import add_notification
from madina.services.settings_service import load_system_settings

logger = logging.getLogger(__name__)


class WalletSuspendedError(ValueError):
    """Raised when a suspended wallet is asked for its balance."""

    code = "suspended"


@dataclass
class TransferResult:
    ref: str
    amount_cents: int
    fee_cents: int
    total_cents: int
    sender_balance: int
    recipient_wallet_id: str

    def to_dict(self) -> dict:
        return {
            "ref": self.ref,
            "amount": from_cents(self.amount_cents),
            "fee": from_cents(self.fee_cents),
            "total_deducted": from_cents(self.total_cents),
            "new_balance": from_cents(self.sender_balance),
            "recipient_wallet_id": self.recipient_wallet_id,
        }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def get_wallet_by_user(session: Session, user_id: int) -> Wallet | None:
    return session.scalar(select(Wallet).where(Wallet.user_id == user_id))


def get_wallet_by_wallet_id(session: Session, wallet_id: str) -> Wallet | None:
    return session.scalar(
        select(Wallet).where(Wallet.wallet_id == normalize_wallet_id(wallet_id))
    )


def lock_wallet_for_user(session: Session, user_id: int) -> Wallet | None:
    """Load *user_id*'s wallet with a row lock for the rest of the transaction."""
    return session.scalar(
        select(Wallet).where(Wallet.user_id == user_id).with_for_update()
    )


def lock_wallet_by_wallet_id(session: Session, wallet_id: str) -> Wallet | None:
    return session.scalar(
        select(Wallet)
        .where(Wallet.wallet_id == normalize_wallet_id(wallet_id))
        .with_for_update()
    )


def is_admin_user(session: Session, user_id: int) -> bool:
    user = session.get(User, user_id)
    return user is not None and user.role == Role.ADMIN


def require_active_wallet(session: Session, user_id: int, *, action: str) -> Wallet:
    """Locked, active wallet of *user_id* or a user-facing ``ValueError``."""
    wallet = lock_wallet_for_user(session, user_id)
    if wallet is None:
        raise ValueError("Wallet not found. Please complete KYC approval first.")
    if wallet.status != WalletStatus.ACTIVE:
        raise ValueError(f"Wallet is {wallet.status}. {action} not allowed.")
    return wallet


def parse_wallet_id(raw: str | None) -> str:
    wallet_id = normalize_wallet_id(raw)
    if not is_valid_wallet_id(wallet_id):
        raise ValueError(
            "Invalid Wallet ID format. Please enter a valid Wallet ID "
            f"(e.g., {WALLET_ID_EXAMPLE})"
        )
    return wallet_id


def parse_amount(amount) -> int:
    """Major-unit *amount* → positive cents, or ``ValueError``."""
    if amount is None:
        raise ValueError("Amount is required")
    cents = to_cents(amount)
    if cents <= 0:
        raise ValueError("Amount must be greater than 0")
    return cents


# ---------------------------------------------------------------------------
# Writers shared by every money-moving service
# ---------------------------------------------------------------------------
def open_wallet(session: Session, user_id: int, initial_balance: int = 0) -> Wallet:
    """Create a wallet with a fresh unique wallet id (no commit)."""
    wallet_id = generate_wallet_id()
    while session.scalar(select(Wallet.id).where(Wallet.wallet_id == wallet_id)):
        wallet_id = generate_wallet_id()
    wallet = Wallet(
        user_id=user_id,
        wallet_id=wallet_id,
        balance=initial_balance,
        status=WalletStatus.ACTIVE,
    )
    session.add(wallet)
    session.flush()
    logger.info("Wallet %s opened for user %s", wallet_id, user_id)
    return wallet


def record_transaction(
    session: Session,
    *,
    user_id: int | None,
    type: str,
    amount: int,
    fee_cents: int = 0,
    from_wallet_id: str | None = None,
    to_wallet_id: str | None = None,
    note: str | None = None,
    ref: str | None = None,
    status: str = TransactionStatus.SUCCESS,
    meta: dict | None = None,
) -> Transaction:
    tx = Transaction(
        user_id=user_id,
        type=type,
        amount=amount,
        fee_cents=fee_cents,
        from_wallet_id=from_wallet_id,
        to_wallet_id=to_wallet_id,
        note=note,
        ref=ref,
        status=status,
        meta=meta,
    )
    session.add(tx)
    session.flush()
    return tx


def record_fee(
    session: Session,
    *,
    type: str,
    amount: int,
    percentage: float | None,
    user_id: int | None,
    transaction_id: int | None,
) -> Fee:
    fee = Fee(
        type=type,
        amount=amount,
        percentage=percentage,
        user_id=user_id,
        transaction_id=transaction_id,
        deposited=False,
    )
    session.add(fee)
    session.flush()
    return fee


def debit(wallet: Wallet, cents: int) -> None:
    if wallet.balance < cents:
        raise ValueError("Insufficient funds")
    wallet.balance -= cents


def credit(wallet: Wallet, cents: int) -> None:
    wallet.balance += cents


# ---------------------------------------------------------------------------
# Wallet creation
# ---------------------------------------------------------------------------
def create_wallet(engine, user_id: int, initial_balance: int = 0) -> Wallet:
    """Open a wallet for *user_id*.

    Raises
    ------
    ValueError
        If the user doesn't exist or already has a wallet.
    """
    with Session(engine, expire_on_commit=False) as session:
        if session.get(User, user_id) is None:
            raise ValueError("User not found")
        if get_wallet_by_user(session, user_id) is not None:
            raise ValueError("User already has a wallet")
        wallet = open_wallet(session, user_id, initial_balance)
        session.commit()
        session.expunge(wallet)
        return wallet


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_balance(engine, user_id: int) -> dict:
    """Balance summary for *user_id*'s wallet.

    Raises
    ------
    ValueError
        No wallet yet.
    WalletSuspendedError
        The wallet is suspended.
    """
    with Session(engine) as session:
        wallet = get_wallet_by_user(session, user_id)
        if wallet is None:
            raise ValueError("Wallet not found. Please complete KYC approval first.")
        if wallet.status == WalletStatus.SUSPENDED:
            raise WalletSuspendedError(
                "Your wallet has been suspended. Please contact support."
            )
        balance = 0 if wallet.status == WalletStatus.TERMINATED else wallet.balance
        return {
            "wallet_id": wallet.wallet_id,
            "status": wallet.status,
            "balance_cents": balance,
            "balance": from_cents(balance),
        }


def transaction_to_dict(tx: Transaction, wallet_id: str | None = None) -> dict:
    return {
        "id": tx.id,
        "type": tx.type,
        "amount": from_cents(tx.amount),
        "amount_cents": tx.amount,
        "fee": from_cents(tx.fee_cents or 0),
        "fee_cents": tx.fee_cents or 0,
        "from_wallet_id": tx.from_wallet_id,
        "to_wallet_id": tx.to_wallet_id,
        "note": tx.note,
        "ref": tx.ref,
        "status": tx.status,
        "meta": tx.meta,
        "created_at": iso(tx.created_at),
        "is_sent": bool(wallet_id) and tx.from_wallet_id == wallet_id,
        "is_received": bool(wallet_id) and tx.to_wallet_id == wallet_id,
    }


def get_transactions(engine, user_id: int) -> list[dict]:
    """The user's own history rows, newest first."""
    with Session(engine) as session:
        wallet = get_wallet_by_user(session, user_id)
        rows = session.scalars(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).all()
        wallet_id = wallet.wallet_id if wallet else None
        return [transaction_to_dict(tx, wallet_id) for tx in rows]


def get_wallet_transactions(engine, wallet_id: str) -> list[dict] | None:
    """Every row touching *wallet_id* (admin view).  ``None`` if no such wallet."""
    wallet_id = normalize_wallet_id(wallet_id)
    with Session(engine) as session:
        if get_wallet_by_wallet_id(session, wallet_id) is None:
            return None
        rows = session.scalars(
            select(Transaction)
            .where(or_(
                Transaction.from_wallet_id == wallet_id,
                Transaction.to_wallet_id == wallet_id,
            ))
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).all()
        return [transaction_to_dict(tx, wallet_id) for tx in rows]


def get_recipient_info(engine, wallet_id: str) -> dict:
    """Who a wallet id belongs to, for the confirm step of a transfer."""
    wallet_id = parse_wallet_id(wallet_id)
    with Session(engine) as session:
        wallet = get_wallet_by_wallet_id(session, wallet_id)
        if wallet is None:
            raise ValueError("Recipient wallet not found")
        if wallet.status != WalletStatus.ACTIVE:
            raise ValueError(f"Recipient wallet is {wallet.status}")
        user = session.get(User, wallet.user_id)
        if user is None:
            raise ValueError("Recipient user not found")
        kyc = session.scalar(
            select(KycApplication).where(
                KycApplication.user_id == user.id,
                KycApplication.status == KycStatus.APPROVED,
            )
        )
        return {
            "wallet_id": wallet.wallet_id,
            "status": wallet.status,
            "first_name": kyc.first_name if kyc else "",
            "last_name": kyc.last_name if kyc else "",
            "email": user.email,
        }


def find_user_by_email(engine, email: str) -> dict | None:
    from madina.services.account_service import get_user_by_email

    with Session(engine) as session:
        user = get_user_by_email(session, email)
        if user is None:
            return None
        wallet = get_wallet_by_user(session, user.id)
        return {
            "id": user.id,
            "email": user.email,
            "role": user.role,
            "wallet_id": wallet.wallet_id if wallet else None,
        }


# ---------------------------------------------------------------------------
# P2P transfer
# ---------------------------------------------------------------------------
def send_money(
    engine,
    sender_user_id: int,
    *,
    recipient_wallet_id: str,
    amount,
    note: str | None = None,
) -> TransferResult:
    """Move *amount* (major units) from the sender's wallet to another.

    The sender pays the P2P fee on top of the amount; admins are exempt.
    Writes ``send`` and ``receive`` rows sharing one reference, plus a
    ``fee`` row and a ledger entry when a fee was charged.

    Raises
    ------
    ValueError
        Bad wallet id or amount, inactive wallets, self-transfer, or
        insufficient funds.
    """
    recipient_wallet_id = parse_wallet_id(recipient_wallet_id)
    amount_cents = parse_amount(amount)

    with Session(engine, expire_on_commit=False) as session:
        sender = lock_wallet_for_user(session, sender_user_id)
        if sender is None:
            raise ValueError("Your wallet was not found. Please complete KYC approval first.")
        if sender.status != WalletStatus.ACTIVE:
            raise ValueError(f"Your wallet is {sender.status}. Transfers are not allowed.")

        recipient = lock_wallet_by_wallet_id(session, recipient_wallet_id)
        if recipient is None:
            raise ValueError("Recipient wallet not found. Please check the Wallet ID.")
        if recipient.status != WalletStatus.ACTIVE:
            raise ValueError(
                f"Recipient wallet is {recipient.status}. Cannot send money to this wallet."
            )
        if recipient.id == sender.id:
            raise ValueError("You cannot send money to your own wallet.")

        settings = load_system_settings(session)
        percentage = settings.p2p_fee_percentage
        fee_cents = fee_for(
            amount_cents, percentage, exempt=is_admin_user(session, sender_user_id)
        )
        total = amount_cents + fee_cents
        if sender.balance < total:
            raise ValueError("Insufficient funds")

        debit(sender, total)
        credit(recipient, amount_cents)
        ref = generate_reference()

        send_tx = record_transaction(
            session,
            user_id=sender_user_id,
            type=TransactionType.SEND,
            amount=amount_cents,
            fee_cents=fee_cents,
            from_wallet_id=sender.wallet_id,
            to_wallet_id=recipient.wallet_id,
            note=note,
            ref=ref,
        )
        record_transaction(
            session,
            user_id=recipient.user_id,
            type=TransactionType.RECEIVE,
            amount=amount_cents,
            from_wallet_id=sender.wallet_id,
            to_wallet_id=recipient.wallet_id,
            note=note,
            ref=ref,
        )
        if fee_cents > 0:
            record_transaction(
                session,
                user_id=sender_user_id,
                type=TransactionType.FEE,
                amount=fee_cents,
                from_wallet_id=sender.wallet_id,
                note="P2P transfer fee",
                ref=ref,
            )
            record_fee(
                session,
                type="transaction",
                amount=fee_cents,
                percentage=percentage,
                user_id=sender_user_id,
                transaction_id=send_tx.id,
            )

        add_notification(
            session,
            user_id=recipient.user_id,
            type=NotificationType.TRANSACTION,
            title="Money Received",
            message=f"You received {amount_cents / 100:.2f} from {sender.wallet_id}",
            link="/wallet",
            meta={"transaction_ref": ref},
        )
        session.commit()

        logger.info(
            "P2P %s → %s: %d cents (fee %d) ref=%s",
            sender.wallet_id, recipient.wallet_id, amount_cents, fee_cents, ref,
        )
        return TransferResult(
            ref=ref,
            amount_cents=amount_cents,
            fee_cents=fee_cents,
            total_cents=total,
            sender_balance=sender.balance,
            recipient_wallet_id=recipient.wallet_id,
        )


# ---------------------------------------------------------------------------
# History housekeeping
# ---------------------------------------------------------------------------
def delete_transaction(engine, user_id: int, transaction_id: int) -> bool:
    """Remove one of the user's own history rows.  Balances are untouched.

    Returns ``False`` if the row does not exist.

    Raises
    ------
    PermissionError
        The row belongs to someone else.
    """
    with Session(engine) as session:
        tx = session.get(Transaction, transaction_id)
        if tx is None:
            return False
        if tx.user_id != user_id:
            raise PermissionError("You can only delete your own transactions")
        session.execute(delete(Transaction).where(Transaction.id == transaction_id))
        session.commit()
        return True
