"""
madina.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- users               — Accounts (email + password hash + role)
- wallets             — One wallet per user, balance in cents
- transactions        — Wallet history rows (one per party per movement)
- invoices            — Payment requests addressed to a wallet
- redeem_codes        — One-time deposit codes with PIN
- kyc_applications    — Identity verification submissions
- fees                — Fee ledger awaiting deposit to the admin wallet
- pending_withdrawals — Cash requests waiting at the finance desk
- events / tickets    — Community events and ticket sales
- posts / comments    — News articles and threaded comments
- contact_messages    — Public contact form submissions
- user_messages       — Admin → user messages
- notifications       — Per-user notification feed
- admin_log           — Append-only audit trail
- settings            — Admin-configurable key/value store
- media_files         — Uploaded images
- admin_rate_limit_events — Durable admin mutation throttle state
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Madina ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Role(enum.StrEnum):
    USER = "user"
    EMPLOYEE = "employee"
    JOURNALIST = "journalist"
    FINANCE = "finance"
    ADMIN = "admin"


class WalletStatus(enum.StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class TransactionType(enum.StrEnum):
    """Every kind of wallet history row."""
    SEND = "send"
    RECEIVE = "receive"
    FEE = "fee"
    DEPOSIT = "deposit"
    TICKET_PAYOUT = "ticket_payout"
    INVOICE_PAYMENT = "invoice_payment"
    CASH_PAYOUT = "cash_payout"


class TransactionStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SUCCESS = "success"


class InvoiceStatus(enum.StrEnum):
    UNPAID = "unpaid"
    PAID = "paid"


class KycStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FeeType(enum.StrEnum):
    TRANSACTION = "transaction"
    WITHDRAWAL = "withdrawal"
    DEPOSIT = "deposit"


class WithdrawalStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class EventStatus(enum.StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    LIVE = "LIVE"
    ENDED = "ENDED"


class NotificationType(enum.StrEnum):
    TRANSACTION = "transaction"
    POST = "post"
    EVENT_APPROVAL = "event_approval"
    MESSAGE = "message"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ROLE_CHANGE = "ROLE_CHANGE"
    WALLET_STATUS = "WALLET_STATUS"
    FEE_DEPOSIT = "FEE_DEPOSIT"


# ---------------------------------------------------------------------------
# Users — one row per account
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.USER)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    wallet: Mapped[Wallet | None] = relationship(back_populates="user", uselist=False)
    kyc: Mapped[KycApplication | None] = relationship(back_populates="user", uselist=False)

    __table_args__ = (
        Index("ix_users_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"


# ---------------------------------------------------------------------------
# Wallets — balance in cents, never negative
# ---------------------------------------------------------------------------
class Wallet(Base):
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    wallet_id: Mapped[str] = mapped_column(String(6), nullable=False, unique=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WalletStatus.ACTIVE
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[User] = relationship(back_populates="wallet")

    __table_args__ = (
        Index("ix_wallets_status", "status"),
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Wallet {self.wallet_id} user={self.user_id} balance={self.balance}>"


# ---------------------------------------------------------------------------
# Transactions — one row per party per money movement
# ---------------------------------------------------------------------------
class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    from_wallet_id: Mapped[str | None] = mapped_column(String(6), nullable=True)
    to_wallet_id: Mapped[str | None] = mapped_column(String(6), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    ref: Mapped[str | None] = mapped_column(String(40), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.SUCCESS
    )
    meta: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_transactions_user_time", "user_id", "created_at"),
        Index("ix_transactions_from_wallet", "from_wallet_id"),
        Index("ix_transactions_to_wallet", "to_wallet_id"),
        Index("ix_transactions_ref", "ref"),
        Index("ix_transactions_type_status", "type", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} type={self.type} amount={self.amount} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Invoices — payment requests addressed to a wallet
# ---------------------------------------------------------------------------
class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issuer_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    recipient_wallet_id: Mapped[str] = mapped_column(String(6), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    purpose: Mapped[str | None] = mapped_column(String(500), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.UNPAID
    )
    ref: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_invoices_issuer", "issuer_user_id"),
        Index("ix_invoices_recipient", "recipient_wallet_id"),
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} ref={self.ref} status={self.status}>"


# ---------------------------------------------------------------------------
# RedeemCode — one-time deposit codes
# ---------------------------------------------------------------------------
class RedeemCode(Base):
    __tablename__ = "redeem_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(19), nullable=False, unique=True)
    pin: Mapped[str] = mapped_column(String(4), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_by_wallet_id: Mapped[str | None] = mapped_column(String(6), nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<RedeemCode id={self.id} amount={self.amount} used={self.used}>"


# ---------------------------------------------------------------------------
# KycApplication — one per user, replaced on resubmission after rejection
# ---------------------------------------------------------------------------
class KycApplication(Base):
    __tablename__ = "kyc_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str] = mapped_column(String(40), nullable=False)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=KycStatus.PENDING
    )
    documents: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship(back_populates="kyc")

    __table_args__ = (
        Index("ix_kyc_status", "status"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<KycApplication id={self.id} user={self.user_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Fee — ledger of platform cuts, deposited to the admin wallet in bulk
# ---------------------------------------------------------------------------
class Fee(Base):
    __tablename__ = "fees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transaction_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deposited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deposited_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_fees_deposited", "deposited"),
    )

    def __repr__(self) -> str:
        return f"<Fee id={self.id} type={self.type} amount={self.amount}>"


# ---------------------------------------------------------------------------
# PendingWithdrawal — cash requests held in the pool
# ---------------------------------------------------------------------------
class PendingWithdrawal(Base):
    __tablename__ = "pending_withdrawals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    wallet_id: Mapped[str] = mapped_column(String(6), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ref: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WithdrawalStatus.PENDING
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fee_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payout_amount_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("ix_pending_withdrawals_status_expiry", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<PendingWithdrawal ref={self.ref} amount={self.amount} status={self.status}>"


# ---------------------------------------------------------------------------
# Events — community events, free or ticketed
# ---------------------------------------------------------------------------
class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    creator_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    ticket_price_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    ticket_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EventStatus.PENDING
    )
    rejected_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    tickets: Mapped[list[Ticket]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_events_status_start", "status", "start_time"),
        Index("ix_events_creator", "creator_user_id"),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} title={self.title!r} status={self.status}>"


# ---------------------------------------------------------------------------
# Tickets — one row per ticket plus one summary row per purchase
# ---------------------------------------------------------------------------
class Ticket(Base):
    """A purchased ticket.

    Individual tickets have ``qty == 1`` and a ``serial_number``.  Each
    purchase also writes a summary row (``qty == n``, no serial) sharing the
    same ``purchase_group_id``; sales reports only count individual rows.
    """
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    # NULL once the buyer account is deleted; the row stays for the seller.
    buyer_user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_paid_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    net_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    deposited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deposited_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Buyer removed it from "my tickets"; seller accounting still counts it.
    hidden_by_buyer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    serial_number: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    reference_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    purchase_group_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    event: Mapped[Event] = relationship(back_populates="tickets")

    __table_args__ = (
        Index("ix_tickets_event", "event_id"),
        Index("ix_tickets_buyer", "buyer_user_id", "created_at"),
        Index("ix_tickets_group", "purchase_group_id"),
    )

    @property
    def is_individual(self) -> bool:
        return self.qty == 1 and self.serial_number is not None

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} event={self.event_id} qty={self.qty}>"


# ---------------------------------------------------------------------------
# News — posts and threaded comments
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    author_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    likes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    published_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    comments: Mapped[list[Comment]] = relationship(
        back_populates="post", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_posts_published", "published_at"),
        Index("ix_posts_author", "author_user_id"),
    )

    def __repr__(self) -> str:
        return f"<Post id={self.id} title={self.title!r}>"


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    parent_comment_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    post: Mapped[Post] = relationship(back_populates="comments")

    __table_args__ = (
        Index("ix_comments_post", "post_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Comment id={self.id} post={self.post_id} parent={self.parent_comment_id}>"


# ---------------------------------------------------------------------------
# Messaging — contact form, admin → user messages, notifications
# ---------------------------------------------------------------------------
class ContactMessage(Base):
    __tablename__ = "contact_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<ContactMessage id={self.id} email={self.email!r} status={self.status}>"


class UserMessage(Base):
    __tablename__ = "user_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(Integer, nullable=False)
    subject: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_by_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_user_messages_user", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<UserMessage id={self.id} user={self.user_id} read={self.read}>"


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Setting — admin-configurable key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Fee percentages, maintenance mode, currency and landing-page texts live
    here so admins can adjust them without redeploying.  Values are stored
    as JSON strings; typed access goes through
    :func:`madina.services.settings_service.get_system_settings`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# MediaFile — uploaded images
# ---------------------------------------------------------------------------
class MediaFile(Base):
    """Uploaded image stored on disk, referenced by URL path.

    KYC documents, event images, post images and the hero background are
    all uploaded through the same endpoint and tracked here.
    """
    __tablename__ = "media_files"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    content_type: Mapped[str | None] = mapped_column(String(100), default=None)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    purpose: Mapped[str | None] = mapped_column(String(50), default=None)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    uploaded_by: Mapped[int | None] = mapped_column(Integer, default=None)

    __table_args__ = (
        Index("ix_media_files_uploaded_by", "uploaded_by"),
    )

    def __repr__(self) -> str:
        return f"<MediaFile id={self.id} filename={self.filename!r}>"


# ---------------------------------------------------------------------------
# AdminRateLimitEvent — durable mutation events for admin throttling
# ---------------------------------------------------------------------------
class AdminRateLimitEvent(Base):
    __tablename__ = "admin_rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_admin_rate_limit_admin_ts", "admin_id", timestamp.desc()),
        Index("ix_admin_rate_limit_ts", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminRateLimitEvent admin={self.admin_id!r} ts={self.timestamp}>"
