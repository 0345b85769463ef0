"""Initial schema: accounts, wallets, ledger, events, news, messaging

Revision ID: 0a1c5e7b9d21
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c5e7b9d21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(),
    )


def _user_fk(name: str = "user_id", *, unique: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.Integer(),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=unique,
    )


def upgrade() -> None:
    """Create every table from scratch."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        _created_at(),
        _created_at("updated_at"),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(unique=True),
        sa.Column("wallet_id", sa.String(6), nullable=False, unique=True),
        sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _created_at(),
        _created_at("updated_at"),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )
    op.create_index("ix_wallets_status", "wallets", ["status"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("fee_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("from_wallet_id", sa.String(6), nullable=True),
        sa.Column("to_wallet_id", sa.String(6), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("ref", sa.String(40), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="success"),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_transactions_user_time", "transactions", ["user_id", "created_at"])
    op.create_index("ix_transactions_from_wallet", "transactions", ["from_wallet_id"])
    op.create_index("ix_transactions_to_wallet", "transactions", ["to_wallet_id"])
    op.create_index("ix_transactions_ref", "transactions", ["ref"])
    op.create_index("ix_transactions_type_status", "transactions", ["type", "status"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk("issuer_user_id"),
        sa.Column("recipient_wallet_id", sa.String(6), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("purpose", sa.String(500), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="unpaid"),
        sa.Column("ref", sa.String(20), nullable=False, unique=True),
        _created_at(),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_invoices_issuer", "invoices", ["issuer_user_id"])
    op.create_index("ix_invoices_recipient", "invoices", ["recipient_wallet_id"])

    op.create_table(
        "redeem_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(19), nullable=False, unique=True),
        sa.Column("pin", sa.String(4), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_by", sa.Integer(), nullable=True),
        sa.Column("used_by_wallet_id", sa.String(6), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        _created_at(),
    )

    op.create_table(
        "kyc_applications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(unique=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(40), nullable=False),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("documents", postgresql.JSONB(), nullable=True),
        _created_at("submitted_at"),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
    )
    op.create_index("ix_kyc_status", "kyc_applications", ["status"])

    op.create_table(
        "fees",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("deposited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deposited_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_fees_deposited", "fees", ["deposited"])

    op.create_table(
        "pending_withdrawals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("wallet_id", sa.String(6), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("ref", sa.String(20), nullable=False, unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.Integer(), nullable=True),
        sa.Column("fee_cents", sa.BigInteger(), nullable=True),
        sa.Column("payout_amount_cents", sa.BigInteger(), nullable=True),
    )
    op.create_index(
        "ix_pending_withdrawals_status_expiry",
        "pending_withdrawals",
        ["status", "expires_at"],
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk("creator_user_id"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ticket_price_cents", sa.BigInteger(), nullable=True),
        sa.Column("ticket_quantity", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("rejected_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _created_at("updated_at"),
    )
    op.create_index("ix_events_status_start", "events", ["status", "start_time"])
    op.create_index("ix_events_creator", "events", ["creator_user_id"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _user_fk("buyer_user_id"),
        sa.Column("qty", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_paid_cents", sa.BigInteger(), nullable=False),
        sa.Column("fee_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("net_cents", sa.BigInteger(), nullable=False),
        sa.Column("deposited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deposited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("serial_number", sa.String(64), nullable=True, unique=True),
        sa.Column("reference_number", sa.String(20), nullable=True),
        sa.Column("purchase_group_id", sa.String(36), nullable=False),
        _created_at(),
    )
    op.create_index("ix_tickets_event", "tickets", ["event_id"])
    op.create_index("ix_tickets_buyer", "tickets", ["buyer_user_id", "created_at"])
    op.create_index("ix_tickets_group", "tickets", ["purchase_group_id"])

    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk("author_user_id"),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("likes", sa.Integer(), nullable=False, server_default="0"),
        _created_at("published_at"),
    )
    op.create_index("ix_posts_published", "posts", ["published_at"])
    op.create_index("ix_posts_author", "posts", ["author_user_id"])

    op.create_table(
        "comments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _user_fk(),
        sa.Column(
            "parent_comment_id",
            sa.Integer(),
            sa.ForeignKey("comments.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_comments_post", "comments", ["post_id", "created_at"])

    op.create_table(
        "contact_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="new"),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_by", sa.Integer(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "user_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("subject", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by_user", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_by_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_user_messages_user", "user_messages", ["user_id", "created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "read"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        _created_at("timestamp"),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at("updated_at"),
    )
    op.create_index("ix_settings_category", "settings", ["category"])

    op.create_table(
        "media_files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("url", sa.String(500), nullable=False, unique=True),
        sa.Column("content_type", sa.String(100), nullable=True),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("purpose", sa.String(50), nullable=True),
        _created_at("uploaded_at"),
        sa.Column("uploaded_by", sa.Integer(), nullable=True),
    )
    op.create_index("ix_media_files_uploaded_by", "media_files", ["uploaded_by"])

    op.create_table(
        "admin_rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("admin_id", sa.String(64), nullable=False),
        _created_at("timestamp"),
    )
    op.create_index(
        "ix_admin_rate_limit_admin_ts",
        "admin_rate_limit_events",
        ["admin_id", sa.text("timestamp DESC")],
    )
    op.create_index("ix_admin_rate_limit_ts", "admin_rate_limit_events", ["timestamp"])


def downgrade() -> None:
    """Drop everything, children first."""
    for table in (
        "admin_rate_limit_events",
        "media_files",
        "settings",
        "admin_log",
        "notifications",
        "user_messages",
        "contact_messages",
        "comments",
        "posts",
        "tickets",
        "events",
        "pending_withdrawals",
        "fees",
        "kyc_applications",
        "redeem_codes",
        "invoices",
        "transactions",
        "wallets",
        "users",
    ):
        op.drop_table(table)
