"""Keep tickets for seller accounting: hidden_by_buyer, nullable buyer

Revision ID: 5c2e8d4a1f37
Revises: 0a1c5e7b9d21
Create Date: 2026-10-19 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e8d4a1f37"
down_revision: str | Sequence[str] | None = "0a1c5e7b9d21"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# PostgreSQL's default name for the unnamed FK created in the initial schema
_BUYER_FK = "tickets_buyer_user_id_fkey"


def upgrade() -> None:
    with op.batch_alter_table("tickets") as batch:
        batch.add_column(
            sa.Column("hidden_by_buyer", sa.Boolean(), nullable=False, server_default=sa.false())
        )
        batch.alter_column("buyer_user_id", existing_type=sa.Integer(), nullable=True)
        batch.drop_constraint(_BUYER_FK, type_="foreignkey")
        batch.create_foreign_key(
            _BUYER_FK, "users", ["buyer_user_id"], ["id"], ondelete="SET NULL",
        )


def downgrade() -> None:
    op.execute("DELETE FROM tickets WHERE buyer_user_id IS NULL")
    with op.batch_alter_table("tickets") as batch:
        batch.drop_constraint(_BUYER_FK, type_="foreignkey")
        batch.create_foreign_key(
            _BUYER_FK, "users", ["buyer_user_id"], ["id"], ondelete="CASCADE",
        )
        batch.alter_column("buyer_user_id", existing_type=sa.Integer(), nullable=False)
        batch.drop_column("hidden_by_buyer")
