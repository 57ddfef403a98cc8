"""Create loyalty ledger tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum labels match the Python member names persisted by the ORM.
loyalty_tier = sa.Enum("BRONZE", "SILVER", "GOLD", "PLATINUM", name="loyalty_tier")
loyalty_transaction_type = sa.Enum(
    "EARNED", "REDEEMED", "EXPIRED", "ADJUSTED", name="loyalty_transaction_type"
)
loyalty_earn_reason = sa.Enum(
    "PURCHASE",
    "BOOKING",
    "REVIEW",
    "REFERRAL",
    "BIRTHDAY",
    "SIGNUP_BONUS",
    "ADMIN_ADJUSTMENT",
    name="loyalty_earn_reason",
)
loyalty_redeem_reason = sa.Enum(
    "DISCOUNT",
    "FREE_SHIPPING",
    "FREE_PRODUCT",
    "CLASS_DISCOUNT",
    "ADMIN_ADJUSTMENT",
    name="loyalty_redeem_reason",
)
loyalty_reward_type = sa.Enum(
    "DISCOUNT_PERCENTAGE",
    "DISCOUNT_FIXED",
    "FREE_SHIPPING",
    "FREE_PRODUCT",
    "CLASS_DISCOUNT",
    name="loyalty_reward_type",
)


def upgrade() -> None:
    op.create_table(
        "loyalty_accounts",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("current_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tier", loyalty_tier, nullable=False, server_default="BRONZE"),
        sa.Column("points_multiplier", sa.Numeric(5, 2), nullable=False, server_default="1.00"),
        sa.Column("next_tier_threshold", sa.Integer(), nullable=True),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", name="uq_loyalty_accounts_user_id"),
        sa.CheckConstraint(
            "current_points >= 0", name="ck_loyalty_accounts_current_points_non_negative"
        ),
    )

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", loyalty_transaction_type, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("earn_reason", loyalty_earn_reason, nullable=True),
        sa.Column("redeem_reason", loyalty_redeem_reason, nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_loyalty_transactions_account_created",
        "loyalty_transactions",
        ["account_id", "created_at"],
    )
    op.create_index(
        "ix_loyalty_transactions_expiry_scan",
        "loyalty_transactions",
        ["type", "is_expired", "expires_at"],
    )
    op.create_index(
        "ix_loyalty_transactions_reference_id",
        "loyalty_transactions",
        ["reference_id"],
    )

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("type", loyalty_reward_type, nullable=False),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(10, 2), nullable=True),
        sa.Column("product_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("max_redemptions", sa.Integer(), nullable=True),
        sa.Column("current_redemptions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("loyalty_rewards")
    op.drop_index("ix_loyalty_transactions_reference_id", table_name="loyalty_transactions")
    op.drop_index("ix_loyalty_transactions_expiry_scan", table_name="loyalty_transactions")
    op.drop_index("ix_loyalty_transactions_account_created", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_table("loyalty_accounts")

    bind = op.get_bind()
    for enum_type in (
        loyalty_reward_type,
        loyalty_redeem_reason,
        loyalty_earn_reason,
        loyalty_transaction_type,
        loyalty_tier,
    ):
        enum_type.drop(bind, checkfirst=True)
