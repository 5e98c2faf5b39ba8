"""h2all_initial_schema

Revision ID: 3a9c1e7d2b10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "3a9c1e7d2b10"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("redemption_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'active'")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_redemptions", sa.Integer(), nullable=True),
        sa.Column("current_redemptions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_redemptions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "total_redemption_value",
            sa.Numeric(14, 2),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('active','inactive','expired')", name="ck_campaigns_status"),
        sa.CheckConstraint("redemption_value >= 0", name="ck_campaigns_redemption_value_non_negative"),
        sa.CheckConstraint(
            "max_redemptions IS NULL OR max_redemptions > 0",
            name="ck_campaigns_max_redemptions_positive",
        ),
        sa.CheckConstraint(
            "current_redemptions >= 0",
            name="ck_campaigns_current_redemptions_non_negative",
        ),
    )
    op.create_index("idx_campaigns_status", "campaigns", ["status"])
    op.create_index("idx_campaigns_expires_at", "campaigns", ["expires_at"])

    op.create_table(
        "redemption_users",
        sa.Column("id", sa.String(512), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("balance", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_redemptions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "total_redemption_value",
            sa.Numeric(14, 2),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("balance >= 0", name="ck_redemption_users_balance_non_negative"),
        sa.UniqueConstraint("email", name="uq_redemption_users_email"),
    )
    op.create_index("idx_redemption_users_created_at", "redemption_users", ["created_at"])

    op.create_table(
        "redemption_codes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("campaign_id", sa.String(64), nullable=False),
        sa.Column("unique_code", sa.String(64), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_id", sa.String(512), nullable=True),
        sa.Column("user_email", sa.String(320), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redemption_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("redemption_source", sa.String(128), nullable=True),
        sa.Column("redemption_device", sa.String(255), nullable=True),
        sa.Column("redemption_location", sa.String(255), nullable=True),
        sa.Column("redemption_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "(is_used = false AND redeemed_at IS NULL) OR (is_used = true AND redeemed_at IS NOT NULL)",
            name="ck_redemption_codes_used_consistency",
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.UniqueConstraint("unique_code", name="uq_redemption_codes_unique_code"),
    )
    op.create_index("idx_redemption_codes_campaign", "redemption_codes", ["campaign_id"])
    op.create_index(
        "idx_redemption_codes_campaign_used",
        "redemption_codes",
        ["campaign_id", "is_used"],
    )
    op.create_index("idx_redemption_codes_user", "redemption_codes", ["user_id"])


def downgrade() -> None:
    op.drop_index("idx_redemption_codes_user", table_name="redemption_codes")
    op.drop_index("idx_redemption_codes_campaign_used", table_name="redemption_codes")
    op.drop_index("idx_redemption_codes_campaign", table_name="redemption_codes")
    op.drop_table("redemption_codes")
    op.drop_index("idx_redemption_users_created_at", table_name="redemption_users")
    op.drop_table("redemption_users")
    op.drop_index("idx_campaigns_expires_at", table_name="campaigns")
    op.drop_index("idx_campaigns_status", table_name="campaigns")
    op.drop_table("campaigns")
