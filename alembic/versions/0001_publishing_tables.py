"""create publishing tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "campaigns",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="draft"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_campaigns_user_id", "campaigns", ["user_id"])

    op.create_table(
        "campaign_states",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("meta_connect_data", postgresql.JSONB(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("campaign_id"),
    )

    op.create_table(
        "campaign_meta_connections",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("fb_user_id", sa.Text(), nullable=True),
        sa.Column("long_lived_user_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("selected_business_id", sa.Text(), nullable=True),
        sa.Column("selected_business_name", sa.Text(), nullable=True),
        sa.Column("selected_page_id", sa.Text(), nullable=True),
        sa.Column("selected_page_name", sa.Text(), nullable=True),
        sa.Column("selected_page_access_token", sa.Text(), nullable=True),
        sa.Column("selected_ig_user_id", sa.Text(), nullable=True),
        sa.Column("selected_ig_username", sa.Text(), nullable=True),
        sa.Column("selected_ad_account_id", sa.Text(), nullable=True),
        sa.Column("selected_ad_account_name", sa.Text(), nullable=True),
        sa.Column(
            "ad_account_payment_connected",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("campaign_id"),
    )
    op.create_index(
        "ix_campaign_meta_connections_fb_user_id",
        "campaign_meta_connections",
        ["fb_user_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_campaign_meta_connections_fb_user_id", "campaign_meta_connections")
    op.drop_table("campaign_meta_connections")
    op.drop_table("campaign_states")
    op.drop_index("ix_campaigns_user_id", "campaigns")
    op.drop_table("campaigns")
