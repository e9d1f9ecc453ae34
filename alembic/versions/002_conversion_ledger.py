"""Conversion ledger, per-channel forward outcomes and efficiency alerts

Revision ID: 002_conversion_ledger
Revises: 001_initial
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_conversion_ledger"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Conversions: (platform, order id, line id) is the idempotency key
    op.create_table(
        "conversions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("seller_id", sa.UUID(), nullable=False),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("external_order_id", sa.String(255), nullable=False),
        sa.Column("external_order_line_id", sa.String(255), nullable=False),
        sa.Column("tracking_link_id", sa.String(16), nullable=True),
        sa.Column("click_id", sa.String(40), nullable=True),
        sa.Column("match_method", sa.String(20), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="KRW"),
        sa.Column("product_id", sa.String(100), nullable=True),
        sa.Column("ordered_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["seller_id"], ["sellers.id"]),
        sa.ForeignKeyConstraint(["tracking_link_id"], ["tracking_links.id"]),
        sa.ForeignKeyConstraint(["click_id"], ["link_clicks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "platform",
            "external_order_id",
            "external_order_line_id",
            name="uq_conversion_order_line",
        ),
    )
    op.create_index("idx_conversions_seller_time", "conversions", ["seller_id", "created_at"])
    op.create_index("idx_conversions_link", "conversions", ["tracking_link_id"])

    # Forward outcome per (conversion, channel)
    op.create_table(
        "conversion_forwards",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("conversion_id", sa.UUID(), nullable=False),
        sa.Column("ad_channel_id", sa.UUID(), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("event_id", sa.String(255), nullable=True),
        sa.Column("last_error", sa.String(500), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["conversion_id"], ["conversions.id"]),
        sa.ForeignKeyConstraint(["ad_channel_id"], ["ad_channels.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "conversion_id", "ad_channel_id", name="uq_forward_conversion_channel"
        ),
    )

    # Tier transition alerts
    op.create_table(
        "alerts",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("seller_id", sa.UUID(), nullable=False),
        sa.Column("tracking_link_id", sa.String(16), nullable=True),
        sa.Column("campaign_id", sa.UUID(), nullable=True),
        sa.Column("alert_type", sa.String(30), nullable=False),
        sa.Column("previous_tier", sa.String(10), nullable=False),
        sa.Column("tier", sa.String(10), nullable=False),
        sa.Column("ratio", sa.Integer(), nullable=False),
        sa.Column("spend", sa.Float(), nullable=False),
        sa.Column("revenue", sa.Float(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("notified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["seller_id"], ["sellers.id"]),
        sa.ForeignKeyConstraint(["tracking_link_id"], ["tracking_links.id"]),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_alerts_seller_time", "alerts", ["seller_id", "created_at"])
    op.create_index("idx_alerts_link", "alerts", ["tracking_link_id"])
    op.create_index("idx_alerts_campaign", "alerts", ["campaign_id"])


def downgrade() -> None:
    op.drop_index("idx_alerts_campaign", "alerts")
    op.drop_index("idx_alerts_link", "alerts")
    op.drop_index("idx_alerts_seller_time", "alerts")
    op.drop_table("alerts")

    op.drop_table("conversion_forwards")

    op.drop_index("idx_conversions_link", "conversions")
    op.drop_index("idx_conversions_seller_time", "conversions")
    op.drop_table("conversions")
