"""Initial schema: sellers, campaigns, ad channels, tracking links and clicks.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Sellers table
    op.create_table(
        "sellers",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("notification_phone", sa.String(30), nullable=True),
        sa.Column("red_alerts_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    # Campaigns table
    op.create_table(
        "campaigns",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("seller_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("total_ad_spend", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_revenue", sa.Float(), nullable=False, server_default="0"),
        sa.Column("green_threshold", sa.Integer(), nullable=False, server_default="300"),
        sa.Column("yellow_threshold", sa.Integer(), nullable=False, server_default="150"),
        sa.Column("efficiency_ratio", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("efficiency_tier", sa.String(10), nullable=False, server_default="red"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["seller_id"], ["sellers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_campaigns_seller", "campaigns", ["seller_id"])

    # Ad channels table (credential store + forwarding health)
    op.create_table(
        "ad_channels",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("seller_id", sa.UUID(), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("pixel_id", sa.String(100), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="connected"),
        sa.Column("last_forward_status", sa.String(30), nullable=True),
        sa.Column("last_forward_error", sa.String(500), nullable=True),
        sa.Column("last_forward_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["seller_id"], ["sellers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("seller_id", "platform", "pixel_id", name="uq_seller_channel_pixel"),
    )
    op.create_index("idx_ad_channels_seller", "ad_channels", ["seller_id"])

    # Tracking links table
    op.create_table(
        "tracking_links",
        sa.Column("id", sa.String(16), nullable=False),
        sa.Column("seller_id", sa.UUID(), nullable=False),
        sa.Column("campaign_id", sa.UUID(), nullable=True),
        sa.Column("ad_channel_id", sa.UUID(), nullable=True),
        sa.Column("product_id", sa.String(100), nullable=True),
        sa.Column("destination_url", sa.String(1000), nullable=False),
        sa.Column("utm_source", sa.String(100), nullable=False),
        sa.Column("utm_medium", sa.String(100), nullable=False),
        sa.Column("utm_campaign", sa.String(100), nullable=False),
        sa.Column("total_clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_revenue", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_ad_spend", sa.Float(), nullable=False, server_default="0"),
        sa.Column("green_threshold", sa.Integer(), nullable=False, server_default="300"),
        sa.Column("yellow_threshold", sa.Integer(), nullable=False, server_default="150"),
        sa.Column("efficiency_ratio", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("efficiency_tier", sa.String(10), nullable=False, server_default="red"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_click_at", sa.DateTime(), nullable=True),
        sa.Column("last_conversion_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["seller_id"], ["sellers.id"]),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["ad_channel_id"], ["ad_channels.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_tracking_links_seller", "tracking_links", ["seller_id"])
    op.create_index(
        "idx_tracking_links_seller_campaign_label",
        "tracking_links",
        ["seller_id", "utm_campaign"],
    )
    op.create_index("idx_tracking_links_campaign", "tracking_links", ["campaign_id"])

    # Link clicks table
    op.create_table(
        "link_clicks",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("tracking_link_id", sa.String(16), nullable=False),
        sa.Column("clicked_at", sa.DateTime(), nullable=False),
        sa.Column("fbp", sa.String(255), nullable=True),
        sa.Column("fbc", sa.String(255), nullable=True),
        sa.Column("ttclid", sa.String(255), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("referrer_url", sa.String(500), nullable=True),
        sa.Column("is_unique", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_converted", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("converted_order_id", sa.String(255), nullable=True),
        sa.Column("converted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["tracking_link_id"], ["tracking_links.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_link_clicks_link_time", "link_clicks", ["tracking_link_id", "clicked_at"])
    op.create_index(
        "idx_link_clicks_dedup",
        "link_clicks",
        ["tracking_link_id", "client_ip", "clicked_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_link_clicks_dedup", "link_clicks")
    op.drop_index("idx_link_clicks_link_time", "link_clicks")
    op.drop_table("link_clicks")

    op.drop_index("idx_tracking_links_campaign", "tracking_links")
    op.drop_index("idx_tracking_links_seller_campaign_label", "tracking_links")
    op.drop_index("idx_tracking_links_seller", "tracking_links")
    op.drop_table("tracking_links")

    op.drop_index("idx_ad_channels_seller", "ad_channels")
    op.drop_table("ad_channels")

    op.drop_index("idx_campaigns_seller", "campaigns")
    op.drop_table("campaigns")

    op.drop_table("sellers")
