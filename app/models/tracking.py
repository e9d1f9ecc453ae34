"""Tracking link and click models for deterministic attribution."""

import secrets
import string
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.alert import EfficiencyTier

if TYPE_CHECKING:
    from app.models.campaign import Campaign
    from app.models.seller import Seller


LINK_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_link_code() -> str:
    """Opaque short code, e.g. TL-7KQ2M9XD."""
    return "TL-" + "".join(secrets.choice(LINK_CODE_ALPHABET) for _ in range(8))


def generate_click_id() -> str:
    """Unguessable click identity echoed back by the storefront."""
    return f"sp_{secrets.token_hex(16)}"


class LinkStatus(str, Enum):
    """Tracking link lifecycle."""

    ACTIVE = "active"
    ARCHIVED = "archived"


class TrackingLink(Base):
    """
    A seller-issued redirect identity.

    Counters are only ever changed with single-statement increments:
    clicks by the click ledger, conversions and revenue by the aggregate
    ledger, ad spend by spend updates.
    """

    __tablename__ = "tracking_links"

    id: Mapped[str] = mapped_column(
        String(16), primary_key=True, default=generate_link_code
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sellers.id"), nullable=False
    )
    campaign_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("campaigns.id")
    )
    ad_channel_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ad_channels.id")
    )
    product_id: Mapped[str | None] = mapped_column(String(100))

    destination_url: Mapped[str] = mapped_column(String(1000), nullable=False)

    # Source/medium/campaign labels appended to the destination on redirect
    utm_source: Mapped[str] = mapped_column(String(100), nullable=False)
    utm_medium: Mapped[str] = mapped_column(String(100), nullable=False)
    utm_campaign: Mapped[str] = mapped_column(String(100), nullable=False)

    # Running aggregates
    total_clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_conversions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    total_ad_spend: Mapped[float] = mapped_column(Float, default=0, nullable=False)

    # Efficiency thresholds (ROAS percent) and last classified state
    green_threshold: Mapped[int] = mapped_column(Integer, default=300, nullable=False)
    yellow_threshold: Mapped[int] = mapped_column(Integer, default=150, nullable=False)
    efficiency_ratio: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    efficiency_tier: Mapped[str] = mapped_column(
        String(10), default=EfficiencyTier.RED.value, nullable=False
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), default=LinkStatus.ACTIVE.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_click_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_conversion_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Relationships
    seller: Mapped["Seller"] = relationship("Seller", back_populates="tracking_links")
    campaign: Mapped["Campaign | None"] = relationship(
        "Campaign", back_populates="tracking_links"
    )
    clicks: Mapped[list["ClickEvent"]] = relationship(
        "ClickEvent", back_populates="tracking_link"
    )

    __table_args__ = (
        Index("idx_tracking_links_seller", "seller_id"),
        Index("idx_tracking_links_seller_campaign_label", "seller_id", "utm_campaign"),
        Index("idx_tracking_links_campaign", "campaign_id"),
    )

    def __repr__(self) -> str:
        return f"<TrackingLink {self.id} ({self.utm_campaign})>"


class ClickEvent(Base):
    """
    A visitor following a tracking link.

    Immutable apart from the one-time unconverted -> converted flip.
    Browser identifiers are kept for forwarding only, never for matching.
    """

    __tablename__ = "link_clicks"

    id: Mapped[str] = mapped_column(
        String(40), primary_key=True, default=generate_click_id
    )
    tracking_link_id: Mapped[str] = mapped_column(
        String(16), ForeignKey("tracking_links.id"), nullable=False
    )
    clicked_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    # Ad-platform browser identifiers (forwarding only)
    fbp: Mapped[str | None] = mapped_column(String(255))
    fbc: Mapped[str | None] = mapped_column(String(255))
    ttclid: Mapped[str | None] = mapped_column(String(255))
    client_ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    referrer_url: Mapped[str | None] = mapped_column(String(500))

    # Same IP + user agent within the dedup window counts once
    is_unique: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Outcome, set at most once
    is_converted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    converted_order_id: Mapped[str | None] = mapped_column(String(255))
    converted_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Relationships
    tracking_link: Mapped["TrackingLink"] = relationship(
        "TrackingLink", back_populates="clicks"
    )

    __table_args__ = (
        Index("idx_link_clicks_link_time", "tracking_link_id", "clicked_at"),
        Index("idx_link_clicks_dedup", "tracking_link_id", "client_ip", "clicked_at"),
    )

    def __repr__(self) -> str:
        return f"<ClickEvent {self.id} at {self.clicked_at}>"
