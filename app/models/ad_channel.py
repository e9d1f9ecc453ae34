"""Ad channel model - per-seller ad platform connection and credential store."""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.seller import Seller


class AdPlatform(str, Enum):
    """Ad platforms that accept server-side conversion events."""

    META = "meta"
    TIKTOK = "tiktok"


class ChannelStatus(str, Enum):
    """Connection state shown on the dashboard."""

    CONNECTED = "connected"
    TOKEN_EXPIRED = "token_expired"
    DISCONNECTED = "disconnected"


class AdChannel(Base):
    """
    A connected ad account.

    Tokens are minted by the OAuth flow elsewhere; this core only reads them,
    refreshes them when close to expiry, and records forwarding health.
    """

    __tablename__ = "ad_channels"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sellers.id"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    pixel_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Credentials (never logged)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime)

    status: Mapped[str] = mapped_column(
        String(20), default=ChannelStatus.CONNECTED.value, nullable=False
    )

    # Per-channel forwarding health for the dashboard
    last_forward_status: Mapped[str | None] = mapped_column(String(30))
    last_forward_error: Mapped[str | None] = mapped_column(String(500))
    last_forward_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    seller: Mapped["Seller"] = relationship("Seller", back_populates="ad_channels")

    __table_args__ = (
        Index("idx_ad_channels_seller", "seller_id"),
        UniqueConstraint("seller_id", "platform", "pixel_id", name="uq_seller_channel_pixel"),
    )

    def __repr__(self) -> str:
        return f"<AdChannel {self.platform}:{self.pixel_id} ({self.status})>"
