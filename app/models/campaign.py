"""Campaign model - groups tracking links for spend and efficiency rollups."""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.alert import EfficiencyTier

if TYPE_CHECKING:
    from app.models.seller import Seller
    from app.models.tracking import TrackingLink


class CampaignStatus(str, Enum):
    """Campaign status."""

    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"


class Campaign(Base):
    """An ad campaign whose totals roll up from its tracking links."""

    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sellers.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=CampaignStatus.RUNNING.value, nullable=False
    )

    total_ad_spend: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    total_conversions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Float, default=0, nullable=False)

    green_threshold: Mapped[int] = mapped_column(Integer, default=300, nullable=False)
    yellow_threshold: Mapped[int] = mapped_column(Integer, default=150, nullable=False)
    efficiency_ratio: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    efficiency_tier: Mapped[str] = mapped_column(
        String(10), default=EfficiencyTier.RED.value, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    seller: Mapped["Seller"] = relationship("Seller", back_populates="campaigns")
    tracking_links: Mapped[list["TrackingLink"]] = relationship(
        "TrackingLink", back_populates="campaign"
    )

    __table_args__ = (Index("idx_campaigns_seller", "seller_id"),)
