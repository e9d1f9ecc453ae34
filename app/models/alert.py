"""Efficiency tiers and the alerts emitted on tier transitions."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class EfficiencyTier(str, Enum):
    """Traffic-light classification of return on ad spend."""

    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


class Alert(Base):
    """
    One row per efficiency tier transition.

    Written only by the evaluator that won the compare-and-set on the
    subject's previous tier, so a transition never produces two alerts.
    """

    __tablename__ = "alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sellers.id"), nullable=False
    )
    tracking_link_id: Mapped[str | None] = mapped_column(
        String(16), ForeignKey("tracking_links.id")
    )
    campaign_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("campaigns.id")
    )

    alert_type: Mapped[str] = mapped_column(String(30), nullable=False)  # e.g. red_light
    previous_tier: Mapped[str] = mapped_column(String(10), nullable=False)
    tier: Mapped[str] = mapped_column(String(10), nullable=False)
    ratio: Mapped[int] = mapped_column(Integer, nullable=False)
    spend: Mapped[float] = mapped_column(Float, nullable=False)
    revenue: Mapped[float] = mapped_column(Float, nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)

    # Set once the notification collaborator accepted the red-tier request
    notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_alerts_seller_time", "seller_id", "created_at"),
        Index("idx_alerts_link", "tracking_link_id"),
        Index("idx_alerts_campaign", "campaign_id"),
    )

    def __repr__(self) -> str:
        return f"<Alert {self.previous_tier}->{self.tier} ratio={self.ratio}>"
