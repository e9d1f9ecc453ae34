"""Seller model - the tenant that owns links, campaigns and ad channels."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.ad_channel import AdChannel
    from app.models.campaign import Campaign
    from app.models.tracking import TrackingLink


class Seller(Base):
    """An e-commerce seller using the dashboard."""

    __tablename__ = "sellers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    notification_phone: Mapped[str | None] = mapped_column(String(30))
    red_alerts_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    tracking_links: Mapped[list["TrackingLink"]] = relationship(
        "TrackingLink", back_populates="seller"
    )
    campaigns: Mapped[list["Campaign"]] = relationship(
        "Campaign", back_populates="seller"
    )
    ad_channels: Mapped[list["AdChannel"]] = relationship(
        "AdChannel", back_populates="seller"
    )
