"""Conversion ledger models."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class MatchMethod(str, Enum):
    """How an order was attributed."""

    CLICK_ID = "click_id"
    CAMPAIGN_LABEL = "campaign_label"
    ORGANIC = "organic"


class ForwardStatus(str, Enum):
    """Outcome of forwarding one conversion to one ad channel."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    REJECTED = "rejected"
    CREDENTIAL_EXPIRED = "credential_expired"


class Conversion(Base):
    """
    One purchased order line.

    (platform, external_order_id, external_order_line_id) is the
    idempotency key: a row exists at most once per order line and its
    insertion is what licenses the aggregate increment.
    Buyer contact data is never stored here.
    """

    __tablename__ = "conversions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sellers.id"), nullable=False
    )

    platform: Mapped[str] = mapped_column(String(30), nullable=False)
    external_order_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_order_line_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Null link = organic, kept for revenue completeness
    tracking_link_id: Mapped[str | None] = mapped_column(
        String(16), ForeignKey("tracking_links.id")
    )
    click_id: Mapped[str | None] = mapped_column(String(40), ForeignKey("link_clicks.id"))
    match_method: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="KRW", nullable=False)
    product_id: Mapped[str | None] = mapped_column(String(100))
    ordered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    forwards: Mapped[list["ConversionForward"]] = relationship(
        "ConversionForward", back_populates="conversion", lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint(
            "platform",
            "external_order_id",
            "external_order_line_id",
            name="uq_conversion_order_line",
        ),
        Index("idx_conversions_seller_time", "seller_id", "created_at"),
        Index("idx_conversions_link", "tracking_link_id"),
    )

    @property
    def is_organic(self) -> bool:
        return self.tracking_link_id is None

    def __repr__(self) -> str:
        return f"<Conversion {self.platform}:{self.external_order_id}/{self.external_order_line_id}>"


class ConversionForward(Base):
    """Forwarding outcome of a conversion for one ad channel."""

    __tablename__ = "conversion_forwards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversion_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversions.id"), nullable=False
    )
    ad_channel_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ad_channels.id"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30), default=ForwardStatus.PENDING.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    event_id: Mapped[str | None] = mapped_column(String(255))
    last_error: Mapped[str | None] = mapped_column(String(500))
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    conversion: Mapped["Conversion"] = relationship("Conversion", back_populates="forwards")

    __table_args__ = (
        UniqueConstraint("conversion_id", "ad_channel_id", name="uq_forward_conversion_channel"),
    )
