"""Boundary types shared by the matcher, the ledger and the forwarder."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from app.config import settings
from app.models import Conversion
from app.models.conversion import MatchMethod


class BuyerContact(BaseModel):
    """Raw buyer contact data. Hashed for forwarding, never persisted."""

    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class CanonicalOrderEvent(BaseModel):
    """
    A purchased order line in platform-neutral form.

    Produced by the per-storefront order adapters. One event describes one
    order line; single-line orders use the default line id "0".
    """

    platform: str = Field(min_length=1, max_length=30)
    external_order_id: str = Field(min_length=1, max_length=255)
    external_order_line_id: str = Field(default="0", min_length=1, max_length=255)
    seller_id: uuid.UUID
    amount: float = Field(gt=0)
    currency: str = Field(default=settings.default_currency, min_length=3, max_length=3)
    ordered_at: datetime

    click_id: str | None = None
    campaign_label: str | None = None
    buyer: BuyerContact = Field(default_factory=BuyerContact)

    product_id: str | None = None
    product_name: str | None = None
    quantity: int = Field(default=1, ge=1)

    @field_validator("platform")
    @classmethod
    def _normalize_platform(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("ordered_at")
    @classmethod
    def _to_naive_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @field_validator("click_id", "campaign_label")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def idempotency_key(self) -> tuple[str, str, str]:
        return (self.platform, self.external_order_id, self.external_order_line_id)


@dataclass
class MatchResult:
    """Outcome of matching an order to a tracking link."""

    tracking_link_id: str | None = None
    click_id: str | None = None
    method: MatchMethod = MatchMethod.ORGANIC

    @property
    def is_attributed(self) -> bool:
        return self.tracking_link_id is not None


@dataclass
class ApplyResult:
    """Outcome of applying an order to the ledger."""

    conversion: Conversion
    already_processed: bool = False


@dataclass
class PurchaseEvent:
    """
    A purchase ready to be sent to an ad platform.

    Contact fields are raw here; platform clients hash them while building
    the request body.
    """

    event_id: str
    order_id: str
    value: float
    currency: str
    event_time: datetime
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    fbp: str | None = None
    fbc: str | None = None
    ttclid: str | None = None
    product_ids: list[str] = field(default_factory=list)
    product_name: str | None = None
    quantity: int = 1
    event_source_url: str | None = None
