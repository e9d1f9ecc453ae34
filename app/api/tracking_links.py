"""Tracking Links API endpoints."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_reconciliation_service
from app.config import settings
from app.database import get_db
from app.models import AdChannel, Campaign, LinkStatus, Seller, TrackingLink
from app.models.tracking import generate_link_code
from app.services.exceptions import LinkNotFoundError
from app.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/api/v1/tracking-links", tags=["tracking-links"])

MAX_CODE_ATTEMPTS = 5


# ============ Schemas ============


class TrackingLinkCreate(BaseModel):
    """Request to create a tracking link."""

    seller_id: uuid.UUID
    destination_url: str = Field(min_length=1, max_length=1000)
    utm_source: str = Field(min_length=1, max_length=100)
    utm_medium: str = Field(min_length=1, max_length=100)
    utm_campaign: str = Field(min_length=1, max_length=100)
    product_id: str | None = None
    campaign_id: uuid.UUID | None = None
    ad_channel_id: uuid.UUID | None = None
    green_threshold: int | None = Field(default=None, gt=0)
    yellow_threshold: int | None = Field(default=None, gt=0)


class ThresholdUpdate(BaseModel):
    """Per-link efficiency thresholds (ROAS percent)."""

    green_threshold: int = Field(gt=0)
    yellow_threshold: int = Field(gt=0)

    @model_validator(mode="after")
    def _green_above_yellow(self) -> "ThresholdUpdate":
        if self.green_threshold <= self.yellow_threshold:
            raise ValueError("green_threshold must be greater than yellow_threshold")
        return self


class SpendUpdate(BaseModel):
    """Ad spend to add to a link."""

    amount: float = Field(gt=0)


class TrackingLinkResponse(BaseModel):
    """Tracking link response."""

    code: str
    tracking_url: str
    destination_url: str
    seller_id: str
    campaign_id: str | None
    ad_channel_id: str | None
    product_id: str | None
    utm_source: str
    utm_medium: str
    utm_campaign: str
    total_clicks: int
    total_conversions: int
    total_revenue: float
    total_ad_spend: float
    conversion_rate: float | None
    green_threshold: int
    yellow_threshold: int
    efficiency_ratio: int
    efficiency_tier: str
    status: str
    created_at: str
    last_click_at: str | None
    last_conversion_at: str | None


class SpendResponse(BaseModel):
    """Link after a spend update, with its reclassification."""

    link: TrackingLinkResponse
    tier: str
    ratio: int
    transitioned: bool
    campaign_tier: str | None = None


# ============ Helper Functions ============


def _link_to_response(link: TrackingLink) -> TrackingLinkResponse:
    """Convert TrackingLink model to response."""
    clicks = link.total_clicks or 0
    return TrackingLinkResponse(
        code=link.id,
        tracking_url=f"{settings.public_base_url.rstrip('/')}/go/{link.id}",
        destination_url=link.destination_url,
        seller_id=str(link.seller_id),
        campaign_id=str(link.campaign_id) if link.campaign_id else None,
        ad_channel_id=str(link.ad_channel_id) if link.ad_channel_id else None,
        product_id=link.product_id,
        utm_source=link.utm_source,
        utm_medium=link.utm_medium,
        utm_campaign=link.utm_campaign,
        total_clicks=clicks,
        total_conversions=link.total_conversions or 0,
        total_revenue=link.total_revenue or 0,
        total_ad_spend=link.total_ad_spend or 0,
        conversion_rate=(link.total_conversions or 0) / clicks if clicks > 0 else None,
        green_threshold=link.green_threshold,
        yellow_threshold=link.yellow_threshold,
        efficiency_ratio=link.efficiency_ratio or 0,
        efficiency_tier=link.efficiency_tier,
        status=link.status,
        created_at=link.created_at.isoformat() if link.created_at else "",
        last_click_at=link.last_click_at.isoformat() if link.last_click_at else None,
        last_conversion_at=(
            link.last_conversion_at.isoformat() if link.last_conversion_at else None
        ),
    )


async def _get_link_or_404(db: AsyncSession, code: str) -> TrackingLink:
    result = await db.execute(
        select(TrackingLink)
        .where(TrackingLink.id == code)
        .execution_options(populate_existing=True)
    )
    link = result.scalar_one_or_none()
    if not link:
        raise HTTPException(status_code=404, detail="Link not found")
    return link


# ============ Endpoints ============


@router.post("/", response_model=TrackingLinkResponse)
async def create_tracking_link(
    data: TrackingLinkCreate,
    db: AsyncSession = Depends(get_db),
) -> TrackingLinkResponse:
    """
    Create a new tracking link for a seller.

    The short code is random and unguessable; the utm labels are appended
    to the destination on every redirect and drive label matching for
    storefronts that cannot echo the click id.
    """
    seller = await db.get(Seller, data.seller_id)
    if not seller:
        raise HTTPException(status_code=404, detail="Seller not found")

    if data.campaign_id:
        campaign = await db.get(Campaign, data.campaign_id)
        if not campaign or campaign.seller_id != seller.id:
            raise HTTPException(status_code=400, detail="Campaign does not belong to seller")

    if data.ad_channel_id:
        channel = await db.get(AdChannel, data.ad_channel_id)
        if not channel or channel.seller_id != seller.id:
            raise HTTPException(status_code=400, detail="Ad channel does not belong to seller")

    green = data.green_threshold or settings.default_green_threshold
    yellow = data.yellow_threshold or settings.default_yellow_threshold
    if green <= yellow:
        raise HTTPException(
            status_code=400,
            detail="green_threshold must be greater than yellow_threshold",
        )

    # Codes are random; retry the rare collision
    code = None
    for _ in range(MAX_CODE_ATTEMPTS):
        candidate = generate_link_code()
        if await db.get(TrackingLink, candidate) is None:
            code = candidate
            break
    if code is None:
        raise HTTPException(status_code=503, detail="Could not allocate a link code")

    link = TrackingLink(
        id=code,
        seller_id=seller.id,
        campaign_id=data.campaign_id,
        ad_channel_id=data.ad_channel_id,
        product_id=data.product_id,
        destination_url=data.destination_url,
        utm_source=data.utm_source,
        utm_medium=data.utm_medium,
        utm_campaign=data.utm_campaign,
        green_threshold=green,
        yellow_threshold=yellow,
        total_clicks=0,
        total_conversions=0,
        total_revenue=0,
        total_ad_spend=0,
    )

    db.add(link)
    await db.commit()
    await db.refresh(link)

    return _link_to_response(link)


@router.get("/seller/{seller_id}", response_model=list[TrackingLinkResponse])
async def get_seller_tracking_links(
    seller_id: str,
    include_archived: bool = False,
    db: AsyncSession = Depends(get_db),
) -> list[TrackingLinkResponse]:
    """Get all tracking links for a seller."""
    try:
        seller_uuid = uuid.UUID(seller_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid seller_id format")

    query = select(TrackingLink).where(TrackingLink.seller_id == seller_uuid)

    if not include_archived:
        query = query.where(TrackingLink.status == LinkStatus.ACTIVE.value)

    query = query.order_by(TrackingLink.created_at.desc())

    result = await db.execute(query)
    links = result.scalars().all()

    return [_link_to_response(link) for link in links]


@router.get("/{code}", response_model=TrackingLinkResponse)
async def get_tracking_link(
    code: str,
    db: AsyncSession = Depends(get_db),
) -> TrackingLinkResponse:
    """Get a single tracking link by code."""
    link = await _get_link_or_404(db, code)
    return _link_to_response(link)


@router.patch("/{code}/thresholds", response_model=TrackingLinkResponse)
async def update_thresholds(
    code: str,
    data: ThresholdUpdate,
    db: AsyncSession = Depends(get_db),
) -> TrackingLinkResponse:
    """
    Change a link's green/yellow thresholds.

    The stored tier is left alone; the next recompute reclassifies against
    the new thresholds and alerts if that changes the tier.
    """
    link = await _get_link_or_404(db, code)
    link.green_threshold = data.green_threshold
    link.yellow_threshold = data.yellow_threshold
    await db.commit()
    await db.refresh(link)
    return _link_to_response(link)


@router.post("/{code}/spend", response_model=SpendResponse)
async def record_spend(
    code: str,
    data: SpendUpdate,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> SpendResponse:
    """Add ad spend to a link and its campaign, then reclassify both."""
    try:
        outcome = await service.record_spend(code, data.amount)
    except LinkNotFoundError:
        raise HTTPException(status_code=404, detail="Link not found")

    link = await _get_link_or_404(service.db, code)
    return SpendResponse(
        link=_link_to_response(link),
        tier=outcome.link_state.tier.value,
        ratio=outcome.link_state.ratio,
        transitioned=outcome.link_state.transitioned,
        campaign_tier=outcome.campaign_state.tier.value if outcome.campaign_state else None,
    )


@router.delete("/{code}")
async def archive_tracking_link(
    code: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    Archive a tracking link.

    Archived links stop accepting clicks and label matches but keep their
    history; links are never hard-deleted.
    """
    link = await _get_link_or_404(db, code)
    link.status = LinkStatus.ARCHIVED.value
    await db.commit()

    return {"status": "archived", "code": code, "archived_at": datetime.utcnow().isoformat()}
