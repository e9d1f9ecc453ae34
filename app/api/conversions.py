"""Conversions API endpoints."""

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_reconciliation_service
from app.database import get_db
from app.models import Conversion, Seller
from app.services.exceptions import InvalidOrderEventError
from app.services.order_events import CanonicalOrderEvent
from app.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/api/v1/conversions", tags=["conversions"])


# ============ Schemas ============


class ForwardSummary(BaseModel):
    channel_id: str
    platform: str
    status: str
    attempts: int
    error: str | None = None


class ReconciliationResponse(BaseModel):
    """Outcome of reconciling one order line."""

    conversion_id: str
    already_processed: bool
    tracking_link_id: str | None
    click_id: str | None
    match_method: str
    amount: float
    link_ratio: int | None = None
    link_tier: str | None = None
    alert_ids: list[str] = []
    forwards: list[ForwardSummary] = []


class ConversionResponse(BaseModel):
    id: str
    platform: str
    external_order_id: str
    external_order_line_id: str
    tracking_link_id: str | None
    click_id: str | None
    match_method: str
    amount: float
    currency: str
    ordered_at: str
    created_at: str
    forwards: list[ForwardSummary]


# ============ Endpoints ============


@router.post("/orders", response_model=ReconciliationResponse)
async def ingest_order(
    event: CanonicalOrderEvent,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReconciliationResponse:
    """
    Reconcile one canonical order line.

    Safe to redeliver: a repeated (platform, order id, line id) returns
    already_processed=true and changes nothing.
    """
    seller = await service.db.get(Seller, event.seller_id)
    if not seller:
        raise HTTPException(status_code=404, detail="Seller not found")

    try:
        result = await service.process_order(event)
    except InvalidOrderEventError as e:
        raise HTTPException(status_code=400, detail=str(e))

    conversion = result.conversion
    alert_ids = [
        str(state.alert_id)
        for state in (result.link_state, result.campaign_state)
        if state is not None and state.alert_id is not None
    ]
    return ReconciliationResponse(
        conversion_id=str(conversion.id),
        already_processed=result.already_processed,
        tracking_link_id=conversion.tracking_link_id,
        click_id=conversion.click_id,
        match_method=conversion.match_method,
        amount=conversion.amount,
        link_ratio=result.link_state.ratio if result.link_state else None,
        link_tier=result.link_state.tier.value if result.link_state else None,
        alert_ids=alert_ids,
        forwards=[
            ForwardSummary(
                channel_id=str(f.channel_id),
                platform=f.platform,
                status=f.status.value,
                attempts=f.attempts,
                error=f.error,
            )
            for f in result.forwards
        ],
    )


@router.get("/seller/{seller_id}", response_model=list[ConversionResponse])
async def get_seller_conversions(
    seller_id: str,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    since: datetime | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[ConversionResponse]:
    """Recent conversions for a seller with per-channel forward status."""
    try:
        seller_uuid = uuid.UUID(seller_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid seller_id format")

    query = select(Conversion).where(Conversion.seller_id == seller_uuid)
    if since:
        query = query.where(Conversion.created_at >= since)
    query = query.order_by(Conversion.created_at.desc()).limit(limit)

    result = await db.execute(query)
    conversions = result.scalars().all()

    return [
        ConversionResponse(
            id=str(c.id),
            platform=c.platform,
            external_order_id=c.external_order_id,
            external_order_line_id=c.external_order_line_id,
            tracking_link_id=c.tracking_link_id,
            click_id=c.click_id,
            match_method=c.match_method,
            amount=c.amount,
            currency=c.currency,
            ordered_at=c.ordered_at.isoformat(),
            created_at=c.created_at.isoformat() if c.created_at else "",
            forwards=[
                ForwardSummary(
                    channel_id=str(f.ad_channel_id),
                    platform=f.platform,
                    status=f.status,
                    attempts=f.attempts,
                    error=f.last_error,
                )
                for f in c.forwards
            ],
        )
        for c in conversions
    ]
