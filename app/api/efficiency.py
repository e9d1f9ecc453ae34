"""Efficiency (ROAS traffic light) API endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_notifier
from app.database import get_db
from app.models import Alert
from app.services.efficiency import EfficiencyEvaluator, EfficiencyState
from app.services.exceptions import LinkNotFoundError, ReconciliationError
from app.services.notifier import Notifier

router = APIRouter(prefix="/api/v1/efficiency", tags=["efficiency"])


class EfficiencyResponse(BaseModel):
    subject_id: str
    ratio: int
    tier: str
    previous_tier: str
    transitioned: bool
    alert_id: str | None


class AlertResponse(BaseModel):
    id: str
    tracking_link_id: str | None
    campaign_id: str | None
    alert_type: str
    previous_tier: str
    tier: str
    ratio: int
    spend: float
    revenue: float
    title: str
    message: str
    notified: bool
    created_at: str


def _state_to_response(state: EfficiencyState) -> EfficiencyResponse:
    return EfficiencyResponse(
        subject_id=state.subject_id,
        ratio=state.ratio,
        tier=state.tier.value,
        previous_tier=state.previous_tier.value,
        transitioned=state.transitioned,
        alert_id=str(state.alert_id) if state.alert_id else None,
    )


@router.post("/links/{code}/recompute", response_model=EfficiencyResponse)
async def recompute_link(
    code: str,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> EfficiencyResponse:
    """Reclassify a link; alerts only when the tier changes."""
    evaluator = EfficiencyEvaluator(db, notifier)
    try:
        state = await evaluator.recompute_link(code)
    except LinkNotFoundError:
        raise HTTPException(status_code=404, detail="Link not found")
    await db.commit()
    await evaluator.send_notifications()
    return _state_to_response(state)


@router.post("/campaigns/{campaign_id}/recompute", response_model=EfficiencyResponse)
async def recompute_campaign(
    campaign_id: str,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> EfficiencyResponse:
    """Reclassify a campaign; alerts only when the tier changes."""
    try:
        campaign_uuid = uuid.UUID(campaign_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid campaign_id format")

    evaluator = EfficiencyEvaluator(db, notifier)
    try:
        state = await evaluator.recompute_campaign(campaign_uuid)
    except ReconciliationError:
        raise HTTPException(status_code=404, detail="Campaign not found")
    await db.commit()
    await evaluator.send_notifications()
    return _state_to_response(state)


@router.get("/alerts/{seller_id}", response_model=list[AlertResponse])
async def get_alerts(
    seller_id: str,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    tier: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[AlertResponse]:
    """Tier transition alerts for a seller, newest first."""
    try:
        seller_uuid = uuid.UUID(seller_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid seller_id format")

    query = select(Alert).where(Alert.seller_id == seller_uuid)
    if tier:
        query = query.where(Alert.tier == tier)
    query = query.order_by(Alert.created_at.desc()).limit(limit)

    result = await db.execute(query)
    return [
        AlertResponse(
            id=str(a.id),
            tracking_link_id=a.tracking_link_id,
            campaign_id=str(a.campaign_id) if a.campaign_id else None,
            alert_type=a.alert_type,
            previous_tier=a.previous_tier,
            tier=a.tier,
            ratio=a.ratio,
            spend=a.spend,
            revenue=a.revenue,
            title=a.title,
            message=a.message,
            notified=a.notified,
            created_at=a.created_at.isoformat() if a.created_at else "",
        )
        for a in result.scalars().all()
    ]
