"""Ad channel status endpoints for the dashboard."""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models import AdChannel
from app.models.ad_channel import ChannelStatus

router = APIRouter(prefix="/api/v1/channels", tags=["channels"])


class ChannelStatusResponse(BaseModel):
    """Per-channel forwarding health. Tokens are never returned."""

    id: str
    platform: str
    pixel_id: str
    status: str
    needs_reconnect: bool
    token_expires_at: str | None
    last_forward_status: str | None
    last_forward_error: str | None
    last_forward_at: str | None


@router.get("/seller/{seller_id}", response_model=list[ChannelStatusResponse])
async def get_seller_channels(
    seller_id: str,
    db: AsyncSession = Depends(get_db),
) -> list[ChannelStatusResponse]:
    try:
        seller_uuid = uuid.UUID(seller_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid seller_id format")

    result = await db.execute(
        select(AdChannel)
        .where(AdChannel.seller_id == seller_uuid)
        .order_by(AdChannel.created_at)
    )
    return [
        ChannelStatusResponse(
            id=str(c.id),
            platform=c.platform,
            pixel_id=c.pixel_id,
            status=c.status,
            needs_reconnect=c.status == ChannelStatus.TOKEN_EXPIRED.value,
            token_expires_at=c.token_expires_at.isoformat() if c.token_expires_at else None,
            last_forward_status=c.last_forward_status,
            last_forward_error=c.last_forward_error,
            last_forward_at=c.last_forward_at.isoformat() if c.last_forward_at else None,
        )
        for c in result.scalars().all()
    ]
