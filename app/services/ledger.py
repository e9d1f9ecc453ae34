"""Aggregate ledger - applies matched conversions to link and campaign totals.

The conversion row insert is the idempotency guard: only the delivery whose
INSERT actually produced a row may increment aggregates. Increments are
single-statement ``col = col + :value`` updates. Nothing here commits;
the caller's transaction makes the row and its increments land together.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import dialect_insert
from app.models import Campaign, Conversion, TrackingLink
from app.services.click_ledger import ClickLedger
from app.services.exceptions import LinkNotFoundError
from app.services.order_events import ApplyResult, CanonicalOrderEvent, MatchResult

logger = logging.getLogger(__name__)

IDEMPOTENCY_COLUMNS = ["platform", "external_order_id", "external_order_line_id"]


class AggregateLedger:
    """Exactly-once application of order lines to running totals."""

    def __init__(self, db: AsyncSession, click_ledger: ClickLedger | None = None):
        self.db = db
        self.click_ledger = click_ledger or ClickLedger(db)

    async def apply(self, event: CanonicalOrderEvent, match: MatchResult) -> ApplyResult:
        """
        Record the order line and, if it is new, credit the matched link.

        A redelivered order line returns the existing Conversion with
        already_processed=True and touches nothing.
        """
        stmt = (
            dialect_insert(self.db, Conversion)
            .values(
                id=uuid.uuid4(),
                seller_id=event.seller_id,
                platform=event.platform,
                external_order_id=event.external_order_id,
                external_order_line_id=event.external_order_line_id,
                tracking_link_id=match.tracking_link_id,
                click_id=match.click_id,
                match_method=match.method.value,
                amount=event.amount,
                currency=event.currency,
                product_id=event.product_id,
                ordered_at=event.ordered_at,
                created_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(index_elements=IDEMPOTENCY_COLUMNS)
            .returning(Conversion.id)
        )
        result = await self.db.execute(stmt)
        conversion_id = result.scalar_one_or_none()

        if conversion_id is None:
            existing = await self._load_existing(event)
            logger.info(
                f"Order {event.platform}:{event.external_order_id}/"
                f"{event.external_order_line_id} already processed"
            )
            return ApplyResult(conversion=existing, already_processed=True)

        if match.tracking_link_id:
            await self._credit_link(match.tracking_link_id, event.amount)

            if match.click_id:
                converted = await self.click_ledger.mark_converted(
                    match.click_id, event.external_order_id
                )
                if not converted:
                    # Lost the click to a concurrent order; keep link credit only
                    await self.db.execute(
                        update(Conversion)
                        .where(Conversion.id == conversion_id)
                        .values(click_id=None)
                        .execution_options(synchronize_session=False)
                    )

        conversion = await self.db.get(Conversion, conversion_id, populate_existing=True)
        logger.info(
            f"Applied order {event.platform}:{event.external_order_id}/"
            f"{event.external_order_line_id} amount={event.amount} "
            f"link={match.tracking_link_id} method={match.method.value}"
        )
        return ApplyResult(conversion=conversion, already_processed=False)

    async def _load_existing(self, event: CanonicalOrderEvent) -> Conversion:
        result = await self.db.execute(
            select(Conversion).where(
                Conversion.platform == event.platform,
                Conversion.external_order_id == event.external_order_id,
                Conversion.external_order_line_id == event.external_order_line_id,
            )
        )
        return result.scalar_one()

    async def _credit_link(self, link_id: str, amount: float) -> None:
        now = datetime.utcnow()
        await self.db.execute(
            update(TrackingLink)
            .where(TrackingLink.id == link_id)
            .values(
                total_conversions=TrackingLink.total_conversions + 1,
                total_revenue=TrackingLink.total_revenue + amount,
                last_conversion_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        campaign_id = await self.campaign_of(link_id)
        if campaign_id is not None:
            await self.db.execute(
                update(Campaign)
                .where(Campaign.id == campaign_id)
                .values(
                    total_conversions=Campaign.total_conversions + 1,
                    total_revenue=Campaign.total_revenue + amount,
                )
                .execution_options(synchronize_session=False)
            )

    async def campaign_of(self, link_id: str) -> uuid.UUID | None:
        result = await self.db.execute(
            select(TrackingLink.campaign_id).where(TrackingLink.id == link_id)
        )
        return result.scalar_one_or_none()

    async def record_spend(self, link_id: str, amount: float) -> uuid.UUID | None:
        """
        Add ad spend to a link and its campaign.

        Returns:
            The link's campaign id, if any

        Raises:
            LinkNotFoundError: If the link does not exist
        """
        result = await self.db.execute(
            update(TrackingLink)
            .where(TrackingLink.id == link_id)
            .values(total_ad_spend=TrackingLink.total_ad_spend + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise LinkNotFoundError(link_id)

        campaign_id = await self.campaign_of(link_id)
        if campaign_id is not None:
            await self.db.execute(
                update(Campaign)
                .where(Campaign.id == campaign_id)
                .values(total_ad_spend=Campaign.total_ad_spend + amount)
                .execution_options(synchronize_session=False)
            )

        logger.info(f"Recorded spend {amount} on link={link_id} campaign={campaign_id}")
        return campaign_id
