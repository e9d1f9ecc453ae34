"""Conversion matcher - decides which tracking link gets credit for an order.

Priority, first hit wins:
1. Explicit click id resolving to a matchable click of the same seller
2. Campaign label resolving to exactly one active link of the seller
3. Organic

There is deliberately no "most recent click" fallback. An order that only
lines up with a click in time is recorded as organic.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import LinkStatus, TrackingLink
from app.models.conversion import MatchMethod
from app.services.click_ledger import ClickLedger
from app.services.exceptions import AmbiguousMatchError
from app.services.order_events import CanonicalOrderEvent, MatchResult

logger = logging.getLogger(__name__)


class ConversionMatcher:
    """Deterministic order-to-link attribution."""

    def __init__(self, db: AsyncSession, click_ledger: ClickLedger | None = None):
        self.db = db
        self.click_ledger = click_ledger or ClickLedger(db)

    async def match(self, event: CanonicalOrderEvent) -> MatchResult:
        if event.click_id:
            result = await self._match_click(event)
            if result is not None:
                return result

        if event.campaign_label:
            try:
                result = await self._match_label(event)
            except AmbiguousMatchError as e:
                logger.warning(
                    f"Ambiguous campaign label for order {event.platform}:"
                    f"{event.external_order_id}, recording as organic: {e}"
                )
                return MatchResult()
            if result is not None:
                return result

        return MatchResult()

    async def _match_click(self, event: CanonicalOrderEvent) -> MatchResult | None:
        click = await self.click_ledger.get_matchable_click(
            event.click_id, event.external_order_id
        )
        if click is None:
            logger.info(
                f"Click {event.click_id} on order {event.external_order_id} "
                f"is unknown, converted or past lookback"
            )
            return None

        result = await self.db.execute(
            select(TrackingLink.seller_id).where(TrackingLink.id == click.tracking_link_id)
        )
        if result.scalar_one_or_none() != event.seller_id:
            logger.warning(
                f"Click {event.click_id} belongs to another seller, "
                f"ignored for order {event.external_order_id}"
            )
            return None

        return MatchResult(
            tracking_link_id=click.tracking_link_id,
            click_id=click.id,
            method=MatchMethod.CLICK_ID,
        )

    async def _match_label(self, event: CanonicalOrderEvent) -> MatchResult | None:
        """
        Exact label lookup among the seller's active links.

        Raises:
            AmbiguousMatchError: If more than one active link carries the label
        """
        result = await self.db.execute(
            select(TrackingLink.id).where(
                TrackingLink.seller_id == event.seller_id,
                TrackingLink.utm_campaign == event.campaign_label,
                TrackingLink.status == LinkStatus.ACTIVE.value,
            )
        )
        link_ids = list(result.scalars().all())

        if not link_ids:
            return None
        if len(link_ids) > 1:
            raise AmbiguousMatchError(event.campaign_label, sorted(link_ids))

        return MatchResult(
            tracking_link_id=link_ids[0],
            click_id=None,
            method=MatchMethod.CAMPAIGN_LABEL,
        )
