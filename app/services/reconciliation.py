"""Reconciliation pipeline - one inbound order event end to end.

match -> apply -> commit -> recompute -> commit -> notify -> forward

Accounting commits before any outbound call, so forwarding outcomes are
recorded afterwards and can never roll back or hold up a conversion.
"""

import logging
import uuid
from dataclasses import dataclass, field

import aiohttp
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AdChannel, Conversion
from app.models.ad_channel import ChannelStatus
from app.services.click_ledger import ClickLedger
from app.services.efficiency import EfficiencyEvaluator, EfficiencyState
from app.services.exceptions import InvalidOrderEventError
from app.services.forwarder import ConversionForwarder, ForwardResult, build_purchase_event
from app.services.ledger import AggregateLedger
from app.services.matcher import ConversionMatcher
from app.services.notifier import Notifier
from app.services.order_events import CanonicalOrderEvent, MatchResult

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    conversion: Conversion
    match: MatchResult
    already_processed: bool = False
    link_state: EfficiencyState | None = None
    campaign_state: EfficiencyState | None = None
    forwards: list[ForwardResult] = field(default_factory=list)


@dataclass
class SpendResult:
    link_state: EfficiencyState
    campaign_state: EfficiencyState | None = None


class ReconciliationService:
    """Wires the matcher, ledger, evaluator and forwarder for one session."""

    def __init__(
        self,
        db: AsyncSession,
        session: aiohttp.ClientSession | None = None,
        redis: Redis | None = None,
        notifier: Notifier | None = None,
        forwarder: ConversionForwarder | None = None,
    ):
        self.db = db
        self.click_ledger = ClickLedger(db)
        self.matcher = ConversionMatcher(db, self.click_ledger)
        self.ledger = AggregateLedger(db, self.click_ledger)
        self.evaluator = EfficiencyEvaluator(db, notifier)
        if forwarder is None and session is not None and redis is not None:
            forwarder = ConversionForwarder(db, session, redis)
        self.forwarder = forwarder

    async def process_order(self, event: CanonicalOrderEvent) -> ReconciliationResult:
        """
        Reconcile one order line.

        Store or validation errors propagate with nothing applied. A
        redelivery returns already_processed=True without touching totals; it
        only recomputes when a failed recompute left the tier behind the totals.
        """
        match = await self.matcher.match(event)
        try:
            applied = await self.ledger.apply(event, match)
        except IntegrityError as e:
            await self.db.rollback()
            raise InvalidOrderEventError(
                f"Order {event.platform}:{event.external_order_id} rejected by store: {e.orig}"
            )

        if applied.already_processed:
            # Nothing was written; ending the transaction keeps the loaded row usable
            await self.db.commit()
            result = ReconciliationResult(
                conversion=applied.conversion,
                match=match,
                already_processed=True,
            )
            await self._repair_stale_tier(result, event)
            return result

        await self.db.commit()
        conversion = applied.conversion
        result = ReconciliationResult(conversion=conversion, match=match)

        if not match.is_attributed:
            logger.info(f"Order {event.external_order_id} recorded as organic")
            return result

        await self._recompute_committed(result, match.tracking_link_id, event)

        if self.forwarder is not None:
            result.forwards = await self._forward(conversion, event, match)

        return result

    async def record_spend(self, link_id: str, amount: float) -> SpendResult:
        """Add spend to a link (and its campaign) and reclassify both."""
        await self.ledger.record_spend(link_id, amount)
        await self.db.commit()

        link_state, campaign_state = await self._recompute_for_link(link_id)
        await self.db.commit()
        await self.evaluator.send_notifications()
        return SpendResult(link_state=link_state, campaign_state=campaign_state)

    async def _recompute_committed(
        self, result: ReconciliationResult, link_id: str, event: CanonicalOrderEvent
    ) -> None:
        """Recompute after the conversion committed, then notify outside the transaction."""
        try:
            result.link_state, result.campaign_state = await self._recompute_for_link(link_id)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Recompute of link={link_id} after order {event.platform}:"
                f"{event.external_order_id} failed, tier left stale until redelivery: {e}"
            )
            raise
        await self.evaluator.send_notifications()

    async def _repair_stale_tier(
        self, result: ReconciliationResult, event: CanonicalOrderEvent
    ) -> None:
        link_id = result.conversion.tracking_link_id
        if link_id is None or not await self.evaluator.link_is_stale(link_id):
            await self.db.commit()
            return
        logger.warning(
            f"Tier of link={link_id} lags its totals, recomputing on redelivery of "
            f"order {event.platform}:{event.external_order_id}"
        )
        await self._recompute_committed(result, link_id, event)

    async def _recompute_for_link(
        self, link_id: str
    ) -> tuple[EfficiencyState, EfficiencyState | None]:
        link_state = await self.evaluator.recompute_link(link_id)

        campaign_id = await self.ledger.campaign_of(link_id)
        campaign_state = None
        if campaign_id is not None:
            campaign_state = await self.evaluator.recompute_campaign(campaign_id)
        return link_state, campaign_state

    async def _forward(
        self,
        conversion: Conversion,
        event: CanonicalOrderEvent,
        match: MatchResult,
    ) -> list[ForwardResult]:
        channel_ids = await self._forwardable_channel_ids(event.seller_id)
        if not channel_ids:
            return []

        click = None
        if match.click_id:
            click = await self.click_ledger.get_click(match.click_id)
        purchase = build_purchase_event(conversion, event, click)
        conversion_id = conversion.id

        outcomes = []
        for channel_id in channel_ids:
            try:
                # Re-fetched per channel: a rollback below expires loaded rows
                channel = await self.db.get(AdChannel, channel_id)
                outcome = await self.forwarder.forward(channel, purchase)
                await self.forwarder.record_outcome(conversion_id, outcome)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(
                    f"Recording forward of conversion={conversion_id} "
                    f"to channel={channel_id} failed: {e}"
                )
                await self.db.refresh(conversion)
                continue
            outcomes.append(outcome)
        return outcomes

    async def _forwardable_channel_ids(self, seller_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(AdChannel.id)
            .where(
                AdChannel.seller_id == seller_id,
                AdChannel.status != ChannelStatus.DISCONNECTED.value,
            )
            .order_by(AdChannel.created_at)
        )
        return list(result.scalars().all())
