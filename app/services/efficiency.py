"""Efficiency evaluator - ROAS tiering with exactly-once transition alerts."""

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Alert, Campaign, EfficiencyTier, Seller, TrackingLink
from app.services.exceptions import LinkNotFoundError, ReconciliationError
from app.services.notifier import Notifier

logger = logging.getLogger(__name__)

TIER_EMOJI = {
    EfficiencyTier.GREEN: "\U0001F7E2",
    EfficiencyTier.YELLOW: "\U0001F7E1",
    EfficiencyTier.RED: "\U0001F534",
}

TIER_WORDING = {
    EfficiencyTier.RED: ("Ad efficiency warning", "consider pausing or revising the ad"),
    EfficiencyTier.YELLOW: ("Ad efficiency caution", "review creative and targeting"),
    EfficiencyTier.GREEN: ("Ad efficiency good", "consider increasing the budget!"),
}


@dataclass
class EfficiencyState:
    """Result of a recompute."""

    subject_id: str
    ratio: int
    tier: EfficiencyTier
    previous_tier: EfficiencyTier
    transitioned: bool
    alert_id: uuid.UUID | None = None


def compute_ratio(revenue: float, spend: float) -> int:
    """Revenue over spend in percent, rounded half-up. Zero spend gives 0."""
    if not spend or spend <= 0:
        return 0
    ratio = Decimal(str(revenue)) / Decimal(str(spend)) * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def classify(ratio: int, green_threshold: int, yellow_threshold: int) -> EfficiencyTier:
    if ratio >= green_threshold:
        return EfficiencyTier.GREEN
    if ratio >= yellow_threshold:
        return EfficiencyTier.YELLOW
    return EfficiencyTier.RED


def alert_text(tier: EfficiencyTier, name: str, ratio: int) -> tuple[str, str]:
    headline, advice = TIER_WORDING[tier]
    return f"{TIER_EMOJI[tier]} {headline}", f"[{name}] ROAS {ratio}% - {advice}"


class EfficiencyEvaluator:
    """
    Recomputes ROAS for links and campaigns.

    The stored tier doubles as the "previous tier". A new tier is written
    with a compare-and-set on the tier read, and only the writer whose
    update hit a row records the Alert. Recomputes that stay inside a tier
    never alert.
    """

    def __init__(self, db: AsyncSession, notifier: Notifier | None = None):
        self.db = db
        self.notifier = notifier or Notifier()
        self.pending_red_alerts: list[uuid.UUID] = []

    async def recompute_link(self, link_id: str) -> EfficiencyState:
        """
        Raises:
            LinkNotFoundError: If the link does not exist
        """
        result = await self.db.execute(
            select(TrackingLink)
            .where(TrackingLink.id == link_id)
            .execution_options(populate_existing=True)
        )
        link = result.scalar_one_or_none()
        if link is None:
            raise LinkNotFoundError(link_id)

        return await self._recompute(
            model=TrackingLink,
            subject=link,
            name=link.utm_campaign or link.id,
            alert_fields={"tracking_link_id": link.id},
        )

    async def recompute_campaign(self, campaign_id: uuid.UUID) -> EfficiencyState:
        """
        Raises:
            ReconciliationError: If the campaign does not exist
        """
        result = await self.db.execute(
            select(Campaign)
            .where(Campaign.id == campaign_id)
            .execution_options(populate_existing=True)
        )
        campaign = result.scalar_one_or_none()
        if campaign is None:
            raise ReconciliationError(f"Campaign not found: {campaign_id}")

        return await self._recompute(
            model=Campaign,
            subject=campaign,
            name=campaign.name,
            alert_fields={"campaign_id": campaign.id},
        )

    async def _recompute(
        self,
        model: type[TrackingLink] | type[Campaign],
        subject: TrackingLink | Campaign,
        name: str,
        alert_fields: dict,
    ) -> EfficiencyState:
        spend = subject.total_ad_spend or 0
        revenue = subject.total_revenue or 0
        ratio = compute_ratio(revenue, spend)
        tier = classify(ratio, subject.green_threshold, subject.yellow_threshold)
        previous_tier = EfficiencyTier(subject.efficiency_tier)
        subject_id = str(subject.id)

        state = EfficiencyState(
            subject_id=subject_id,
            ratio=ratio,
            tier=tier,
            previous_tier=previous_tier,
            transitioned=False,
        )

        if tier == previous_tier:
            await self.db.execute(
                update(model)
                .where(model.id == subject.id)
                .values(efficiency_ratio=ratio)
                .execution_options(synchronize_session=False)
            )
            return state

        result = await self.db.execute(
            update(model)
            .where(model.id == subject.id, model.efficiency_tier == previous_tier.value)
            .values(efficiency_ratio=ratio, efficiency_tier=tier.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                f"Tier of {model.__tablename__}={subject_id} changed concurrently, "
                f"skipping alert for {previous_tier.value}->{tier.value}"
            )
            return state

        title, message = alert_text(tier, name, ratio)
        alert = Alert(
            seller_id=subject.seller_id,
            alert_type=f"{tier.value}_light",
            previous_tier=previous_tier.value,
            tier=tier.value,
            ratio=ratio,
            spend=spend,
            revenue=revenue,
            title=title,
            message=message,
            **alert_fields,
        )
        self.db.add(alert)
        await self.db.flush()

        state.transitioned = True
        state.alert_id = alert.id
        logger.info(
            f"{model.__tablename__}={subject_id} {previous_tier.value}->{tier.value} "
            f"ratio={ratio}% alert={alert.id}"
        )

        if tier == EfficiencyTier.RED:
            self.pending_red_alerts.append(alert.id)

        return state

    async def link_is_stale(self, link_id: str) -> bool:
        """True when the stored ratio or tier of a link or its campaign lags its totals."""
        link = await self.db.get(TrackingLink, link_id, populate_existing=True)
        if link is None:
            return False
        subjects: list[TrackingLink | Campaign] = [link]
        if link.campaign_id is not None:
            campaign = await self.db.get(Campaign, link.campaign_id, populate_existing=True)
            if campaign is not None:
                subjects.append(campaign)
        return any(self._is_stale(subject) for subject in subjects)

    @staticmethod
    def _is_stale(subject: TrackingLink | Campaign) -> bool:
        ratio = compute_ratio(subject.total_revenue or 0, subject.total_ad_spend or 0)
        tier = classify(ratio, subject.green_threshold, subject.yellow_threshold)
        return ratio != subject.efficiency_ratio or tier.value != subject.efficiency_tier

    async def send_notifications(self) -> None:
        """
        Notify sellers of red transitions recorded since the last call.

        Call after the recompute transaction has committed: alerts are
        re-read from the store and each notified flag is committed on its own.
        """
        alert_ids, self.pending_red_alerts = self.pending_red_alerts, []
        for alert_id in alert_ids:
            await self._notify_red(alert_id)

    async def _notify_red(self, alert_id: uuid.UUID) -> None:
        alert = await self.db.get(Alert, alert_id, populate_existing=True)
        seller = await self.db.get(Seller, alert.seller_id) if alert is not None else None
        # No transaction stays open across the outbound call
        await self.db.commit()
        if alert is None:
            logger.warning(f"Alert {alert_id} was not stored, skipping notification")
            return
        if seller is None or not seller.red_alerts_enabled:
            return

        try:
            notified = await self.notifier.notify_red(alert, seller)
        except Exception as e:
            logger.error(f"Notifier failed for alert={alert_id}: {e}")
            return
        await self.db.execute(
            update(Alert)
            .where(Alert.id == alert_id)
            .values(notified=notified)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        alert.notified = notified
