"""Click ledger - records link clicks and owns the click conversion flag."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models import ClickEvent, LinkStatus, TrackingLink
from app.services.exceptions import ClickNotFoundError, LinkNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ClickIdentifiers:
    """Browser identifiers captured at redirect time."""

    client_ip: str | None = None
    user_agent: str | None = None
    referrer_url: str | None = None
    fbp: str | None = None
    fbc: str | None = None
    ttclid: str | None = None


class ClickLedger:
    """
    Stores clicks and flips them to converted at most once.

    Counter changes are single-statement increments; the converted flag is
    a compare-and-set, so concurrent orders citing the same click cannot
    both claim it.
    """

    def __init__(
        self,
        db: AsyncSession,
        lookback_days: int | None = None,
        unique_window_minutes: int | None = None,
    ):
        self.db = db
        self.lookback_days = lookback_days or settings.lookback_days
        self.unique_window_minutes = (
            unique_window_minutes or settings.unique_click_window_minutes
        )

    def lookback_cutoff(self, now: datetime | None = None) -> datetime:
        return (now or datetime.utcnow()) - timedelta(days=self.lookback_days)

    async def record_click(
        self,
        link_code: str,
        identifiers: ClickIdentifiers | None = None,
    ) -> ClickEvent:
        """
        Record a click on an active link.

        Raises:
            LinkNotFoundError: If the link is unknown or archived
        """
        identifiers = identifiers or ClickIdentifiers()

        result = await self.db.execute(
            select(TrackingLink.id).where(
                TrackingLink.id == link_code,
                TrackingLink.status == LinkStatus.ACTIVE.value,
            )
        )
        if result.scalar_one_or_none() is None:
            raise LinkNotFoundError(link_code)

        now = datetime.utcnow()
        is_unique = await self._is_unique(link_code, identifiers, now)

        click = ClickEvent(
            tracking_link_id=link_code,
            clicked_at=now,
            client_ip=identifiers.client_ip,
            user_agent=identifiers.user_agent[:500] if identifiers.user_agent else None,
            referrer_url=identifiers.referrer_url[:500] if identifiers.referrer_url else None,
            fbp=identifiers.fbp,
            fbc=identifiers.fbc,
            ttclid=identifiers.ttclid,
            is_unique=is_unique,
        )
        self.db.add(click)
        await self.db.flush()

        values: dict = {"last_click_at": now}
        if is_unique:
            values["total_clicks"] = TrackingLink.total_clicks + 1
        await self.db.execute(
            update(TrackingLink)
            .where(TrackingLink.id == link_code)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        logger.info(f"Recorded click {click.id} on link={link_code} unique={is_unique}")
        return click

    async def _is_unique(
        self, link_code: str, identifiers: ClickIdentifiers, now: datetime
    ) -> bool:
        """A repeat from the same IP and user agent inside the window is not unique."""
        if not identifiers.client_ip:
            return True

        window_start = now - timedelta(minutes=self.unique_window_minutes)
        query = select(ClickEvent.id).where(
            ClickEvent.tracking_link_id == link_code,
            ClickEvent.client_ip == identifiers.client_ip,
            ClickEvent.clicked_at >= window_start,
        )
        if identifiers.user_agent:
            query = query.where(ClickEvent.user_agent == identifiers.user_agent[:500])
        else:
            query = query.where(ClickEvent.user_agent.is_(None))

        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none() is None

    async def get_click(self, click_id: str) -> ClickEvent:
        """
        Raises:
            ClickNotFoundError: If no click has this id
        """
        click = await self.db.get(ClickEvent, click_id)
        if click is None:
            raise ClickNotFoundError(click_id)
        return click

    async def get_matchable_click(
        self, click_id: str, order_id: str | None = None
    ) -> ClickEvent | None:
        """
        Return the click if it exists, is within lookback and is unconverted.

        A click already converted by order_id also matches, so every line of
        a multi-item order is credited through the same click.
        """
        available = ClickEvent.is_converted == False
        if order_id is not None:
            available = or_(available, ClickEvent.converted_order_id == order_id)

        result = await self.db.execute(
            select(ClickEvent).where(
                ClickEvent.id == click_id,
                available,
                ClickEvent.clicked_at >= self.lookback_cutoff(),
            )
        )
        return result.scalar_one_or_none()

    async def mark_converted(self, click_id: str, order_id: str) -> bool:
        """
        Flip a click to converted.

        Returns True when the flip happened or the click already belongs to
        order_id. Returns False without raising when another order holds the
        click, it is outside the lookback window, or another worker won the race.
        """
        now = datetime.utcnow()
        result = await self.db.execute(
            update(ClickEvent)
            .where(
                ClickEvent.id == click_id,
                ClickEvent.is_converted == False,
                ClickEvent.clicked_at >= self.lookback_cutoff(now),
            )
            .values(is_converted=True, converted_order_id=order_id, converted_at=now)
            .execution_options(synchronize_session=False)
        )
        converted = result.rowcount == 1
        if not converted:
            converted = await self._converted_by(click_id, order_id)
        if not converted:
            logger.info(f"Click {click_id} not converted for order={order_id} (taken or expired)")
        return converted

    async def _converted_by(self, click_id: str, order_id: str) -> bool:
        result = await self.db.execute(
            select(ClickEvent.id).where(
                ClickEvent.id == click_id,
                ClickEvent.converted_order_id == order_id,
            )
        )
        return result.scalar_one_or_none() is not None
