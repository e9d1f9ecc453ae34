"""Outbound conversion forwarder - sends purchases to connected ad channels."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

import aiohttp
from redis.asyncio import Redis
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import dialect_insert
from app.models import AdChannel, ClickEvent, Conversion, ConversionForward
from app.models.ad_channel import AdPlatform, ChannelStatus
from app.models.conversion import ForwardStatus
from app.services.credentials import CredentialManager
from app.services.exceptions import (
    CredentialExpiredError,
    ForwardRejectedError,
    TransientUpstreamError,
)
from app.services.order_events import CanonicalOrderEvent, PurchaseEvent
from app.services.platforms import MetaConversionsClient, TikTokEventsClient

logger = logging.getLogger(__name__)

PLATFORM_CLIENTS = {
    AdPlatform.META.value: MetaConversionsClient,
    AdPlatform.TIKTOK.value: TikTokEventsClient,
}


@dataclass
class ForwardResult:
    """Outcome of one forward to one channel."""

    channel_id: object
    platform: str
    status: ForwardStatus
    event_id: str
    attempts: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ForwardStatus.SENT


def purchase_event_id(conversion: Conversion) -> str:
    """Stable per conversion so platforms dedupe retries and redeliveries."""
    return f"purchase_{conversion.platform}_{conversion.external_order_id}_{conversion.external_order_line_id}"


def build_purchase_event(
    conversion: Conversion,
    order: CanonicalOrderEvent,
    click: ClickEvent | None = None,
) -> PurchaseEvent:
    """Raw purchase for forwarding. Contact fields stay unhashed until the client builds its body."""
    return PurchaseEvent(
        event_id=purchase_event_id(conversion),
        order_id=conversion.external_order_id,
        value=conversion.amount,
        currency=conversion.currency,
        event_time=conversion.ordered_at,
        email=order.buyer.email,
        phone=order.buyer.phone,
        first_name=order.buyer.first_name,
        last_name=order.buyer.last_name,
        client_ip=click.client_ip if click else None,
        user_agent=click.user_agent if click else None,
        fbp=click.fbp if click else None,
        fbc=click.fbc if click else None,
        ttclid=click.ttclid if click else None,
        product_ids=[order.product_id] if order.product_id else [],
        product_name=order.product_name,
        quantity=order.quantity,
        event_source_url=click.referrer_url if click else None,
    )


class ConversionForwarder:
    """
    Forwards purchases per channel.

    Every failure is caught here and returned as a ForwardResult, so a
    channel outage can never undo or block accounting.
    """

    def __init__(
        self,
        db: AsyncSession,
        session: aiohttp.ClientSession,
        redis: Redis,
        credentials: CredentialManager | None = None,
    ):
        self.db = db
        self.session = session
        self.credentials = credentials or CredentialManager(db, session, redis)

    async def forward(self, channel: AdChannel, purchase: PurchaseEvent) -> ForwardResult:
        result = ForwardResult(
            channel_id=channel.id,
            platform=channel.platform,
            status=ForwardStatus.PENDING,
            event_id=purchase.event_id,
        )

        client_cls = PLATFORM_CLIENTS.get(channel.platform)
        if client_cls is None:
            result.status = ForwardStatus.REJECTED
            result.error = f"Unsupported platform: {channel.platform}"
            logger.warning(f"Channel {channel.id}: {result.error}")
            return result

        client = None
        try:
            access_token = await self.credentials.get_access_token(channel)
            client = client_cls(
                session=self.session,
                pixel_id=channel.pixel_id,
                access_token=access_token,
            )
            await client.send_purchase(purchase)
            result.status = ForwardStatus.SENT
        except CredentialExpiredError as e:
            result.status = ForwardStatus.CREDENTIAL_EXPIRED
            result.error = str(e)
            if channel.status == ChannelStatus.CONNECTED.value:
                await self.credentials.mark_expired(channel, str(e))
        except ForwardRejectedError as e:
            result.status = ForwardStatus.REJECTED
            result.error = str(e)
        except TransientUpstreamError as e:
            result.status = ForwardStatus.FAILED
            result.error = str(e)
        except Exception as e:
            # Lock store outages and unexpected client errors still get a forward row
            result.status = ForwardStatus.FAILED
            result.error = f"{type(e).__name__}: {e}"
        finally:
            if client is not None:
                result.attempts = client.attempts

        log = logger.info if result.ok else logger.warning
        log(
            f"Forward {purchase.event_id} to {channel.platform}:{channel.pixel_id} "
            f"status={result.status.value} attempts={result.attempts}"
            + (f" error={result.error[:200]}" if result.error else "")
        )
        return result

    async def record_outcome(self, conversion_id: uuid.UUID, result: ForwardResult) -> None:
        """Upsert the per-channel forward row and the channel's health fields."""
        now = datetime.utcnow()
        values = {
            "conversion_id": conversion_id,
            "ad_channel_id": result.channel_id,
            "platform": result.platform,
            "status": result.status.value,
            "attempts": result.attempts,
            "event_id": result.event_id,
            "last_error": result.error[:500] if result.error else None,
            "updated_at": now,
        }
        stmt = dialect_insert(self.db, ConversionForward).values(id=uuid.uuid4(), **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["conversion_id", "ad_channel_id"],
            set_={
                "status": stmt.excluded.status,
                "attempts": ConversionForward.attempts + stmt.excluded.attempts,
                "event_id": stmt.excluded.event_id,
                "last_error": stmt.excluded.last_error,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.db.execute(stmt)

        await self.db.execute(
            update(AdChannel)
            .where(AdChannel.id == result.channel_id)
            .values(
                last_forward_status=result.status.value,
                last_forward_error=values["last_error"],
                last_forward_at=now,
            )
            .execution_options(synchronize_session=False)
        )
