"""Ad channel credential freshness with per-channel refresh coalescing."""

import logging
from datetime import datetime, timedelta

import aiohttp
from redis.asyncio import Redis
from redis.asyncio.lock import Lock as AsyncRedisLock
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models import AdChannel
from app.models.ad_channel import AdPlatform, ChannelStatus
from app.services.exceptions import (
    CredentialExpiredError,
    ForwardRejectedError,
    TransientUpstreamError,
)
from app.services.platforms import MetaTokenRefresher

logger = logging.getLogger(__name__)


class CredentialManager:
    """
    Hands out a usable access token for a channel.

    Tokens expiring within the refresh-ahead window are refreshed first.
    Concurrent forwarders for the same channel share one refresh: the
    holder of the channel's Redis lock refreshes, the others re-read the
    channel and use whatever token the last successful refresh stored.
    """

    LOCK_TTL_SECONDS = 30

    def __init__(
        self,
        db: AsyncSession,
        session: aiohttp.ClientSession,
        redis: Redis,
        refresh_ahead_days: int | None = None,
        lock_timeout_seconds: float | None = None,
    ):
        self.db = db
        self.session = session
        self.redis = redis
        self.refresh_ahead = timedelta(
            days=refresh_ahead_days if refresh_ahead_days is not None
            else settings.token_refresh_ahead_days
        )
        self.lock_timeout_seconds = (
            lock_timeout_seconds or settings.refresh_lock_timeout_seconds
        )

    def needs_refresh(self, channel: AdChannel, now: datetime | None = None) -> bool:
        if channel.token_expires_at is None:
            return False
        return channel.token_expires_at <= (now or datetime.utcnow()) + self.refresh_ahead

    @staticmethod
    def is_expired(channel: AdChannel, now: datetime | None = None) -> bool:
        if channel.token_expires_at is None:
            return False
        return channel.token_expires_at <= (now or datetime.utcnow())

    def _refresher_for(self, channel: AdChannel) -> MetaTokenRefresher | None:
        if channel.platform == AdPlatform.META.value:
            refresher = MetaTokenRefresher(self.session)
            if refresher.configured:
                return refresher
        return None

    async def get_access_token(self, channel: AdChannel) -> str:
        """
        Return a token that is safe to use for this forward.

        Raises:
            CredentialExpiredError: Channel needs reconnection
            TransientUpstreamError: Refresh in progress elsewhere and no valid token yet
        """
        if channel.status != ChannelStatus.CONNECTED.value:
            raise CredentialExpiredError(channel.id, f"channel is {channel.status}")

        if not self.needs_refresh(channel):
            return channel.access_token

        refresher = self._refresher_for(channel)
        if refresher is None:
            if self.is_expired(channel):
                await self.mark_expired(channel, "token expired and platform cannot refresh")
                raise CredentialExpiredError(channel.id, "token expired")
            return channel.access_token

        lock = AsyncRedisLock(
            self.redis,
            name=f"linkledger:token_refresh:{channel.id}",
            timeout=self.LOCK_TTL_SECONDS,
            blocking_timeout=self.lock_timeout_seconds,
        )
        acquired = await lock.acquire()
        if not acquired:
            return await self._use_last_refreshed(channel)

        try:
            await self._reload(channel)
            if channel.status != ChannelStatus.CONNECTED.value:
                raise CredentialExpiredError(channel.id, f"channel is {channel.status}")
            if not self.needs_refresh(channel):
                logger.info(f"Channel {channel.id} already refreshed by another worker")
                return channel.access_token

            return await self._refresh(channel, refresher)
        finally:
            try:
                await lock.release()
            except Exception as e:
                logger.error(f"Failed to release refresh lock for channel={channel.id}: {e}")

    async def _refresh(self, channel: AdChannel, refresher: MetaTokenRefresher) -> str:
        try:
            refreshed = await refresher.refresh(channel.access_token)
        except ForwardRejectedError as e:
            await self.mark_expired(channel, f"refresh rejected: {e}")
            raise CredentialExpiredError(channel.id, "refresh rejected, reconnect required")
        except TransientUpstreamError as e:
            if not self.is_expired(channel):
                logger.warning(
                    f"Token refresh for channel={channel.id} failed transiently, "
                    f"using current token until {channel.token_expires_at}: {e}"
                )
                return channel.access_token
            raise

        await self.db.execute(
            update(AdChannel)
            .where(AdChannel.id == channel.id)
            .values(
                access_token=refreshed.access_token,
                token_expires_at=refreshed.expires_at,
                status=ChannelStatus.CONNECTED.value,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        # Commit before the lock is released so waiting workers see the new token
        await self.db.commit()
        await self._reload(channel)
        logger.info(f"Refreshed token for channel={channel.id}, expires {refreshed.expires_at}")
        return channel.access_token

    async def _use_last_refreshed(self, channel: AdChannel) -> str:
        await self._reload(channel)
        if channel.status != ChannelStatus.CONNECTED.value:
            raise CredentialExpiredError(channel.id, f"channel is {channel.status}")
        if self.is_expired(channel):
            raise TransientUpstreamError(
                f"Token refresh for channel={channel.id} in progress elsewhere"
            )
        logger.info(f"Refresh lock busy for channel={channel.id}, using last refreshed token")
        return channel.access_token

    async def _reload(self, channel: AdChannel) -> None:
        await self.db.refresh(channel)

    async def mark_expired(self, channel: AdChannel, reason: str) -> None:
        await self.db.execute(
            update(AdChannel)
            .where(AdChannel.id == channel.id)
            .values(
                status=ChannelStatus.TOKEN_EXPIRED.value,
                last_forward_error=reason[:500],
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self._reload(channel)
        logger.warning(f"Channel {channel.id} marked token_expired: {reason}")
