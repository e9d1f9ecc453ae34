"""Notification collaborator for red-tier efficiency alerts.

Message delivery (chat, SMS) and its rate limiting live outside this
service. The default notifier hands the alert to a webhook, or only logs
it when no webhook is configured.
"""

import asyncio
import logging

import aiohttp

from app.config import settings
from app.models import Alert, Seller

logger = logging.getLogger(__name__)


class Notifier:
    """Base notifier: logs the request and reports it as accepted."""

    async def notify_red(self, alert: Alert, seller: Seller) -> bool:
        logger.info(
            f"Red alert for seller={seller.id} link={alert.tracking_link_id} "
            f"campaign={alert.campaign_id} ratio={alert.ratio}%"
        )
        return True


class WebhookNotifier(Notifier):
    """POSTs red-tier alerts as JSON to the notification webhook."""

    TIMEOUT_SECONDS = 5

    def __init__(
        self,
        session: aiohttp.ClientSession,
        webhook_url: str | None = None,
    ):
        self.session = session
        self.webhook_url = webhook_url or settings.notification_webhook_url

    async def notify_red(self, alert: Alert, seller: Seller) -> bool:
        if not self.webhook_url:
            return await super().notify_red(alert, seller)

        payload = {
            "alert_id": str(alert.id),
            "seller_id": str(seller.id),
            "phone": seller.notification_phone,
            "tracking_link_id": alert.tracking_link_id,
            "campaign_id": str(alert.campaign_id) if alert.campaign_id else None,
            "tier": alert.tier,
            "previous_tier": alert.previous_tier,
            "ratio": alert.ratio,
            "title": alert.title,
            "message": alert.message,
        }
        try:
            timeout = aiohttp.ClientTimeout(total=self.TIMEOUT_SECONDS)
            async with self.session.post(
                self.webhook_url, json=payload, timeout=timeout
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    logger.error(
                        f"Notification webhook HTTP {resp.status} for alert={alert.id}: {body[:200]}"
                    )
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Notification webhook failed for alert={alert.id}: {e}")
            return False

        logger.info(f"Red alert {alert.id} handed to notification webhook")
        return True
