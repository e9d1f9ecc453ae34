"""Async clients for ad platform server-side conversion APIs.

Clients are built per invocation with the channel's credentials passed in
and an injected aiohttp session. Contact fields are hashed while the
request body is built, right before the POST, and never leave this module
in raw form.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import aiohttp

from app.config import settings
from app.services.exceptions import (
    CredentialExpiredError,
    ForwardRejectedError,
    TransientUpstreamError,
)
from app.services.hashing import hash_contact
from app.services.order_events import PurchaseEvent

META_GRAPH_URL = "https://graph.facebook.com"
TIKTOK_EVENTS_URL = "https://business-api.tiktok.com/open_api/v1.3/event/track/"

# Meta long-lived tokens default to 60 days when expires_in is missing
META_DEFAULT_TOKEN_TTL_SECONDS = 5184000
META_INVALID_TOKEN_CODE = 190


@dataclass
class RefreshedToken:
    access_token: str
    expires_at: datetime


def unix_time(value: datetime) -> int:
    """Epoch seconds; naive datetimes are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class PlatformClient:
    """Shared transport: bounded timeouts and retry of transient failures.

    429, 5xx, network errors and timeouts are retried with exponential
    backoff and jitter. Other 4xx responses are final.
    """

    RETRY_MULTIPLIER = 2.0
    RETRY_JITTER_MS = 250  # milliseconds

    def __init__(
        self,
        session: aiohttp.ClientSession,
        max_attempts: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.max_attempts = max_attempts or settings.forward_max_attempts
        self.timeout_seconds = timeout_seconds or settings.forward_timeout_seconds
        self.retry_base_delay = settings.forward_retry_base_delay
        self.retry_max_delay = settings.forward_retry_max_delay
        self.logger = logger or logging.getLogger(__name__)
        self.attempts = 0

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """Execute an HTTP call with retry logic.

        Raises:
            TransientUpstreamError: When retries are exhausted
            ForwardRejectedError: On non-retryable 4xx responses
        """
        send = getattr(self.session, method.lower())
        self.attempts = 0
        while True:
            self.attempts += 1
            attempt = self.attempts

            try:
                timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
                async with send(
                    url, json=json, params=params, headers=headers, timeout=timeout
                ) as resp:
                    response_text = await resp.text()

                    if resp.status == 429 or 500 <= resp.status < 600:
                        if attempt >= self.max_attempts:
                            raise TransientUpstreamError(
                                f"HTTP {resp.status} after {attempt} attempts: {response_text[:200]}"
                            )

                        delay = self._retry_after(resp) or self._calculate_backoff(attempt)
                        self.logger.warning(
                            f"HTTP {resp.status}, backoff={delay:.2f}s, attempt={attempt}"
                        )
                        await asyncio.sleep(delay)
                        continue

                    if 400 <= resp.status < 500:
                        self._raise_client_error(resp.status, response_text)

                    try:
                        return await resp.json(content_type=None)
                    except ValueError:
                        raise TransientUpstreamError(
                            f"HTTP {resp.status} with unreadable body: {response_text[:200]}"
                        )

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt >= self.max_attempts:
                    raise TransientUpstreamError(
                        f"Network error after {attempt} attempts: {e!r}"
                    )

                delay = self._calculate_backoff(attempt)
                self.logger.warning(
                    f"Network error: {e!r}, backoff={delay:.2f}s, attempt={attempt}"
                )
                await asyncio.sleep(delay)
                continue

    def _raise_client_error(self, status: int, body: str) -> None:
        raise ForwardRejectedError(status, body)

    def _retry_after(self, resp: aiohttp.ClientResponse) -> Optional[float]:
        value = resp.headers.get("Retry-After") if resp.headers else None
        if not value:
            return None
        try:
            return min(float(value), self.retry_max_delay)
        except (TypeError, ValueError):
            return None

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff with jitter.

        Args:
            attempt: Current attempt number (1-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(
            self.retry_base_delay * (self.RETRY_MULTIPLIER ** (attempt - 1)),
            self.retry_max_delay,
        )
        jitter = random.uniform(0, self.RETRY_JITTER_MS / 1000.0)
        return delay + jitter


class MetaConversionsClient(PlatformClient):
    """Meta Conversions API (server-side Purchase events)."""

    platform = "meta"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        pixel_id: str,
        access_token: str,
        test_event_code: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(session, **kwargs)
        self.pixel_id = pixel_id
        self._access_token = access_token
        self.test_event_code = test_event_code or settings.meta_test_event_code
        self.events_url = f"{META_GRAPH_URL}/{settings.meta_graph_version}/{pixel_id}/events"

    def build_event(self, purchase: PurchaseEvent) -> dict:
        user_data: dict[str, Any] = hash_contact(
            email=purchase.email,
            phone=purchase.phone,
            first_name=purchase.first_name,
            last_name=purchase.last_name,
        )
        if purchase.client_ip:
            user_data["client_ip_address"] = purchase.client_ip
        if purchase.user_agent:
            user_data["client_user_agent"] = purchase.user_agent
        if purchase.fbc:
            user_data["fbc"] = purchase.fbc
        if purchase.fbp:
            user_data["fbp"] = purchase.fbp

        custom_data: dict[str, Any] = {
            "value": purchase.value,
            "currency": purchase.currency,
            "content_type": "product",
            "num_items": purchase.quantity,
            "order_id": purchase.order_id,
        }
        if purchase.product_ids:
            custom_data["content_ids"] = purchase.product_ids
        if purchase.product_name:
            custom_data["content_name"] = purchase.product_name

        event: dict[str, Any] = {
            "event_name": "Purchase",
            "event_time": unix_time(purchase.event_time),
            "event_id": purchase.event_id,
            "action_source": "website",
            "user_data": user_data,
            "custom_data": custom_data,
        }
        if purchase.event_source_url:
            event["event_source_url"] = purchase.event_source_url
        return event

    async def send_purchase(self, purchase: PurchaseEvent) -> dict:
        payload: dict[str, Any] = {
            "data": [self.build_event(purchase)],
            "access_token": self._access_token,
        }
        if self.test_event_code:
            payload["test_event_code"] = self.test_event_code

        data = await self._request("POST", self.events_url, json=payload)
        self.logger.info(
            f"Meta accepted event_id={purchase.event_id} "
            f"events_received={data.get('events_received')} pixel={self.pixel_id}"
        )
        return data

    def _raise_client_error(self, status: int, body: str) -> None:
        if status == 401 or f'"code":{META_INVALID_TOKEN_CODE}' in body.replace(" ", ""):
            raise CredentialExpiredError(self.pixel_id, f"Meta rejected token (HTTP {status})")
        raise ForwardRejectedError(status, body)


class MetaTokenRefresher(PlatformClient):
    """Exchanges a long-lived Meta token for a fresh one (fb_exchange_token)."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(session, **kwargs)
        self.app_id = app_id or settings.meta_app_id
        self._app_secret = app_secret or settings.meta_app_secret

    @property
    def configured(self) -> bool:
        return bool(self.app_id and self._app_secret)

    async def refresh(self, current_token: str) -> RefreshedToken:
        """
        Raises:
            ForwardRejectedError: When Meta refuses the exchange (reconnect needed)
            TransientUpstreamError: When Meta is unreachable after retries
        """
        url = f"{META_GRAPH_URL}/{settings.meta_graph_version}/oauth/access_token"
        params = {
            "grant_type": "fb_exchange_token",
            "client_id": self.app_id,
            "client_secret": self._app_secret,
            "fb_exchange_token": current_token,
        }
        data = await self._request("GET", url, params=params)

        if data.get("error") or not data.get("access_token"):
            error = data.get("error") or {}
            raise ForwardRejectedError(400, str(error.get("message", "no access_token in response")))

        expires_in = int(data.get("expires_in") or META_DEFAULT_TOKEN_TTL_SECONDS)
        return RefreshedToken(
            access_token=data["access_token"],
            expires_at=datetime.utcnow() + timedelta(seconds=expires_in),
        )


class TikTokEventsClient(PlatformClient):
    """TikTok Events API (server-side CompletePayment events)."""

    platform = "tiktok"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        pixel_id: str,
        access_token: str,
        **kwargs: Any,
    ):
        super().__init__(session, **kwargs)
        self.pixel_id = pixel_id
        self._access_token = access_token

    def build_event(self, purchase: PurchaseEvent) -> dict:
        hashed = hash_contact(email=purchase.email, phone=purchase.phone)
        user: dict[str, Any] = {}
        if "em" in hashed:
            user["email"] = hashed["em"]
        if "ph" in hashed:
            user["phone"] = hashed["ph"]
        if purchase.ttclid:
            user["ttclid"] = purchase.ttclid
        if purchase.client_ip:
            user["ip"] = purchase.client_ip
        if purchase.user_agent:
            user["user_agent"] = purchase.user_agent

        properties: dict[str, Any] = {
            "currency": purchase.currency,
            "value": purchase.value,
            "order_id": purchase.order_id,
            "content_type": "product",
        }
        if purchase.product_ids:
            properties["contents"] = [
                {"content_id": product_id, "quantity": purchase.quantity}
                for product_id in purchase.product_ids
            ]

        return {
            "event": "CompletePayment",
            "event_time": unix_time(purchase.event_time),
            "event_id": purchase.event_id,
            "user": user,
            "properties": properties,
        }

    async def send_purchase(self, purchase: PurchaseEvent) -> dict:
        payload = {
            "event_source": "web",
            "event_source_id": self.pixel_id,
            "data": [self.build_event(purchase)],
        }
        headers = {"Access-Token": self._access_token}

        data = await self._request("POST", TIKTOK_EVENTS_URL, json=payload, headers=headers)

        # TikTok reports business errors with HTTP 200 and a non-zero code
        code = data.get("code", 0)
        if code != 0:
            raise ForwardRejectedError(200, f"TikTok code={code}: {data.get('message', '')}")

        self.logger.info(f"TikTok accepted event_id={purchase.event_id} pixel={self.pixel_id}")
        return data

    def _raise_client_error(self, status: int, body: str) -> None:
        if status == 401:
            raise CredentialExpiredError(self.pixel_id, "TikTok rejected token (HTTP 401)")
        raise ForwardRejectedError(status, body)
