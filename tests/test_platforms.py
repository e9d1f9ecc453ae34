"""Ad platform clients with a mocked aiohttp session."""

import hashlib
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from app.config import settings
from app.services.exceptions import (
    CredentialExpiredError,
    ForwardRejectedError,
    TransientUpstreamError,
)
from app.services.order_events import PurchaseEvent
from app.services.platforms import (
    MetaConversionsClient,
    MetaTokenRefresher,
    TikTokEventsClient,
)


@pytest.fixture
def purchase():
    return PurchaseEvent(
        event_id="purchase_cafe24_20261019-0000001_0",
        order_id="20261019-0000001",
        value=39000,
        currency="KRW",
        event_time=datetime(2026, 10, 19, 12, 0, 0),
        email=" Buyer@Example.com",
        phone="010-1234-5678",
        first_name="Minji",
        client_ip="203.0.113.5",
        user_agent="Mozilla/5.0",
        fbc="fb.1.1760875200000.IwAR0abc",
        fbp="fb.1.1760875100000.123456789",
        ttclid="E.C.P.abc",
        product_ids=["P-100"],
        product_name="Knit cardigan",
    )


@pytest.fixture
def meta_client(mock_session):
    return MetaConversionsClient(mock_session, pixel_id="1234567890", access_token="EAAB_token")


@pytest.mark.asyncio
async def test_meta_purchase_is_hashed(meta_client, mock_session, purchase, make_response):
    mock_session.post.return_value = make_response(200, {"events_received": 1})

    data = await meta_client.send_purchase(purchase)

    assert data == {"events_received": 1}
    assert meta_client.attempts == 1

    args, kwargs = mock_session.post.call_args
    assert args[0] == (
        f"https://graph.facebook.com/{settings.meta_graph_version}/1234567890/events"
    )
    payload = kwargs["json"]
    assert payload["access_token"] == "EAAB_token"

    event = payload["data"][0]
    assert event["event_name"] == "Purchase"
    assert event["event_id"] == purchase.event_id
    assert event["action_source"] == "website"
    assert event["event_time"] == int(
        datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc).timestamp()
    )

    user_data = event["user_data"]
    assert user_data["em"] == hashlib.sha256(b"buyer@example.com").hexdigest()
    assert user_data["ph"] == hashlib.sha256(b"01012345678").hexdigest()
    assert user_data["fn"] == hashlib.sha256(b"minji").hexdigest()
    assert user_data["fbc"] == purchase.fbc
    assert user_data["client_ip_address"] == "203.0.113.5"

    assert event["custom_data"]["value"] == 39000
    assert event["custom_data"]["currency"] == "KRW"
    assert event["custom_data"]["content_ids"] == ["P-100"]

    # Raw contact data never reaches the wire
    assert "Buyer@Example.com" not in str(payload)
    assert "010-1234-5678" not in str(payload)


@pytest.mark.asyncio
async def test_server_errors_are_retried(meta_client, mock_session, purchase, make_response):
    mock_session.post.side_effect = [make_response(503, text="unavailable") for _ in range(3)]

    with patch("app.services.platforms.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(TransientUpstreamError):
            await meta_client.send_purchase(purchase)

    assert mock_session.post.call_count == 3
    assert mock_sleep.await_count == 2
    assert meta_client.attempts == 3


@pytest.mark.asyncio
async def test_rate_limit_honors_retry_after(meta_client, mock_session, purchase, make_response):
    throttled = make_response(429, text="slow down")
    throttled.headers = {"Retry-After": "2"}
    mock_session.post.side_effect = [throttled, make_response(200, {"events_received": 1})]

    with patch("app.services.platforms.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        await meta_client.send_purchase(purchase)

    mock_sleep.assert_awaited_once_with(2.0)
    assert meta_client.attempts == 2


@pytest.mark.asyncio
async def test_network_errors_are_retried(meta_client, mock_session, purchase, make_response):
    mock_session.post.side_effect = [
        aiohttp.ClientConnectionError("connection reset"),
        make_response(200, {"events_received": 1}),
    ]

    with patch("app.services.platforms.asyncio.sleep", new_callable=AsyncMock):
        await meta_client.send_purchase(purchase)

    assert mock_session.post.call_count == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(meta_client, mock_session, purchase, make_response):
    mock_session.post.return_value = make_response(
        400, text='{"error":{"message":"Invalid parameter","code":100}}'
    )

    with patch("app.services.platforms.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(ForwardRejectedError) as exc_info:
            await meta_client.send_purchase(purchase)

    assert exc_info.value.status == 400
    assert mock_session.post.call_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body",
    [
        (401, "unauthorized"),
        (400, '{"error": {"message": "Error validating access token", "code": 190}}'),
    ],
)
async def test_meta_invalid_token_is_credential_error(
    meta_client, mock_session, purchase, make_response, status, body
):
    mock_session.post.return_value = make_response(status, text=body)

    with pytest.raises(CredentialExpiredError):
        await meta_client.send_purchase(purchase)


@pytest.mark.asyncio
async def test_tiktok_purchase(mock_session, purchase, make_response):
    mock_session.post.return_value = make_response(200, {"code": 0, "message": "OK"})
    client = TikTokEventsClient(mock_session, pixel_id="CABC123", access_token="tt_token")

    await client.send_purchase(purchase)

    args, kwargs = mock_session.post.call_args
    assert args[0] == "https://business-api.tiktok.com/open_api/v1.3/event/track/"
    assert kwargs["headers"] == {"Access-Token": "tt_token"}

    payload = kwargs["json"]
    assert payload["event_source_id"] == "CABC123"
    event = payload["data"][0]
    assert event["event"] == "CompletePayment"
    assert event["user"]["email"] == hashlib.sha256(b"buyer@example.com").hexdigest()
    assert event["user"]["ttclid"] == "E.C.P.abc"
    assert event["properties"]["contents"] == [{"content_id": "P-100", "quantity": 1}]


@pytest.mark.asyncio
async def test_tiktok_business_error(mock_session, purchase, make_response):
    mock_session.post.return_value = make_response(
        200, {"code": 40002, "message": "Invalid pixel"}
    )
    client = TikTokEventsClient(mock_session, pixel_id="CABC123", access_token="tt_token")

    with pytest.raises(ForwardRejectedError) as exc_info:
        await client.send_purchase(purchase)
    assert "40002" in str(exc_info.value)


@pytest.mark.asyncio
async def test_meta_token_refresh(mock_session, make_response):
    mock_session.get.return_value = make_response(
        200, {"access_token": "EAAB_new", "token_type": "bearer", "expires_in": 5184000}
    )
    refresher = MetaTokenRefresher(mock_session, app_id="app", app_secret="secret")

    refreshed = await refresher.refresh("EAAB_old")

    assert refreshed.access_token == "EAAB_new"
    assert (refreshed.expires_at - datetime.utcnow()).days in (59, 60)
    _, kwargs = mock_session.get.call_args
    assert kwargs["params"]["grant_type"] == "fb_exchange_token"
    assert kwargs["params"]["fb_exchange_token"] == "EAAB_old"


@pytest.mark.asyncio
async def test_meta_token_refresh_rejected(mock_session, make_response):
    mock_session.get.return_value = make_response(
        200, {"error": {"message": "Session has expired", "code": 190}}
    )
    refresher = MetaTokenRefresher(mock_session, app_id="app", app_secret="secret")

    with pytest.raises(ForwardRejectedError):
        await refresher.refresh("EAAB_old")


def test_refresher_needs_app_credentials():
    assert MetaTokenRefresher(MagicMock(), app_id="app", app_secret="secret").configured
