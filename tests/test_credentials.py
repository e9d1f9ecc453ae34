"""Token refresh-ahead and refresh coalescing."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.config import settings
from app.models.ad_channel import ChannelStatus
from app.services.credentials import CredentialManager
from app.services.exceptions import CredentialExpiredError, TransientUpstreamError


@pytest.fixture
def meta_app():
    with patch.object(settings, "meta_app_id", "app"), patch.object(
        settings, "meta_app_secret", "secret"
    ):
        yield


@pytest.fixture
def mock_lock():
    lock = AsyncMock()
    lock.acquire.return_value = True
    return lock


@pytest.fixture
def manager(db, mock_session, mock_redis):
    return CredentialManager(db, mock_session, mock_redis, refresh_ahead_days=7)


@pytest.mark.asyncio
async def test_fresh_token_is_used_as_is(manager, seller, make_channel, mock_session, meta_app):
    channel = await make_channel(seller, expires_in=timedelta(days=50))

    with patch("app.services.credentials.AsyncRedisLock") as lock_cls:
        token = await manager.get_access_token(channel)

    assert token == "EAAB_fake_token"
    lock_cls.assert_not_called()
    mock_session.get.assert_not_called()


@pytest.mark.asyncio
async def test_token_in_window_is_refreshed(
    manager, seller, make_channel, mock_session, mock_lock, make_response, meta_app
):
    channel = await make_channel(seller, expires_in=timedelta(days=3))
    mock_session.get.return_value = make_response(
        200, {"access_token": "EAAB_new", "expires_in": 5184000}
    )

    with patch("app.services.credentials.AsyncRedisLock", return_value=mock_lock) as lock_cls:
        token = await manager.get_access_token(channel)

    assert token == "EAAB_new"
    assert channel.access_token == "EAAB_new"
    assert channel.token_expires_at > datetime.utcnow() + timedelta(days=50)
    assert lock_cls.call_args.kwargs["name"] == f"linkledger:token_refresh:{channel.id}"
    mock_lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_rejected_refresh_marks_channel_expired(
    manager, seller, make_channel, mock_session, mock_lock, make_response, meta_app
):
    channel = await make_channel(seller, expires_in=timedelta(days=2))
    mock_session.get.return_value = make_response(
        400, text='{"error":{"message":"Session has expired","code":190}}'
    )

    with patch("app.services.credentials.AsyncRedisLock", return_value=mock_lock):
        with pytest.raises(CredentialExpiredError):
            await manager.get_access_token(channel)

    assert channel.status == ChannelStatus.TOKEN_EXPIRED.value
    assert "refresh rejected" in channel.last_forward_error
    mock_lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_transient_refresh_failure_uses_valid_token(
    manager, seller, make_channel, mock_session, mock_lock, make_response, meta_app
):
    channel = await make_channel(seller, expires_in=timedelta(days=2))
    mock_session.get.side_effect = [make_response(502) for _ in range(3)]

    with patch("app.services.credentials.AsyncRedisLock", return_value=mock_lock), patch(
        "app.services.platforms.asyncio.sleep", new_callable=AsyncMock
    ):
        token = await manager.get_access_token(channel)

    assert token == "EAAB_fake_token"
    assert channel.status == ChannelStatus.CONNECTED.value


@pytest.mark.asyncio
async def test_busy_lock_uses_last_refreshed_token(
    manager, seller, make_channel, mock_session, mock_lock, meta_app
):
    channel = await make_channel(seller, expires_in=timedelta(days=1))
    mock_lock.acquire.return_value = False

    with patch("app.services.credentials.AsyncRedisLock", return_value=mock_lock):
        token = await manager.get_access_token(channel)

    assert token == "EAAB_fake_token"
    mock_session.get.assert_not_called()
    mock_lock.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_busy_lock_with_expired_token_is_transient(
    manager, seller, make_channel, mock_lock, meta_app
):
    channel = await make_channel(seller, expires_in=timedelta(hours=-1))
    mock_lock.acquire.return_value = False

    with patch("app.services.credentials.AsyncRedisLock", return_value=mock_lock):
        with pytest.raises(TransientUpstreamError):
            await manager.get_access_token(channel)


@pytest.mark.asyncio
async def test_expired_token_without_refresh_support(manager, seller, make_channel):
    channel = await make_channel(seller, platform="tiktok", expires_in=timedelta(hours=-1))

    with pytest.raises(CredentialExpiredError):
        await manager.get_access_token(channel)

    assert channel.status == ChannelStatus.TOKEN_EXPIRED.value


@pytest.mark.asyncio
async def test_channel_needing_reconnect_is_refused(manager, seller, make_channel):
    channel = await make_channel(seller, status=ChannelStatus.TOKEN_EXPIRED.value)

    with pytest.raises(CredentialExpiredError):
        await manager.get_access_token(channel)
