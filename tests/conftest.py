"""Shared pytest fixtures: a file-backed SQLite database per test and sample rows."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.models import AdChannel, Campaign, ClickEvent, Seller, TrackingLink
from app.models.tracking import generate_link_code


@pytest_asyncio.fixture
async def engine(tmp_path):
    """SQLite engine where every transaction takes the write lock up front.

    Concurrent sessions therefore serialize the way row locks would on
    PostgreSQL instead of failing on lock upgrades.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seller(db):
    seller = Seller(id=uuid.uuid4(), name="Test Store", notification_phone="01000000000")
    db.add(seller)
    await db.commit()
    return seller


@pytest_asyncio.fixture
async def other_seller(db):
    seller = Seller(id=uuid.uuid4(), name="Other Store")
    db.add(seller)
    await db.commit()
    return seller


@pytest_asyncio.fixture
async def campaign(db, seller):
    campaign = Campaign(id=uuid.uuid4(), seller_id=seller.id, name="Autumn Sale")
    db.add(campaign)
    await db.commit()
    return campaign


@pytest.fixture
def make_link(db):
    """Factory for tracking links."""

    async def _make_link(
        seller,
        utm_campaign="autumn_reel",
        campaign=None,
        total_ad_spend=0,
        status="active",
        **fields,
    ) -> TrackingLink:
        values = {
            "id": generate_link_code(),
            "seller_id": seller.id,
            "campaign_id": campaign.id if campaign else None,
            "destination_url": "https://shop.example.com/products/cardigan?ref=home",
            "utm_source": "instagram",
            "utm_medium": "paid_social",
            "utm_campaign": utm_campaign,
            "total_clicks": 0,
            "total_conversions": 0,
            "total_revenue": 0,
            "total_ad_spend": total_ad_spend,
            "status": status,
        }
        values.update(fields)
        link = TrackingLink(**values)
        db.add(link)
        await db.commit()
        return link

    return _make_link


@pytest.fixture
def make_click(db):
    """Factory for clicks, optionally backdated."""

    async def _make_click(link, age=timedelta(0), **fields) -> ClickEvent:
        click = ClickEvent(
            tracking_link_id=link.id,
            clicked_at=datetime.utcnow() - age,
            **fields,
        )
        db.add(click)
        await db.commit()
        return click

    return _make_click


@pytest.fixture
def make_channel(db):
    """Factory for ad channels."""

    async def _make_channel(
        seller,
        platform="meta",
        expires_in=timedelta(days=50),
        status="connected",
    ) -> AdChannel:
        channel = AdChannel(
            id=uuid.uuid4(),
            seller_id=seller.id,
            platform=platform,
            pixel_id=f"pixel_{uuid.uuid4().hex[:8]}",
            access_token="EAAB_fake_token",
            token_expires_at=datetime.utcnow() + expires_in if expires_in is not None else None,
            status=status,
        )
        db.add(channel)
        await db.commit()
        return channel

    return _make_channel


@pytest.fixture
def mock_session():
    """Mock aiohttp ClientSession."""
    return MagicMock()


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    return AsyncMock()


@pytest.fixture
def make_response():
    """Factory for mock aiohttp responses usable as async context managers."""

    def _make_response(status=200, json_data=None, text=""):
        response = AsyncMock()
        response.status = status
        response.headers = {}
        response.text.return_value = text
        response.json.return_value = json_data if json_data is not None else {}
        response.__aenter__.return_value = response
        return response

    return _make_response
