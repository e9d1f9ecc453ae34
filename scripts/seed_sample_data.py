"""Seed script to populate dev database with sample data."""

import asyncio
import secrets
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select

from app.database import Base, engine, session_scope
from app.models import AdChannel, Campaign, ClickEvent, Seller, TrackingLink
from app.models.ad_channel import AdPlatform
from app.models.tracking import generate_link_code
from app.services.order_events import CanonicalOrderEvent
from app.services.reconciliation import ReconciliationService


async def seed_database():
    """Seed the database with sample data for development."""

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_scope() as db:
        # Check if we already have data
        existing = await db.execute(select(Seller).limit(1))
        if existing.scalar_one_or_none():
            print("Database already has data. Skipping seed.")
            return

        print("Seeding database with sample data...")

        seller = Seller(
            id=uuid.uuid4(),
            name="Demo Store",
            notification_phone="01012345678",
        )
        db.add(seller)
        await db.flush()
        print(f"Created seller: {seller.name} (ID: {seller.id})")

        campaign = Campaign(
            id=uuid.uuid4(),
            seller_id=seller.id,
            name="Autumn Sale",
        )
        db.add(campaign)

        channel = AdChannel(
            seller_id=seller.id,
            platform=AdPlatform.META.value,
            pixel_id="000000000000000",
            access_token=f"dev_{secrets.token_hex(8)}",
            token_expires_at=datetime.utcnow() + timedelta(days=60),
        )
        db.add(channel)
        await db.flush()

        labels = ["autumn_ig_reel", "autumn_story", "autumn_feed"]
        links = []
        for label in labels:
            link = TrackingLink(
                id=generate_link_code(),
                seller_id=seller.id,
                campaign_id=campaign.id,
                ad_channel_id=channel.id,
                destination_url="https://shop.example.com/products/knit-cardigan",
                utm_source="instagram",
                utm_medium="paid_social",
                utm_campaign=label,
                total_clicks=0,
                total_conversions=0,
                total_revenue=0,
                total_ad_spend=0,
            )
            db.add(link)
            links.append(link)
        await db.flush()
        print(f"Created {len(links)} tracking links")

        now = datetime.utcnow()
        clicks = []
        for i in range(30):
            link = links[i % len(links)]
            click = ClickEvent(
                tracking_link_id=link.id,
                clicked_at=now - timedelta(hours=i * 6),
                client_ip=f"203.0.113.{i + 1}",
                user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)",
            )
            db.add(click)
            clicks.append(click)
            link.total_clicks += 1
        await db.commit()
        print(f"Created {len(clicks)} sample clicks")

        # Spend and orders go through the real pipeline so aggregates and
        # alerts are produced the same way production produces them
        service = ReconciliationService(db)
        for link in links:
            await service.record_spend(link.id, 100_000)

        for i, click in enumerate(clicks[:8]):
            event = CanonicalOrderEvent(
                platform="cafe24",
                external_order_id=f"20261019-{i:07d}",
                seller_id=seller.id,
                amount=39_000 + i * 5_000,
                ordered_at=click.clicked_at + timedelta(minutes=20),
                click_id=click.id,
            )
            await service.process_order(event)
        print("Recorded spend and 8 click-attributed orders")

        print("\nDatabase seeded successfully!")
        print(f"\nUse these IDs for testing:")
        print(f"  Seller ID:   {seller.id}")
        print(f"  Campaign ID: {campaign.id}")
        print(f"  Link codes:  {', '.join(link.id for link in links)}")


if __name__ == "__main__":
    asyncio.run(seed_database())
