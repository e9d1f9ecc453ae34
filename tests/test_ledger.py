"""Aggregate ledger: exactly-once credit per order line."""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import func, select

from app.models import Campaign, ClickEvent, Conversion, TrackingLink
from app.models.conversion import MatchMethod
from app.services.exceptions import LinkNotFoundError
from app.services.ledger import AggregateLedger
from app.services.order_events import CanonicalOrderEvent, MatchResult


def order(seller, order_id="20261019-0000001", line_id="0", amount=39000) -> CanonicalOrderEvent:
    return CanonicalOrderEvent(
        platform="cafe24",
        external_order_id=order_id,
        external_order_line_id=line_id,
        seller_id=seller.id,
        amount=amount,
        ordered_at=datetime.utcnow(),
    )


async def count_conversions(session) -> int:
    result = await session.execute(select(func.count(Conversion.id)))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_apply_credits_link_and_campaign(db, seller, campaign, make_link, make_click):
    link = await make_link(seller, campaign=campaign)
    click = await make_click(link)
    match = MatchResult(tracking_link_id=link.id, click_id=click.id, method=MatchMethod.CLICK_ID)

    applied = await AggregateLedger(db).apply(order(seller, amount=50000), match)
    await db.commit()

    assert applied.already_processed is False
    assert applied.conversion.tracking_link_id == link.id
    assert applied.conversion.click_id == click.id
    assert applied.conversion.match_method == "click_id"

    await db.refresh(link)
    await db.refresh(campaign)
    await db.refresh(click)
    assert link.total_conversions == 1
    assert link.total_revenue == 50000
    assert link.last_conversion_at is not None
    assert campaign.total_conversions == 1
    assert campaign.total_revenue == 50000
    assert click.is_converted is True


@pytest.mark.asyncio
async def test_redelivery_is_a_no_op(db, seller, make_link):
    link = await make_link(seller)
    match = MatchResult(tracking_link_id=link.id, method=MatchMethod.CAMPAIGN_LABEL)
    ledger = AggregateLedger(db)

    first = await ledger.apply(order(seller), match)
    await db.commit()
    second = await ledger.apply(order(seller), match)
    await db.commit()

    assert first.already_processed is False
    assert second.already_processed is True
    assert second.conversion.id == first.conversion.id
    assert await count_conversions(db) == 1

    await db.refresh(link)
    assert link.total_conversions == 1
    assert link.total_revenue == 39000


@pytest.mark.asyncio
async def test_order_lines_are_independent(db, seller, make_link):
    link = await make_link(seller)
    match = MatchResult(tracking_link_id=link.id, method=MatchMethod.CAMPAIGN_LABEL)
    ledger = AggregateLedger(db)

    await ledger.apply(order(seller, line_id="1", amount=10000), match)
    await ledger.apply(order(seller, line_id="2", amount=15000), match)
    await db.commit()

    await db.refresh(link)
    assert link.total_conversions == 2
    assert link.total_revenue == 25000


@pytest.mark.asyncio
async def test_organic_order_leaves_aggregates(db, seller, make_link):
    link = await make_link(seller)

    applied = await AggregateLedger(db).apply(order(seller), MatchResult())
    await db.commit()

    assert applied.conversion.is_organic
    assert applied.conversion.match_method == "organic"
    await db.refresh(link)
    assert link.total_conversions == 0
    assert link.total_revenue == 0


@pytest.mark.asyncio
async def test_concurrent_deliveries_credit_once(session_factory, seller, make_link):
    link = await make_link(seller)
    match = MatchResult(tracking_link_id=link.id, method=MatchMethod.CAMPAIGN_LABEL)
    event = order(seller, amount=70000)

    async def deliver() -> bool:
        async with session_factory() as session:
            applied = await AggregateLedger(session).apply(event, match)
            await session.commit()
            return applied.already_processed

    outcomes = await asyncio.gather(*(deliver() for _ in range(5)))

    assert sorted(outcomes) == [False, True, True, True, True]

    async with session_factory() as session:
        stored = await session.get(TrackingLink, link.id)
        assert stored.total_conversions == 1
        assert stored.total_revenue == 70000
        assert await count_conversions(session) == 1


@pytest.mark.asyncio
async def test_lost_click_keeps_link_credit(db, seller, make_link, make_click):
    link = await make_link(seller)
    click = await make_click(link, is_converted=True, converted_order_id="OTHER")
    match = MatchResult(tracking_link_id=link.id, click_id=click.id, method=MatchMethod.CLICK_ID)

    applied = await AggregateLedger(db).apply(order(seller), match)
    await db.commit()

    assert applied.conversion.tracking_link_id == link.id
    assert applied.conversion.click_id is None

    stored_click = await db.get(ClickEvent, click.id)
    assert stored_click.converted_order_id == "OTHER"
    await db.refresh(link)
    assert link.total_conversions == 1


@pytest.mark.asyncio
async def test_record_spend(db, seller, campaign, make_link):
    link = await make_link(seller, campaign=campaign)
    ledger = AggregateLedger(db)

    campaign_id = await ledger.record_spend(link.id, 30000)
    await ledger.record_spend(link.id, 20000)
    await db.commit()

    assert campaign_id == campaign.id
    await db.refresh(link)
    stored_campaign = await db.get(Campaign, campaign.id, populate_existing=True)
    assert link.total_ad_spend == 50000
    assert stored_campaign.total_ad_spend == 50000


@pytest.mark.asyncio
async def test_record_spend_unknown_link(db):
    with pytest.raises(LinkNotFoundError):
        await AggregateLedger(db).record_spend("TL-MISSING0", 1000)


@pytest.mark.asyncio
async def test_concurrent_orders_on_one_link_all_count(
    session_factory, seller, campaign, make_link
):
    link = await make_link(seller, campaign=campaign)
    match = MatchResult(tracking_link_id=link.id, method=MatchMethod.CAMPAIGN_LABEL)
    amounts = [10000, 20000, 30000, 40000, 50000, 60000]

    async def deliver(n: int, amount: int) -> None:
        async with session_factory() as session:
            await AggregateLedger(session).apply(
                order(seller, order_id=f"20261019-00002{n:02d}", amount=amount), match
            )
            await session.commit()

    await asyncio.gather(*(deliver(n, amount) for n, amount in enumerate(amounts)))

    async with session_factory() as session:
        stored = await session.get(TrackingLink, link.id)
        assert stored.total_conversions == len(amounts)
        assert stored.total_revenue == sum(amounts)
        stored_campaign = await session.get(Campaign, campaign.id)
        assert stored_campaign.total_conversions == len(amounts)
        assert stored_campaign.total_revenue == sum(amounts)


@pytest.mark.asyncio
async def test_order_lines_share_one_click(db, seller, make_link, make_click):
    link = await make_link(seller)
    click = await make_click(link)
    match = MatchResult(tracking_link_id=link.id, click_id=click.id, method=MatchMethod.CLICK_ID)
    ledger = AggregateLedger(db)

    first = await ledger.apply(order(seller, line_id="1", amount=10000), match)
    second = await ledger.apply(order(seller, line_id="2", amount=15000), match)
    await db.commit()

    assert first.conversion.click_id == click.id
    assert second.conversion.click_id == click.id
    await db.refresh(link)
    assert link.total_conversions == 2
    assert link.total_revenue == 25000
