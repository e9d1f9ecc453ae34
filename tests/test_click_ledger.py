"""Click ledger: recording, dedup and the one-time converted flag."""

import asyncio
from datetime import timedelta

import pytest

from app.models import ClickEvent
from app.services.click_ledger import ClickIdentifiers, ClickLedger
from app.services.exceptions import ClickNotFoundError, LinkNotFoundError


@pytest.mark.asyncio
async def test_record_click_increments_link(db, seller, make_link):
    link = await make_link(seller)
    ledger = ClickLedger(db)

    click = await ledger.record_click(
        link.id, ClickIdentifiers(client_ip="203.0.113.5", user_agent="Mozilla/5.0")
    )
    await db.commit()

    assert click.id.startswith("sp_")
    assert len(click.id) == 3 + 32
    assert click.is_unique is True
    assert click.is_converted is False

    await db.refresh(link)
    assert link.total_clicks == 1
    assert link.last_click_at is not None


@pytest.mark.asyncio
async def test_unknown_link_raises(db):
    ledger = ClickLedger(db)

    with pytest.raises(LinkNotFoundError) as exc_info:
        await ledger.record_click("TL-NOPE0000")
    assert exc_info.value.link_code == "TL-NOPE0000"


@pytest.mark.asyncio
async def test_archived_link_does_not_record(db, seller, make_link):
    link = await make_link(seller, status="archived")

    with pytest.raises(LinkNotFoundError):
        await ClickLedger(db).record_click(link.id)


@pytest.mark.asyncio
async def test_repeat_click_in_window_is_not_unique(db, seller, make_link):
    link = await make_link(seller)
    ledger = ClickLedger(db)
    identifiers = ClickIdentifiers(client_ip="198.51.100.7", user_agent="Mozilla/5.0")

    first = await ledger.record_click(link.id, identifiers)
    second = await ledger.record_click(link.id, identifiers)
    other_browser = await ledger.record_click(
        link.id, ClickIdentifiers(client_ip="198.51.100.7", user_agent="Safari")
    )
    await db.commit()

    assert first.is_unique is True
    assert second.is_unique is False
    assert other_browser.is_unique is True

    # Every click is stored, only unique ones count
    await db.refresh(link)
    assert link.total_clicks == 2


@pytest.mark.asyncio
async def test_mark_converted_flips_once(db, seller, make_link, make_click):
    link = await make_link(seller)
    click = await make_click(link)
    ledger = ClickLedger(db)

    assert await ledger.mark_converted(click.id, "ORDER-1") is True
    assert await ledger.mark_converted(click.id, "ORDER-2") is False
    await db.commit()

    await db.refresh(click)
    assert click.is_converted is True
    assert click.converted_order_id == "ORDER-1"
    assert click.converted_at is not None


@pytest.mark.asyncio
async def test_expired_click_cannot_convert(db, seller, make_link, make_click):
    link = await make_link(seller)
    click = await make_click(link, age=timedelta(days=31))
    ledger = ClickLedger(db, lookback_days=30)

    assert await ledger.mark_converted(click.id, "ORDER-1") is False
    assert await ledger.get_matchable_click(click.id) is None


@pytest.mark.asyncio
async def test_get_matchable_click(db, seller, make_link, make_click):
    link = await make_link(seller)
    fresh = await make_click(link, age=timedelta(days=29))
    converted = await make_click(link, is_converted=True, converted_order_id="ORDER-9")
    ledger = ClickLedger(db, lookback_days=30)

    found = await ledger.get_matchable_click(fresh.id)
    assert isinstance(found, ClickEvent)
    assert found.id == fresh.id

    assert await ledger.get_matchable_click(converted.id) is None
    assert await ledger.get_matchable_click("sp_unknown") is None


@pytest.mark.asyncio
async def test_get_click(db, seller, make_link, make_click):
    link = await make_link(seller)
    click = await make_click(link, fbp="fb.1.1760875100000.42")
    ledger = ClickLedger(db)

    assert (await ledger.get_click(click.id)).fbp == "fb.1.1760875100000.42"
    with pytest.raises(ClickNotFoundError):
        await ledger.get_click("sp_unknown")


@pytest.mark.asyncio
async def test_click_stays_with_its_order_across_lines(db, seller, make_link, make_click):
    link = await make_link(seller)
    click = await make_click(link)
    ledger = ClickLedger(db)

    assert await ledger.mark_converted(click.id, "ORDER-1") is True
    await db.commit()
    await db.refresh(click)
    converted_at = click.converted_at

    assert (await ledger.get_matchable_click(click.id, "ORDER-1")).id == click.id
    assert await ledger.get_matchable_click(click.id, "ORDER-2") is None
    assert await ledger.get_matchable_click(click.id) is None

    assert await ledger.mark_converted(click.id, "ORDER-1") is True
    await db.commit()
    await db.refresh(click)
    assert click.converted_order_id == "ORDER-1"
    assert click.converted_at == converted_at


@pytest.mark.asyncio
async def test_concurrent_claims_convert_once(session_factory, seller, make_link, make_click):
    link = await make_link(seller)
    click = await make_click(link)

    async def claim(order_id: str) -> bool:
        async with session_factory() as session:
            converted = await ClickLedger(session).mark_converted(click.id, order_id)
            await session.commit()
            return converted

    outcomes = await asyncio.gather(*(claim(f"ORDER-{n}") for n in range(5)))

    assert outcomes.count(True) == 1
    async with session_factory() as session:
        stored = await session.get(ClickEvent, click.id)
        assert stored.converted_order_id == f"ORDER-{outcomes.index(True)}"
