# tests/services/test_dispatch_intake.py
from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.models import AuditEvent, Dispatch, Order, ScanRecord
from orderflow.models.enums import ErrorCode, ErrorKind, MatchType
from orderflow.services.dispatch_intake_service import intake, intake_bulk
from orderflow.services.order_locator import locate

pytestmark = pytest.mark.grp_scan


@pytest.mark.asyncio
async def test_tracking_intake_dispatches_order(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", status="booked", tracking_id="PX123456", courier="postex")

    r = await intake(session, entry=" PX123456 ", entry_type="tracking_id", user_id="op-1")

    assert r.success, r.message
    assert r.order_id == order.id
    assert r.match_type == MatchType.TRACKING_ID
    assert r.courier == "postex"

    await session.refresh(order)
    assert order.status == "dispatched"
    assert order.dispatched_at is not None
    assert order.tags[-1] == "ERP - Dispatched"

    d = (await session.execute(select(Dispatch).where(Dispatch.order_id == order.id))).scalars().one()
    assert d.dispatched_by == "op-1"

    scans = (await session.execute(select(ScanRecord))).scalars().all()
    assert [s.status for s in scans] == ["success"]
    events = (await session.execute(select(AuditEvent.meta))).scalars().all()
    assert events[0]["event"] == "DISPATCHED"


@pytest.mark.asyncio
async def test_second_intake_is_already_dispatched(session: AsyncSession, make_order):
    await make_order("SHOP-1001", tracking_id="PX123456", courier="postex")

    first = await intake(session, entry="PX123456")
    second = await intake(session, entry="PX123456")

    assert first.success
    assert not second.success
    assert second.error_code == ErrorCode.ALREADY_DISPATCHED
    assert second.error_kind == ErrorKind.CONFLICT
    assert await session.scalar(select(func.count(Dispatch.id))) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicate_scans_create_one_dispatch(async_session_maker, make_order):
    await make_order("SHOP-1001", tracking_id="PX123456", courier="postex")

    async def one():
        async with async_session_maker() as s:
            return await intake(s, entry="PX123456", user_id="op-1")

    results = await asyncio.gather(one(), one())

    assert sorted(r.success for r in results) == [False, True]
    loser = next(r for r in results if not r.success)
    assert loser.error_code == ErrorCode.ALREADY_DISPATCHED

    async with async_session_maker() as s:
        assert await s.scalar(select(func.count(Dispatch.id))) == 1


@pytest.mark.asyncio
async def test_invalid_and_not_found(session: AsyncSession):
    bad = await intake(session, entry="1.23E+11")
    assert bad.error_code == ErrorCode.INVALID_FORMAT
    assert bad.suggestion

    missing = await intake(session, entry="NOPE-99999")
    assert missing.error_code == ErrorCode.NOT_FOUND
    assert missing.error_kind == ErrorKind.LOOKUP

    # 失败同样落扫描历史
    assert await session.scalar(select(func.count(ScanRecord.id))) == 2


@pytest.mark.asyncio
async def test_no_courier_unless_batch_courier_selected(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", tracking_id="TRK55555")

    r = await intake(session, entry="TRK55555")
    assert r.error_code == ErrorCode.NO_COURIER

    r = await intake(session, entry="TRK55555", courier_code="tcs")
    assert r.success
    await session.refresh(order)
    assert order.courier == "tcs"


@pytest.mark.asyncio
async def test_order_courier_wins_over_batch_courier(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", tracking_id="TRK55555", courier="leopard")

    r = await intake(session, entry="TRK55555", courier_code="tcs")

    assert r.success
    await session.refresh(order)
    assert order.courier == "leopard"


@pytest.mark.asyncio
async def test_order_number_lookup_priority(session: AsyncSession, make_order):
    await make_order("SHOP-1001", external_order_number="77001")
    await make_order("SHOP-10015")
    await make_order("SHOP-2002", external_order_number="1001")

    exact = await locate(session, "SHOP-1001", "order_number")
    assert exact.match_type == MatchType.ORDER_NUMBER

    prefixed = await locate(session, "1001", "order_number")
    assert prefixed.order.order_number == "SHOP-1001"
    assert prefixed.match_type == MatchType.PREFIXED

    longer = await locate(session, "10015", "order_number")
    assert longer.order.order_number == "SHOP-10015"
    assert longer.match_type == MatchType.PREFIXED

    partial = await locate(session, "1001", "order_number", prefix="NOPE-")
    assert partial.order.order_number == "SHOP-1001"
    assert partial.match_type == MatchType.PARTIAL

    alternate = await locate(session, "77001", "order_number")
    assert alternate.order.order_number == "SHOP-1001"
    assert alternate.match_type == MatchType.ALTERNATE_ID

    assert await locate(session, "SHOP-1001", "tracking_id") is None


@pytest.mark.asyncio
async def test_order_number_intake_overwrites_nothing_and_dispatches(session: AsyncSession, make_order):
    order = await make_order("SHOP-30031", tracking_id="PX777777", courier="postex")

    r = await intake(session, entry="30031", entry_type="order_number")

    assert r.success
    assert r.match_type == MatchType.PREFIXED
    await session.refresh(order)
    assert order.tracking_id == "PX777777"


@pytest.mark.asyncio
async def test_bulk_dedupes_and_continues_past_failures(session: AsyncSession, make_order):
    await make_order("SHOP-1001", tracking_id="TRKAAAAA", courier="postex")
    await make_order("SHOP-1002", tracking_id="TRKBBBBB", courier="postex")

    bulk = await intake_bulk(
        session,
        entries=["TRKAAAAA", "TRKAAAAA", "", "TRKBBBBB", "MISSING01"],
        user_id="op-1",
    )

    assert bulk.duplicates_removed == 1
    assert bulk.processed == 3
    assert bulk.success_count == 2
    assert bulk.error_count == 1
    assert bulk.errors[0].entry == "MISSING01"
    assert bulk.errors[0].error_code == ErrorCode.NOT_FOUND

    statuses = (await session.execute(select(Order.status).order_by(Order.id))).scalars().all()
    assert statuses == ["dispatched", "dispatched"]


@pytest.mark.asyncio
async def test_cancelled_order_is_rejected(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", status="cancelled", tracking_id="PX123456", courier="postex")

    r = await intake(session, entry="PX123456", user_id="op-1")

    assert not r.success
    assert r.error_code == ErrorCode.ORDER_CANCELLED
    assert r.error_kind == ErrorKind.CONFLICT
    assert r.suggestion
    await session.refresh(order)
    assert order.status == "cancelled"
    assert await session.scalar(select(func.count(Dispatch.id))) == 0


@pytest.mark.asyncio
async def test_terminal_order_dispatch_records_prior_status(session: AsyncSession, make_order, caplog):
    await make_order("SHOP-1001", status="delivered", tracking_id="PX123456", courier="postex")

    with caplog.at_level("WARNING", logger="orderflow.dispatch"):
        r = await intake(session, entry="PX123456", user_id="op-1")

    assert r.success
    assert r.status_before == "delivered"
    assert "terminal status delivered" in caplog.text
    audit = (
        await session.execute(select(AuditEvent).where(AuditEvent.category == "DISPATCH"))
    ).scalars().one()
    assert audit.meta["status_before"] == "delivered"
