# tests/services/test_return_and_status.py
from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.models import Dispatch, Order, ReturnRecord
from orderflow.models.enums import ErrorCode, MatchType
from orderflow.services.dispatch_intake_service import intake
from orderflow.services.order_status_service import apply_courier_event, cancel_dispatch, change_status
from orderflow.services.return_intake_service import receive_return, receive_returns_bulk

pytestmark = pytest.mark.grp_scan


@pytest.mark.asyncio
async def test_return_scan_receives_then_rejects_repeat(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", status="delivered", tracking_id="PX123456", courier="postex")

    first = await receive_return(session, entry="PX123456", user_id="wh-1")
    second = await receive_return(session, entry="PX123456", user_id="wh-1")

    assert first.success
    assert first.return_status == "received"
    assert first.match_type == MatchType.TRACKING_ID
    assert not second.success
    assert second.error_code == ErrorCode.ALREADY_RECEIVED

    await session.refresh(order)
    assert order.status == "returned"
    assert order.returned_at is not None
    assert "ERP - Returned" in order.tags

    ret = (await session.execute(select(ReturnRecord))).scalars().one()
    assert ret.received_by == "wh-1"
    assert ret.received_at is not None


@pytest.mark.asyncio
async def test_return_scan_by_order_number(session: AsyncSession, make_order):
    await make_order("SHOP-45678", status="dispatched", tracking_id="TRK999999")

    r = await receive_return(session, entry="45678")

    assert r.success
    assert r.match_type == MatchType.PREFIXED


@pytest.mark.asyncio
async def test_courier_reported_return_is_received_by_scan(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", status="dispatched", tracking_id="PX123456", courier="postex")

    ev = await apply_courier_event(session, tracking_id="PX123456", event="returned")
    assert ev.success and ev.status == "returned"
    ret = (await session.execute(select(ReturnRecord))).scalars().one()
    assert ret.status == "in_transit"

    r = await receive_return(session, entry="PX123456")
    assert r.success
    await session.refresh(ret)
    assert ret.status == "received"
    assert await session.scalar(select(func.count(ReturnRecord.id))) == 1
    await session.refresh(order)
    assert order.status == "returned"


@pytest.mark.asyncio
async def test_bulk_returns(session: AsyncSession, make_order):
    await make_order("SHOP-1001", status="delivered", tracking_id="RTNAAAAA")
    bulk = await receive_returns_bulk(session, entries=["RTNAAAAA", "RTNAAAAA", "RTNZZZZZ"])

    assert bulk.duplicates_removed == 1
    assert bulk.success_count == 1
    assert bulk.errors[0].error_code == ErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_courier_delivered_ignored_for_terminal(session: AsyncSession, make_order):
    await make_order("SHOP-1001", status="cancelled", tracking_id="PX123456")

    r = await apply_courier_event(session, tracking_id="PX123456", event="delivered")

    assert r.success
    assert r.status == "cancelled"


@pytest.mark.asyncio
async def test_manual_status_change_stamps_timestamp(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", status="booked")

    r = await change_status(session, order_id=order.id, status="delivered", user_id="admin", reason="phone confirm")

    assert r.success
    assert r.previous_status == "booked"
    await session.refresh(order)
    assert order.status == "delivered"
    assert order.delivered_at is not None

    missing = await change_status(session, order_id=99999, status="delivered")
    assert missing.error_code == ErrorCode.ORDER_NOT_FOUND


@pytest.mark.asyncio
async def test_cancel_dispatch_resets_order(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", status="booked", tracking_id="PX123456", courier="postex")
    assert (await intake(session, entry="PX123456")).success

    r = await cancel_dispatch(session, order_id=order.id, user_id="admin")

    assert r.success
    assert r.previous_status == "dispatched"
    await session.refresh(order)
    assert order.status == "pending"
    assert order.tracking_id is None
    assert order.courier is None
    assert order.dispatched_at is None
    assert await session.scalar(select(func.count(Dispatch.id))) == 0

    again = await cancel_dispatch(session, order_id=order.id)
    assert not again.success
    assert again.error_code == ErrorCode.NOT_FOUND
