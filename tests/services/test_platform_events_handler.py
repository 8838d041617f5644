# tests/services/test_platform_events_handler.py
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.models import AuditEvent, Dispatch, Order, SyncQueueEntry
from orderflow.services.platform_events_handler import handle_order_event
from orderflow.services.platform_events_types import OrderPayload, PlatformOrderEvent, WebhookTopic

pytestmark = pytest.mark.grp_events


def _event(topic: str = "orders/create", **order) -> PlatformOrderEvent:
    base = {
        "id": 7001,
        "name": "#1001",
        "total_price": "2500.00",
        "email": "ayesha@example.com",
        "customer": {"first_name": "Ayesha", "last_name": "Khan", "phone": "03001234567"},
        "shipping_address": {"name": "Ayesha Khan", "address1": "House 12", "city": "Karachi"},
        "tags": "VIP",
    }
    base.update(order)
    return PlatformOrderEvent(topic=WebhookTopic(topic), order=OrderPayload(**base))


@pytest.mark.asyncio
async def test_create_event_inserts_pending_order(session: AsyncSession):
    outcome = await handle_order_event(session, _event())

    assert outcome.created
    order = await session.get(Order, outcome.order_id)
    assert order.order_number == "SHOP-1001"
    assert order.external_order_id == "7001"
    assert order.status == "pending"
    assert order.customer_name == "Ayesha Khan"
    assert order.total_amount == Decimal("2500.00")
    assert order.tags == ["VIP", "ERP - Pending"]

    audit = (await session.execute(select(AuditEvent).where(AuditEvent.category == "WEBHOOK"))).scalars().all()
    assert len(audit) == 1
    assert audit[0].meta["event"] == "orders/create"


@pytest.mark.asyncio
async def test_redelivery_is_idempotent(session: AsyncSession):
    ev = _event("orders/updated", fulfillments=[{"status": "success", "tracking_number": "PX111", "tracking_company": "PostEx"}])
    first = await handle_order_event(session, ev)
    second = await handle_order_event(session, ev)

    assert first.created and not second.created
    assert first.order_id == second.order_id
    assert second.changed == []

    order = await session.get(Order, first.order_id)
    assert order.status == "booked"
    assert order.tracking_id == "PX111"
    assert order.courier == "postex"

    n_orders = await session.scalar(select(func.count(Order.id)))
    assert n_orders == 1
    n_sync = await session.scalar(select(func.count(SyncQueueEntry.id)))
    assert n_sync == 1


@pytest.mark.asyncio
async def test_existing_order_matched_by_prefixed_number(session: AsyncSession, make_order):
    existing = await make_order("SHOP-1001", status="dispatched", tracking_id="PX111", courier="postex")

    outcome = await handle_order_event(
        session,
        _event(
            "orders/fulfilled",
            fulfillment_status="fulfilled",
            fulfillments=[{"status": "success", "tracking_number": "PX111", "tracking_company": "PostEx"}],
        ),
    )

    assert not outcome.created
    assert outcome.order_id == existing.id
    order = await session.get(Order, existing.id)
    await session.refresh(order)
    assert order.status == "dispatched"
    assert order.external_order_id == "7001"
    assert "Shopify - Fulfilled" in order.tags


@pytest.mark.asyncio
async def test_cancel_event_cancels_but_not_after_delivery(session: AsyncSession, make_order):
    open_order = await make_order("SHOP-2001", status="booked", external_order_id="8001")
    done_order = await make_order("SHOP-2002", status="delivered", external_order_id="8002")

    r1 = await handle_order_event(session, _event("orders/cancelled", id=8001, name="#2001"))
    r2 = await handle_order_event(session, _event("orders/cancelled", id=8002, name="#2002"))

    assert r1.status == "cancelled"
    o1 = await session.get(Order, open_order.id)
    assert o1.cancelled_at is not None

    assert r2.status == "delivered"
    o2 = await session.get(Order, done_order.id)
    assert o2.cancelled_at is None


@pytest.mark.asyncio
async def test_platform_already_showing_status_tag_skips_sync(session: AsyncSession):
    outcome = await handle_order_event(session, _event(tags="VIP, ERP - Pending"))

    order = await session.get(Order, outcome.order_id)
    assert order.pushed_status_tag == "ERP - Pending"
    n_sync = await session.scalar(select(func.count(SyncQueueEntry.id)))
    assert n_sync == 0


@pytest.mark.asyncio
async def test_concurrent_deliveries_of_new_order_are_serialized(async_session_maker):
    ev = _event("orders/updated", fulfillments=[{"status": "success", "tracking_number": "XYZ1", "tracking_company": "PostEx"}])

    async def deliver():
        async with async_session_maker() as s:
            return await handle_order_event(s, ev)

    outcomes = await asyncio.gather(deliver(), deliver(), deliver())

    assert [o.created for o in outcomes].count(True) == 1
    assert len({o.order_id for o in outcomes}) == 1
    first = next(o for o in outcomes if o.created)
    assert first.changed
    assert [o.changed for o in outcomes if not o.created] == [[], []]

    async with async_session_maker() as s:
        assert await s.scalar(select(func.count(Order.id))) == 1
        order = await s.get(Order, first.order_id)
        assert (order.status, order.tracking_id, order.courier) == ("booked", "XYZ1", "postex")
        assert order.tags.count("ERP - Booked") == 1
        assert await s.scalar(select(func.count(SyncQueueEntry.id))) == 1


@pytest.mark.asyncio
async def test_rebooking_dispatched_order_updates_active_dispatch(session: AsyncSession, make_order):
    order = await make_order("SHOP-1001", status="dispatched", tracking_id="PX111", courier="postex", external_order_id="7001")
    session.add(Dispatch(order_id=order.id, courier="postex", tracking_id="PX111"))
    await session.commit()

    ev = _event(
        "orders/updated",
        fulfillments=[{"status": "success", "tracking_number": "TCS999", "tracking_company": "TCS Express"}],
    )
    outcome = await handle_order_event(session, ev)

    assert "tracking_id" in outcome.changed
    assert outcome.status == "dispatched"
    dispatch = (await session.execute(select(Dispatch).where(Dispatch.order_id == order.id))).scalars().one()
    await session.refresh(dispatch)
    assert (dispatch.tracking_id, dispatch.courier) == ("TCS999", "tcs")

    audit = (await session.execute(select(AuditEvent).where(AuditEvent.category == "WEBHOOK"))).scalars().one()
    assert audit.meta["dispatch_updated"] is True

    # 同样的改单再投递一次：不再改动
    again = await handle_order_event(session, ev)
    assert again.changed == []
