# tests/unit/test_order_reconcile.py
from __future__ import annotations

import pytest

from orderflow.services.order_reconcile_service import reconcile
from orderflow.services.order_reconcile_types import OrderSnapshot
from orderflow.services.platform_events_extractors import map_carrier, select_latest_fulfillment
from orderflow.services.platform_events_types import (
    FulfillmentPayload,
    OrderPayload,
    PlatformOrderEvent,
    WebhookTopic,
)

pytestmark = pytest.mark.grp_events


def _event(topic="orders/updated", **order) -> PlatformOrderEvent:
    order.setdefault("id", 9001)
    order.setdefault("name", "#1001")
    return PlatformOrderEvent(topic=WebhookTopic(topic), order=OrderPayload(**order))


def _ff(tracking, company="PostEx", status="success", created="2026-01-01T10:00:00Z"):
    return {"status": status, "tracking_number": tracking, "tracking_company": company, "created_at": created}


def test_new_tracking_moves_pending_to_booked():
    snap = OrderSnapshot(status="pending", courier=None, tracking_id=None, tags=[])
    d = reconcile(snap, _event(fulfillments=[_ff("PX111")]))
    assert d.status == "booked"
    assert d.tracking_id == "PX111"
    assert d.courier == "postex"
    assert "ERP - Booked" in d.tags
    assert not d.rebooked


def test_same_event_twice_is_noop():
    snap = OrderSnapshot(status="pending", courier=None, tracking_id=None, tags=[])
    ev = _event(fulfillments=[_ff("PX111")], tags="VIP")
    first = reconcile(snap, ev)
    after = OrderSnapshot(
        status=first.status, courier=first.courier, tracking_id=first.tracking_id, tags=first.tags
    )
    second = reconcile(after, ev)
    assert second.is_noop
    assert second.tags == first.tags


def test_fulfilled_does_not_override_dispatched():
    snap = OrderSnapshot(
        status="dispatched", courier="postex", tracking_id="PX111", tags=["ERP - Dispatched"]
    )
    d = reconcile(snap, _event("orders/fulfilled", fulfillments=[_ff("PX111")], fulfillment_status="fulfilled"))
    assert d.status == "dispatched"
    assert "Shopify - Fulfilled" in d.tags
    assert "tracking_id" not in d.changed


def test_different_tracking_is_treated_as_rebooking():
    snap = OrderSnapshot(status="booked", courier="postex", tracking_id="PX111", tags=[])
    d = reconcile(snap, _event(fulfillments=[_ff("LE222", company="Leopards Courier")]))
    assert d.tracking_id == "LE222"
    assert d.courier == "leopard"
    assert d.rebooked
    assert d.status == "booked"


def test_cancellation_forces_cancelled_from_non_terminal():
    snap = OrderSnapshot(status="dispatched", courier="tcs", tracking_id="T1", tags=[])
    d = reconcile(snap, _event("orders/cancelled"))
    assert d.status == "cancelled"
    assert d.cancelled
    assert "ERP - Cancelled" in d.tags


def test_cancellation_ignored_for_delivered():
    snap = OrderSnapshot(status="delivered", courier="tcs", tracking_id="T1", tags=["ERP - Delivered"])
    d = reconcile(snap, _event("orders/updated", cancelled_at="2026-01-02T00:00:00Z"))
    assert d.status == "delivered"
    assert d.ignored_cancellation
    assert not d.cancelled


def test_internal_courier_tag_kept_until_platform_has_one():
    snap = OrderSnapshot(status="booked", courier="postex", tracking_id="PX1", tags=["Courier - PostEx"])
    d = reconcile(snap, _event(tags="VIP"))
    assert "Courier - PostEx" in d.tags
    assert "VIP" in d.tags


def test_latest_fulfillment_skips_cancelled():
    ffs = [
        FulfillmentPayload(**_ff("OLD", created="2026-01-01T00:00:00Z")),
        FulfillmentPayload(**_ff("NEWEST", status="cancelled", created="2026-01-03T00:00:00Z")),
        FulfillmentPayload(**_ff("NEW", created="2026-01-02T00:00:00Z")),
    ]
    assert select_latest_fulfillment(ffs).tracking_number == "NEW"
    assert select_latest_fulfillment([]) is None


@pytest.mark.parametrize(
    "name, code",
    [
        ("Leopards Courier", "leopard"),
        ("TCS Express", "tcs"),
        ("Post Ex", "postex"),
        ("M&P", "m&p"),
        ("Some Local Rider", "Some Local Rider"),
        (None, None),
    ],
)
def test_map_carrier(name, code):
    assert map_carrier(name) == code


def test_order_payload_number_and_tags():
    p = OrderPayload(id=55, name="#1042", tags=["VIP", "COD"])
    assert p.number == "1042"
    assert p.external_id == "55"
    assert p.tags == "VIP, COD"
