# tests/services/test_sync_queue_worker.py
from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.config import AppSettings
from orderflow.models import Order, SyncQueueEntry
from orderflow.services.sync_queue_worker import PlatformTagPusher, process_sync_queue
from orderflow.services.tag_sync import enqueue_tag_sync, merge_tags

pytestmark = pytest.mark.grp_sync

SETTINGS = AppSettings(
    PLATFORM_BASE_URL="https://shop.example.test",
    PLATFORM_ACCESS_TOKEN="shpat_test",
    PLATFORM_API_VERSION="2024-01",
)


def _pusher(handler) -> PlatformTagPusher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PlatformTagPusher(client, SETTINGS)


async def _dispatched_order(session: AsyncSession, make_order, **kw) -> Order:
    order = await make_order("SHOP-1001", status="dispatched", tags=["VIP"], **kw)
    order.tags = merge_tags(order.tags, order.status)
    await session.flush()
    await enqueue_tag_sync(session, order)
    await session.commit()
    return order


@pytest.mark.asyncio
async def test_push_marks_done_and_records_pushed_tag(session: AsyncSession, make_order):
    order = await _dispatched_order(session, make_order, external_order_id="7001")
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, request.headers.get("X-Shopify-Access-Token"), json.loads(request.content)))
        return httpx.Response(200, json={"order": {"id": 7001}})

    summary = await process_sync_queue(session, _pusher(handler))

    assert summary.pushed == 1
    method, path, token, body = seen[0]
    assert (method, path, token) == ("PUT", "/admin/api/2024-01/orders/7001.json", "shpat_test")
    assert body["order"]["tags"] == "VIP, ERP - Dispatched"

    await session.refresh(order)
    assert order.pushed_status_tag == "ERP - Dispatched"
    entry = (await session.execute(select(SyncQueueEntry))).scalars().one()
    assert entry.status == "done"
    assert entry.processed_at is not None

    # 已推送过相同标签：不再入队
    assert await enqueue_tag_sync(session, order) is None


@pytest.mark.asyncio
async def test_push_failure_increments_retry(session: AsyncSession, make_order):
    await _dispatched_order(session, make_order, external_order_id="7001")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    summary = await process_sync_queue(session, _pusher(handler))
    assert summary.failed == 1
    summary = await process_sync_queue(session, _pusher(handler))
    assert summary.failed == 1

    entry = (await session.execute(select(SyncQueueEntry))).scalars().one()
    await session.refresh(entry)
    assert entry.status == "failed"
    assert entry.retry_count == 2
    assert "502" in entry.last_error


@pytest.mark.asyncio
async def test_order_without_platform_id_is_skipped(session: AsyncSession, make_order):
    await _dispatched_order(session, make_order)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("should not push")

    summary = await process_sync_queue(session, _pusher(handler))

    assert summary.skipped == 1
    entry = (await session.execute(select(SyncQueueEntry))).scalars().one()
    assert entry.status == "done"
