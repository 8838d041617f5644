# orderflow/services/sync_queue_worker.py
"""
ERP → 平台 标签回写 worker。

每轮取至多 SYNC_QUEUE_BATCH_SIZE 条 pending/failed 且 retry_count < 上限的项（最早的先处理），
把订单当前标签整体推给平台；成功记 pushed_status_tag。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.config import AppSettings, get_settings
from orderflow.db.base import utcnow
from orderflow.metrics import SYNC_PUSHES
from orderflow.models.enums import SyncStatus
from orderflow.models.order import Order
from orderflow.models.sync_queue import SyncQueueEntry
from orderflow.services.tag_sync import tag_for

logger = logging.getLogger("orderflow.sync")


class PlatformPushError(Exception):
    pass


class PlatformTagPusher:
    """平台订单标签回写（REST: PUT /admin/api/{version}/orders/{id}.json）。"""

    def __init__(self, client: httpx.AsyncClient, settings: Optional[AppSettings] = None) -> None:
        self.client = client
        self.settings = settings or get_settings()

    async def push_tags(self, external_order_id: str, tags: List[str]) -> None:
        s = self.settings
        if not s.PLATFORM_BASE_URL or not s.PLATFORM_ACCESS_TOKEN:
            raise PlatformPushError("platform credentials not configured")
        url = f"{s.PLATFORM_BASE_URL.rstrip('/')}/admin/api/{s.PLATFORM_API_VERSION}/orders/{external_order_id}.json"
        resp = await self.client.put(
            url,
            headers={"X-Shopify-Access-Token": s.PLATFORM_ACCESS_TOKEN},
            json={"order": {"id": external_order_id, "tags": ", ".join(tags)}},
        )
        if not resp.is_success:
            raise PlatformPushError(f"platform returned {resp.status_code}: {resp.text[:300]}")


@dataclass
class SyncRunSummary:
    processed: int = 0
    pushed: int = 0
    failed: int = 0
    skipped: int = 0


async def list_pending(session: AsyncSession, *, batch_size: int, max_retries: int) -> List[SyncQueueEntry]:
    stmt = (
        select(SyncQueueEntry)
        .where(
            SyncQueueEntry.status.in_([SyncStatus.PENDING.value, SyncStatus.FAILED.value]),
            SyncQueueEntry.retry_count < max_retries,
        )
        .order_by(SyncQueueEntry.created_at, SyncQueueEntry.id)
        .limit(batch_size)
    )
    return list((await session.execute(stmt)).scalars().all())


async def process_sync_queue(session: AsyncSession, pusher: PlatformTagPusher) -> SyncRunSummary:
    s = get_settings()
    summary = SyncRunSummary()
    ids = [e.id for e in await list_pending(
        session, batch_size=s.SYNC_QUEUE_BATCH_SIZE, max_retries=s.SYNC_QUEUE_MAX_RETRIES
    )]
    for entry_id in ids:
        entry = await session.get(SyncQueueEntry, entry_id)
        if entry is None:
            continue
        summary.processed += 1
        order = await session.get(Order, entry.order_id)

        if order is None or not order.external_order_id:
            # 手工建的订单没有平台侧对应，直接结束
            entry.status = SyncStatus.DONE.value
            entry.processed_at = utcnow()
            entry.last_error = "order has no platform id"
            await session.commit()
            summary.skipped += 1
            continue

        tags = list(order.tags or [])
        try:
            await pusher.push_tags(order.external_order_id, tags)
        except (PlatformPushError, httpx.HTTPError) as e:
            entry.status = SyncStatus.FAILED.value
            entry.retry_count += 1
            entry.last_error = str(e)[:1000]
            await session.commit()
            summary.failed += 1
            SYNC_PUSHES.labels(outcome="failed").inc()
            logger.warning("tag sync failed entry=%s order=%s: %s", entry_id, order.order_number, e)
            continue

        order.pushed_status_tag = tag_for(order.status)
        entry.status = SyncStatus.DONE.value
        entry.processed_at = utcnow()
        entry.last_error = None
        await session.commit()
        summary.pushed += 1
        SYNC_PUSHES.labels(outcome="pushed").inc()
    return summary


async def run_sync_queue_job(
    session_maker: async_sessionmaker[AsyncSession], pusher: PlatformTagPusher
) -> SyncRunSummary:
    async with session_maker() as session:
        return await process_sync_queue(session, pusher)
