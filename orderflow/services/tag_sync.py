# orderflow/services/tag_sync.py
"""
状态标签同步：

- tag_for(status)：内部状态 → 平台可见的唯一状态标签（固定枚举）；
- merge_tags(existing, status)：去掉所有带状态前缀的旧标签，保留其它标签相对顺序，追加当前标签；
- enqueue_tag_sync：计算出的标签与最近一次推送不同才入 sync_queue。
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.config import get_settings
from orderflow.models.enums import OrderStatus, SyncStatus
from orderflow.models.order import Order
from orderflow.models.sync_queue import SyncQueueEntry

logger = logging.getLogger("orderflow.sync")

STATUS_TAG_LABELS = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.BOOKED: "Booked",
    OrderStatus.DISPATCHED: "Dispatched",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.RETURNED: "Returned",
    OrderStatus.CANCELLED: "Cancelled",
}


def _prefix(prefix: Optional[str]) -> str:
    return get_settings().STATUS_TAG_PREFIX if prefix is None else prefix


def tag_for(status: str, prefix: Optional[str] = None) -> str:
    return f"{_prefix(prefix)}{STATUS_TAG_LABELS[OrderStatus(status)]}"


def replace_prefixed(existing: Iterable[str], prefix: str, new_tag: Optional[str]) -> List[str]:
    """去掉所有以 prefix 开头的标签 + 去重（保序），再追加 new_tag。"""
    out: List[str] = []
    seen = set()
    for raw in existing or []:
        tag = (raw or "").strip()
        if not tag or tag.startswith(prefix) or tag in seen:
            continue
        seen.add(tag)
        out.append(tag)
    if new_tag and new_tag not in seen:
        out.append(new_tag)
    return out


def merge_tags(existing: Iterable[str], status: str, prefix: Optional[str] = None) -> List[str]:
    p = _prefix(prefix)
    return replace_prefixed(existing, p, tag_for(status, p))


def split_platform_tags(raw: Optional[str]) -> List[str]:
    """平台 tags 是逗号分隔字符串。"""
    if not raw:
        return []
    return [t.strip() for t in raw.split(",") if t.strip()]


async def enqueue_tag_sync(session: AsyncSession, order: Order) -> Optional[SyncQueueEntry]:
    """
    计算出的状态标签 ≠ 最近一次推送的标签才入队；
    若已有同 payload 的 pending 项则不重复入队。
    """
    current = tag_for(order.status)
    if current == order.pushed_status_tag:
        return None

    payload = {"tags": list(order.tags or []), "status_tag": current}
    rows = (
        await session.execute(
            select(SyncQueueEntry).where(
                SyncQueueEntry.order_id == order.id,
                SyncQueueEntry.status == SyncStatus.PENDING.value,
            )
        )
    ).scalars().all()
    for row in rows:
        if row.payload == payload:
            return None

    entry = SyncQueueEntry(order_id=order.id, action="update_tags", payload=payload)
    session.add(entry)
    await session.flush()
    logger.debug("sync enqueued order=%s tag=%s", order.order_number, current)
    return entry
