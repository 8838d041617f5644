# orderflow/services/order_reconcile_service.py
"""
状态对账引擎（纯函数，不碰 DB）。

优先级规则：
  - 新状态永远从内部当前状态出发；
  - 唯一例外：平台明确取消 → 强制 cancelled（仅限非终态）；
  - 平台侧的 "fulfilled" 等状态只作为提示标签，不改权威状态。

运单号：
  - 取最新的未取消 fulfillment；
  - 内部无运单号 或 运单号不同 → 覆盖（视为改派/重新下单），pending → booked；
  - 运单号相同 → 不动。
同样输入重复执行不会产生额外变更。
"""

from __future__ import annotations

from typing import List, Optional

from orderflow.core.config import get_settings
from orderflow.models.enums import OrderStatus
from orderflow.services.order_reconcile_types import OrderSnapshot, ReconcileDecision
from orderflow.services.platform_events_extractors import map_carrier, select_latest_fulfillment
from orderflow.services.platform_events_types import PlatformOrderEvent
from orderflow.services.tag_sync import replace_prefixed, split_platform_tags, tag_for


def _rebuild_tags(
    platform_tags: List[str],
    internal_tags: List[str],
    status: str,
    reports_fulfilled: bool,
) -> List[str]:
    s = get_settings()
    tags = list(platform_tags)

    # 平台侧还没收到我们推的快递标签时，保留内部已有的那一个
    if not any(t.startswith(s.COURIER_TAG_PREFIX) for t in tags):
        tags.extend(t for t in internal_tags if t.startswith(s.COURIER_TAG_PREFIX))

    tags = replace_prefixed(tags, s.STATUS_TAG_PREFIX, tag_for(status, s.STATUS_TAG_PREFIX))
    if reports_fulfilled and s.FULFILLED_MARKER_TAG not in tags:
        tags.append(s.FULFILLED_MARKER_TAG)
    return tags


def reconcile(snapshot: OrderSnapshot, event: PlatformOrderEvent) -> ReconcileDecision:
    current = OrderStatus(snapshot.status)
    status = current
    changed: List[str] = []
    cancelled = False
    ignored_cancellation = False

    if event.is_cancellation:
        if not current.is_terminal:
            status = OrderStatus.CANCELLED
            cancelled = True
        elif current != OrderStatus.CANCELLED:
            ignored_cancellation = True

    tracking_id: Optional[str] = snapshot.tracking_id
    courier: Optional[str] = snapshot.courier
    rebooked = False

    latest = select_latest_fulfillment(event.order.fulfillments)
    incoming = (latest.tracking_number or "").strip() if latest is not None else ""
    if incoming and incoming != (snapshot.tracking_id or ""):
        rebooked = bool(snapshot.tracking_id)
        tracking_id = incoming
        courier = map_carrier(latest.tracking_company) or courier
        if status == OrderStatus.PENDING:
            status = OrderStatus.BOOKED

    tags = _rebuild_tags(
        split_platform_tags(event.order.tags),
        list(snapshot.tags or []),
        status.value,
        event.reports_fulfilled,
    )

    if status != current:
        changed.append("status")
    if tracking_id != snapshot.tracking_id:
        changed.append("tracking_id")
    if courier != snapshot.courier:
        changed.append("courier")
    if tags != list(snapshot.tags or []):
        changed.append("tags")

    return ReconcileDecision(
        status=status.value,
        courier=courier,
        tracking_id=tracking_id,
        tags=tags,
        changed=changed,
        rebooked=rebooked,
        cancelled=cancelled,
        ignored_cancellation=ignored_cancellation,
    )
