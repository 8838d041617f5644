# orderflow/services/platform_events_handler.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.audit import TraceContext, ensure_trace
from orderflow.core.config import get_settings
from orderflow.core.locks import external_key, order_key, order_locks
from orderflow.db.base import utcnow
from orderflow.metrics import WEBHOOK_EVENTS
from orderflow.models.dispatch import Dispatch
from orderflow.models.enums import OrderStatus
from orderflow.models.order import Order
from orderflow.services.audit_writer import AuditEventWriter
from orderflow.services.order_reconcile_service import reconcile
from orderflow.services.order_reconcile_types import OrderSnapshot, WebhookOutcome
from orderflow.services.platform_events_types import OrderPayload, PlatformOrderEvent
from orderflow.services.tag_sync import enqueue_tag_sync, split_platform_tags, tag_for

logger = logging.getLogger("orderflow.webhook")


async def _find_order(session: AsyncSession, payload: OrderPayload) -> Optional[Order]:
    prefix = get_settings().ORDER_NUMBER_PREFIX
    stmt = (
        select(Order)
        .where(
            or_(
                Order.external_order_id == payload.external_id,
                Order.order_number == f"{prefix}{payload.number}",
            )
        )
        .order_by(Order.id)
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


def _refresh_customer(order: Order, payload: OrderPayload) -> None:
    """客户 / 金额 / 地址每次事件都刷新；状态只走对账规则。"""
    customer = payload.customer
    if customer is not None and customer.full_name:
        order.customer_name = customer.full_name
    elif payload.shipping_address is not None and payload.shipping_address.name:
        order.customer_name = payload.shipping_address.name
    order.customer_email = payload.email or (customer.email if customer else None) or order.customer_email
    order.customer_phone = payload.phone or (customer.phone if customer else None) or order.customer_phone
    if payload.total_price is not None:
        order.total_amount = payload.total_price
    if payload.shipping_address is not None:
        order.shipping_address = payload.shipping_address.model_dump(exclude_none=True)
    if order.external_order_id is None:
        order.external_order_id = payload.external_id
    order.external_order_number = payload.number


async def _get_or_create(session: AsyncSession, payload: OrderPayload) -> tuple[Order, bool]:
    order = await _find_order(session, payload)
    if order is not None:
        return order, False

    order = Order(
        order_number=f"{get_settings().ORDER_NUMBER_PREFIX}{payload.number}",
        external_order_id=payload.external_id,
        external_order_number=payload.number,
        status=OrderStatus.PENDING.value,
        tags=[],
    )
    session.add(order)
    try:
        await session.flush()
    except IntegrityError:
        # 另一个进程先插入了同一个平台订单
        await session.rollback()
        order = await _find_order(session, payload)
        if order is None:
            raise
        return order, False
    return order, True


async def handle_order_event(
    session: AsyncSession,
    event: PlatformOrderEvent,
    *,
    trace: Optional[TraceContext] = None,
) -> WebhookOutcome:
    """
    平台订单事件入口：upsert → 对账 → 标签入队 → 审计 → 提交。

    串行化：先按平台订单 id 加锁（覆盖首次创建），再按内部订单 id 加锁
    （与发运/退货录入互斥）。重复投递是安全的（对账幂等）。
    """
    payload = event.order
    ctx = ensure_trace(trace, f"webhook:{event.topic.value}:{payload.external_id}")

    async with order_locks.hold(external_key(payload.external_id)):
        order, created = await _get_or_create(session, payload)

        async with order_locks.hold(order_key(order.id)):
            if not created:
                await session.refresh(order)

            _refresh_customer(order, payload)

            snapshot = OrderSnapshot(
                status=order.status,
                courier=order.courier,
                tracking_id=order.tracking_id,
                tags=list(order.tags or []),
            )
            decision = reconcile(snapshot, event)

            now = utcnow()
            if "status" in decision.changed:
                order.status = decision.status
                if decision.status == OrderStatus.BOOKED.value:
                    order.booked_at = now
                elif decision.status == OrderStatus.CANCELLED.value:
                    order.cancelled_at = now
            if "tracking_id" in decision.changed:
                order.tracking_id = decision.tracking_id
            if "courier" in decision.changed:
                order.courier = decision.courier

            # 已发运订单被改单：当前发运记录的运单号 / 快递一起跟上
            dispatch_updated = False
            if "tracking_id" in decision.changed:
                dispatch = (
                    await session.execute(select(Dispatch).where(Dispatch.order_id == order.id))
                ).scalars().first()
                if dispatch is not None and dispatch.tracking_id != order.tracking_id:
                    dispatch.tracking_id = order.tracking_id
                    if order.courier:
                        dispatch.courier = order.courier
                    dispatch_updated = True

            if "tags" in decision.changed:
                order.tags = list(decision.tags)

            # 平台已带着当前状态标签 → 视为已推送过
            current_tag = tag_for(order.status)
            if current_tag in split_platform_tags(payload.tags):
                order.pushed_status_tag = current_tag

            await session.flush()
            await enqueue_tag_sync(session, order)

            if decision.ignored_cancellation:
                logger.warning(
                    "cancellation ignored for terminal order %s (status=%s)",
                    order.order_number,
                    order.status,
                )
            if decision.rebooked:
                logger.info(
                    "tracking changed for %s: %s -> %s",
                    order.order_number,
                    snapshot.tracking_id,
                    decision.tracking_id,
                )

            await AuditEventWriter.write(
                session,
                flow="WEBHOOK",
                event=event.topic.value,
                ref=order.order_number,
                trace_id=ctx.trace_id,
                meta={
                    "external_order_id": payload.external_id,
                    "created": created,
                    "changed": decision.changed,
                    "status_before": snapshot.status,
                    "status_after": order.status,
                    "tracking_id": order.tracking_id,
                    "ignored_cancellation": decision.ignored_cancellation,
                    "dispatch_updated": dispatch_updated,
                },
            )
            await session.commit()

            outcome = "created" if created else ("changed" if decision.changed else "noop")
            WEBHOOK_EVENTS.labels(topic=event.topic.value, outcome=outcome).inc()
            return WebhookOutcome(
                order_id=order.id,
                order_number=order.order_number,
                created=created,
                status=order.status,
                changed=list(decision.changed),
            )
