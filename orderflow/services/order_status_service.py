# orderflow/services/order_status_service.py
"""
订单状态的其余入口：人工改状态 / 撤销发运 / 快递终态事件。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.audit import TraceContext, ensure_trace
from orderflow.core.locks import order_key, order_locks
from orderflow.db.base import utcnow
from orderflow.models.dispatch import Dispatch
from orderflow.models.enums import ErrorCode, OrderStatus, ReturnStatus
from orderflow.models.order import Order
from orderflow.models.return_record import ReturnRecord
from orderflow.services.audit_writer import AuditEventWriter
from orderflow.services.tag_sync import enqueue_tag_sync, merge_tags

logger = logging.getLogger("orderflow.orders")

_TIMESTAMP_FIELD = {
    OrderStatus.BOOKED: "booked_at",
    OrderStatus.DISPATCHED: "dispatched_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.RETURNED: "returned_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


@dataclass
class StatusChangeResult:
    success: bool
    order_id: int
    status: Optional[str] = None
    previous_status: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None


def _set_status(order: Order, status: OrderStatus) -> None:
    order.status = status.value
    field = _TIMESTAMP_FIELD.get(status)
    if field is not None:
        setattr(order, field, utcnow())
    order.tags = merge_tags(order.tags or [], order.status)


async def _load(session: AsyncSession, order_id: int) -> Optional[Order]:
    order = await session.get(Order, order_id)
    if order is not None:
        await session.refresh(order)
    return order


async def change_status(
    session: AsyncSession,
    *,
    order_id: int,
    status: OrderStatus | str,
    user_id: Optional[str] = None,
    reason: Optional[str] = None,
    trace: Optional[TraceContext] = None,
) -> StatusChangeResult:
    """人工改状态：任意状态之间都允许（操作员说了算），必须审计。"""
    target = OrderStatus(status)
    ctx = ensure_trace(trace, f"manual:status:{order_id}")
    async with order_locks.hold(order_key(order_id)):
        order = await _load(session, order_id)
        if order is None:
            return StatusChangeResult(False, order_id, error_code=ErrorCode.ORDER_NOT_FOUND, message="Order not found")

        before = order.status
        _set_status(order, target)
        await session.flush()
        await enqueue_tag_sync(session, order)
        await AuditEventWriter.write(
            session,
            flow="ORDER",
            event="STATUS_CHANGED",
            ref=order.order_number,
            trace_id=ctx.trace_id,
            meta={"from": before, "to": order.status, "user_id": user_id, "reason": reason},
        )
        await session.commit()
        logger.info("manual status change %s: %s -> %s", order.order_number, before, order.status)
        return StatusChangeResult(True, order_id, status=order.status, previous_status=before)


async def cancel_dispatch(
    session: AsyncSession,
    *,
    order_id: int,
    user_id: Optional[str] = None,
    trace: Optional[TraceContext] = None,
) -> StatusChangeResult:
    """撤销发运：删除发运记录，订单回到 pending 并清空运单号/快递/时间戳。"""
    ctx = ensure_trace(trace, f"manual:cancel_dispatch:{order_id}")
    async with order_locks.hold(order_key(order_id)):
        order = await _load(session, order_id)
        if order is None:
            return StatusChangeResult(False, order_id, error_code=ErrorCode.ORDER_NOT_FOUND, message="Order not found")

        dispatch = await session.scalar(select(Dispatch).where(Dispatch.order_id == order_id))
        if dispatch is None:
            return StatusChangeResult(
                False,
                order_id,
                status=order.status,
                error_code=ErrorCode.NOT_FOUND,
                message="Order has no active dispatch",
            )

        before = order.status
        cleared = {"courier": order.courier, "tracking_id": order.tracking_id}
        await session.execute(delete(Dispatch).where(Dispatch.id == dispatch.id))

        order.status = OrderStatus.PENDING.value
        order.tracking_id = None
        order.courier = None
        order.booked_at = None
        order.dispatched_at = None
        order.tags = merge_tags(order.tags or [], order.status)
        await session.flush()
        await enqueue_tag_sync(session, order)
        await AuditEventWriter.write(
            session,
            flow="DISPATCH",
            event="DISPATCH_CANCELLED",
            ref=order.order_number,
            trace_id=ctx.trace_id,
            meta={"from": before, "user_id": user_id, **cleared},
        )
        await session.commit()
        return StatusChangeResult(True, order_id, status=order.status, previous_status=before)


async def apply_courier_event(
    session: AsyncSession,
    *,
    tracking_id: str,
    event: str,
    trace: Optional[TraceContext] = None,
) -> StatusChangeResult:
    """
    快递确认的终态事件（delivered / returned）：
    仅推进非终态订单；快递报退回时建一条 in_transit 退货记录（之后由退货扫描收货）。
    """
    target = OrderStatus(event)
    if target not in (OrderStatus.DELIVERED, OrderStatus.RETURNED):
        raise ValueError(f"unsupported courier event: {event}")

    ctx = ensure_trace(trace, f"courier:{event}:{tracking_id}")
    order_id = await session.scalar(
        select(Order.id).where(Order.tracking_id == tracking_id).order_by(Order.id).limit(1)
    )
    if order_id is None:
        return StatusChangeResult(False, 0, error_code=ErrorCode.NOT_FOUND, message="No order for tracking id")

    async with order_locks.hold(order_key(order_id)):
        order = await _load(session, order_id)
        before = order.status
        if OrderStatus(before).is_terminal:
            logger.info("courier %s ignored for terminal order %s (%s)", event, order.order_number, before)
            return StatusChangeResult(True, order_id, status=before, previous_status=before)

        _set_status(order, target)
        if target == OrderStatus.RETURNED:
            ret = await session.scalar(select(ReturnRecord).where(ReturnRecord.order_id == order_id))
            if ret is None:
                session.add(
                    ReturnRecord(
                        order_id=order_id,
                        status=ReturnStatus.IN_TRANSIT.value,
                        worth=order.total_amount,
                    )
                )
        await session.flush()
        await enqueue_tag_sync(session, order)
        await AuditEventWriter.write(
            session,
            flow="COURIER",
            event=f"COURIER_{target.value.upper()}",
            ref=order.order_number,
            trace_id=ctx.trace_id,
            meta={"from": before, "to": order.status, "tracking_id": tracking_id},
        )
        await session.commit()
        return StatusChangeResult(True, order_id, status=order.status, previous_status=before)
