# orderflow/services/courier_booking_queue.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.config import get_settings
from orderflow.db.base import utcnow
from orderflow.models.courier_booking import CourierBookingAttempt, CourierBookingQueueEntry
from orderflow.models.enums import ErrorCode, QueueStatus


def backoff_minutes(retry_count: int, schedule: Optional[Sequence[int]] = None) -> int:
    """第 N 次重试后的等待分钟数（超出表长取最后一档）。"""
    table = list(schedule or get_settings().BOOKING_RETRY_BACKOFF_MINUTES)
    if not table:
        return get_settings().BOOKING_RETRY_INITIAL_MINUTES
    return table[min(max(retry_count, 0), len(table) - 1)]


async def enqueue_retry(
    session: AsyncSession,
    *,
    order_id: int,
    courier_id: int,
    booking_request: dict,
    error_code: ErrorCode,
    error_message: Optional[str],
    user_id: Optional[str] = None,
) -> CourierBookingQueueEntry:
    """
    可重试失败入队：retry_count=0，固定初始退避。
    同一订单已有未完结的队列项时原地更新，不重复入队。
    """
    s = get_settings()
    next_at = utcnow() + timedelta(minutes=s.BOOKING_RETRY_INITIAL_MINUTES)

    existing = (
        await session.execute(
            select(CourierBookingQueueEntry).where(
                CourierBookingQueueEntry.order_id == order_id,
                CourierBookingQueueEntry.status.in_(
                    [QueueStatus.PENDING.value, QueueStatus.RETRYING.value]
                ),
            )
        )
    ).scalars().first()
    if existing is not None:
        existing.courier_id = courier_id
        existing.booking_request = booking_request
        existing.last_error_code = error_code.value
        existing.last_error_message = error_message
        existing.next_retry_at = next_at
        await session.flush()
        return existing

    entry = CourierBookingQueueEntry(
        order_id=order_id,
        courier_id=courier_id,
        booking_request=booking_request,
        status=QueueStatus.PENDING.value,
        retry_count=0,
        max_retries=s.BOOKING_RETRY_MAX,
        next_retry_at=next_at,
        last_error_code=error_code.value,
        last_error_message=error_message,
        user_id=user_id,
    )
    session.add(entry)
    await session.flush()
    return entry


async def list_due(
    session: AsyncSession, *, now: Optional[datetime] = None, limit: int = 50
) -> List[CourierBookingQueueEntry]:
    """到期：pending/retrying 且 next_retry_at <= now 且 retry_count < max_retries。"""
    now = now or utcnow()
    stmt = (
        select(CourierBookingQueueEntry)
        .where(
            or_(
                CourierBookingQueueEntry.status == QueueStatus.PENDING.value,
                CourierBookingQueueEntry.status == QueueStatus.RETRYING.value,
            ),
            CourierBookingQueueEntry.next_retry_at <= now,
            CourierBookingQueueEntry.retry_count < CourierBookingQueueEntry.max_retries,
        )
        .order_by(CourierBookingQueueEntry.next_retry_at, CourierBookingQueueEntry.id)
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def list_failed(session: AsyncSession, *, limit: int = 200) -> List[CourierBookingQueueEntry]:
    """永久失败、需要人工处理的队列项。"""
    stmt = (
        select(CourierBookingQueueEntry)
        .where(CourierBookingQueueEntry.status == QueueStatus.FAILED.value)
        .order_by(CourierBookingQueueEntry.updated_at.desc(), CourierBookingQueueEntry.id.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def next_attempt_number(session: AsyncSession, order_id: int) -> int:
    n = await session.scalar(
        select(func.count(CourierBookingAttempt.id)).where(CourierBookingAttempt.order_id == order_id)
    )
    return int(n or 0) + 1
