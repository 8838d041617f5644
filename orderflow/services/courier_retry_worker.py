# orderflow/services/courier_retry_worker.py
"""
下单重试队列处理器（APScheduler 周期调用，也可手动触发）。

  - 取到期项：pending/retrying，next_retry_at <= now，retry_count < max_retries
  - 成功（含部分成功）→ 删除队列项
  - 订单已被其它流程发运（ALREADY_DISPATCHED）→ 视为已解决，删除队列项
  - 不可重试失败 → failed（需人工）
  - 可重试失败 → retry_count+1；达到上限 → failed，否则 retrying + 按退避表重排
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.db.base import utcnow
from orderflow.metrics import RETRY_TRANSITIONS
from orderflow.models.courier_booking import CourierBookingQueueEntry
from orderflow.models.enums import ErrorCode, QueueStatus
from orderflow.services.courier.types import BookingRequest
from orderflow.services.courier_booking_queue import backoff_minutes, list_due
from orderflow.services.courier_booking_service import CourierBookingService

logger = logging.getLogger("orderflow.retry")


@dataclass
class RetryRunSummary:
    processed: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    resolved: int = 0
    failed: int = 0
    failed_entry_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "rescheduled": self.rescheduled,
            "resolved": self.resolved,
            "failed": self.failed,
            "failed_entry_ids": list(self.failed_entry_ids),
        }


async def _mark_failed(session: AsyncSession, entry: CourierBookingQueueEntry, code: str, message: Optional[str]) -> None:
    entry.status = QueueStatus.FAILED.value
    entry.last_error_code = code
    entry.last_error_message = message
    await session.commit()
    RETRY_TRANSITIONS.labels(transition="failed").inc()
    logger.error(
        "booking retry exhausted/failed entry=%s order=%s code=%s retries=%s/%s: %s",
        entry.id,
        entry.order_id,
        code,
        entry.retry_count,
        entry.max_retries,
        message,
    )


async def process_entry(
    session: AsyncSession,
    service: CourierBookingService,
    entry: CourierBookingQueueEntry,
    summary: RetryRunSummary,
) -> None:
    summary.processed += 1
    entry_id = entry.id
    order_id = entry.order_id

    try:
        request = BookingRequest.model_validate(entry.booking_request)
    except ValidationError as e:
        await _mark_failed(session, entry, ErrorCode.MISSING_FIELDS.value, str(e))
        summary.failed += 1
        summary.failed_entry_ids.append(entry_id)
        return

    outcome = await service.book(
        session,
        order_id=entry.order_id,
        courier_ref=entry.courier_id,
        request=request,
        user_id=entry.user_id,
        enqueue_on_failure=False,
    )
    await session.refresh(entry)

    if outcome.success or outcome.tracking_id:
        await session.delete(entry)
        await session.commit()
        RETRY_TRANSITIONS.labels(transition="succeeded").inc()
        summary.succeeded += 1
        logger.info("booking retry succeeded entry=%s order=%s", entry_id, order_id)
        return

    if outcome.error_code == ErrorCode.ALREADY_DISPATCHED:
        await session.delete(entry)
        await session.commit()
        RETRY_TRANSITIONS.labels(transition="resolved").inc()
        summary.resolved += 1
        logger.info("booking retry dropped entry=%s order=%s: order already dispatched", entry_id, order_id)
        return

    code = (outcome.error_code or ErrorCode.UNKNOWN_ERROR).value
    if not outcome.retryable:
        await _mark_failed(session, entry, code, outcome.message)
        summary.failed += 1
        summary.failed_entry_ids.append(entry_id)
        return

    entry.retry_count += 1
    if entry.retry_count >= entry.max_retries:
        await _mark_failed(session, entry, code, outcome.message)
        summary.failed += 1
        summary.failed_entry_ids.append(entry_id)
        return

    entry.status = QueueStatus.RETRYING.value
    entry.last_error_code = code
    entry.last_error_message = outcome.message
    entry.next_retry_at = utcnow() + timedelta(minutes=backoff_minutes(entry.retry_count))
    await session.commit()
    RETRY_TRANSITIONS.labels(transition="rescheduled").inc()
    summary.rescheduled += 1
    logger.warning(
        "booking retry rescheduled entry=%s order=%s code=%s retry=%s/%s next=%s",
        entry_id,
        entry.order_id,
        code,
        entry.retry_count,
        entry.max_retries,
        entry.next_retry_at.isoformat(),
    )


async def run_retry_queue(
    session: AsyncSession, service: CourierBookingService, *, limit: int = 50
) -> RetryRunSummary:
    summary = RetryRunSummary()
    due_ids = [e.id for e in await list_due(session, limit=limit)]
    for entry_id in due_ids:
        entry = await session.get(CourierBookingQueueEntry, entry_id)
        if entry is None or entry.status == QueueStatus.FAILED.value:
            continue
        try:
            await process_entry(session, service, entry, summary)
        except Exception:
            # 单条出错不影响其它到期项；下轮再处理
            await session.rollback()
            logger.exception("booking retry crashed for entry=%s", entry_id)
    if summary.processed:
        logger.info("booking retry run: %s", summary.to_dict())
    return summary


async def run_retry_queue_job(
    session_maker: async_sessionmaker[AsyncSession], service: CourierBookingService
) -> RetryRunSummary:
    """APScheduler 入口：自己开会话。"""
    async with session_maker() as session:
        return await run_retry_queue(session, service)
