# orderflow/services/return_intake_service.py
"""
退货收货录入：校验 → 定位（不区分录入类型）→ 持锁：
  已有退货记录且 received → ALREADY_RECEIVED；
  否则建/改退货记录为 received（时间 + 收货人），订单 → returned。
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.audit import TraceContext, ensure_trace
from orderflow.core.locks import order_key, order_locks
from orderflow.db.base import utcnow
from orderflow.metrics import SCAN_LATENCY, SCAN_OUTCOMES
from orderflow.models.enums import ErrorCode, OrderStatus, ReturnStatus, ScanKind
from orderflow.models.return_record import ReturnRecord
from orderflow.services.audit_writer import AuditEventWriter
from orderflow.services.dispatch_intake_types import BulkResult, IntakeResult, dedupe_entries
from orderflow.services.entry_validator import validate
from orderflow.services.order_locator import locate_any
from orderflow.services.scan_history import record_scan
from orderflow.services.tag_sync import enqueue_tag_sync, merge_tags

logger = logging.getLogger("orderflow.returns")


async def _finish(
    session: AsyncSession,
    result: IntakeResult,
    *,
    started: float,
    user_id: Optional[str],
    trace_id: str,
) -> IntakeResult:
    elapsed = time.perf_counter() - started
    result.processing_ms = int(elapsed * 1000)
    await AuditEventWriter.write(
        session,
        flow="RETURN",
        event="RECEIVED" if result.success else "RETURN_REJECTED",
        ref=result.order_number or result.entry,
        trace_id=trace_id,
        meta={
            "entry": result.entry,
            "order_id": result.order_id,
            "match_type": result.match_type.value if result.match_type else None,
            "error_code": result.error_code.value if result.error_code else None,
            "user_id": user_id,
        },
    )
    await record_scan(session, kind=ScanKind.RETURN, result=result, user_id=user_id)
    await session.commit()

    code = "OK" if result.success else (result.error_code or ErrorCode.UNKNOWN_ERROR).value
    SCAN_OUTCOMES.labels(kind=ScanKind.RETURN.value, code=code).inc()
    SCAN_LATENCY.labels(kind=ScanKind.RETURN.value).observe(elapsed)
    return result


def _reject(result: IntakeResult, code: ErrorCode, message: str, suggestion: Optional[str] = None) -> IntakeResult:
    result.success = False
    result.error_code = code
    result.message = message
    result.suggestion = suggestion
    return result


async def receive_return(
    session: AsyncSession,
    *,
    entry: str,
    user_id: Optional[str] = None,
    trace: Optional[TraceContext] = None,
) -> IntakeResult:
    started = time.perf_counter()
    ctx = ensure_trace(trace, "scan:return")

    check = validate(entry)
    result = IntakeResult(success=False, entry=check.entry)
    if not check.ok:
        _reject(result, check.code or ErrorCode.INVALID_FORMAT, check.message or "Invalid entry", check.suggestion)
        return await _finish(session, result, started=started, user_id=user_id, trace_id=ctx.trace_id)

    hit = await locate_any(session, check.entry)
    if hit is None:
        _reject(result, ErrorCode.NOT_FOUND, f"No order found for '{check.entry}'")
        return await _finish(session, result, started=started, user_id=user_id, trace_id=ctx.trace_id)
    result.match_type = hit.match_type

    async with order_locks.hold(order_key(hit.order.id)):
        order = hit.order
        await session.refresh(order)
        result.order_id = order.id
        result.order_number = order.order_number
        result.customer = order.customer_name
        result.amount = order.total_amount
        result.courier = order.courier
        result.tracking_id = order.tracking_id

        ret = await session.scalar(select(ReturnRecord).where(ReturnRecord.order_id == order.id))
        if ret is not None and ret.status == ReturnStatus.RECEIVED.value:
            _reject(result, ErrorCode.ALREADY_RECEIVED, f"Return for {order.order_number} already received")
            return await _finish(session, result, started=started, user_id=user_id, trace_id=ctx.trace_id)

        now = utcnow()
        if ret is None:
            ret = ReturnRecord(order_id=order.id, worth=order.total_amount)
            session.add(ret)
        ret.status = ReturnStatus.RECEIVED.value
        ret.received_at = now
        ret.received_by = user_id
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            _reject(result, ErrorCode.ALREADY_RECEIVED, f"Return for {result.order_number} already received")
            return await _finish(session, result, started=started, user_id=user_id, trace_id=ctx.trace_id)

        order.status = OrderStatus.RETURNED.value
        order.returned_at = now
        order.tags = merge_tags(order.tags or [], order.status)
        await session.flush()
        await enqueue_tag_sync(session, order)

        result.success = True
        result.return_status = ret.status
        return await _finish(session, result, started=started, user_id=user_id, trace_id=ctx.trace_id)


async def receive_returns_bulk(
    session: AsyncSession,
    *,
    entries: List[str],
    user_id: Optional[str] = None,
) -> BulkResult:
    unique, dupes = dedupe_entries(entries)
    bulk = BulkResult(duplicates_removed=dupes)
    trace = ensure_trace(None, "bulk:return")
    for e in unique:
        try:
            r = await receive_return(session, entry=e, user_id=user_id, trace=trace)
        except Exception as ex:
            await session.rollback()
            logger.exception("bulk return entry crashed: %s", e)
            r = _reject(IntakeResult(success=False, entry=e), ErrorCode.UNKNOWN_ERROR, str(ex))
        bulk.add(r)
    return bulk
