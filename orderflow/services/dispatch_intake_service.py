# orderflow/services/dispatch_intake_service.py
"""
发运录入（扫描单条 / 批量文本共用同一核心 intake）：

  1) 校验录入
  2) 定位订单
  3) 确定快递：订单已有快递优先，否则用批次预选快递；都没有 → NO_COURIER
  4) 插入前（持锁）再查一次已有发运 → ALREADY_DISPATCHED（至多一次）；
     已取消订单 → ORDER_CANCELLED；已妥投/已退回的订单放行但告警，审计记原状态
  5) tracking 模式且与订单运单号不同 → 先更正订单运单号
  6) 插入 Dispatch；唯一约束冲突 → ALREADY_DISPATCHED，其它 DB 错误 → DB_ERROR
  7) 订单 → dispatched，打 dispatched_at；订单原来没有快递才写入快递
  8) 审计 + 扫描历史
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.audit import TraceContext, ensure_trace
from orderflow.core.locks import order_key, order_locks
from orderflow.db.base import utcnow
from orderflow.metrics import SCAN_LATENCY, SCAN_OUTCOMES
from orderflow.models.dispatch import Dispatch
from orderflow.models.enums import EntryType, ErrorCode, OrderStatus, ScanKind
from orderflow.models.order import Order
from orderflow.services.audit_writer import AuditEventWriter
from orderflow.services.dispatch_intake_types import BulkResult, IntakeResult, dedupe_entries
from orderflow.services.entry_validator import validate
from orderflow.services.order_locator import LocateResult, locate
from orderflow.services.scan_history import record_scan
from orderflow.services.tag_sync import enqueue_tag_sync, merge_tags

logger = logging.getLogger("orderflow.dispatch")


def _order_fields(result: IntakeResult, order: Order) -> None:
    result.order_id = order.id
    result.order_number = order.order_number
    result.customer = order.customer_name
    result.amount = order.total_amount
    result.courier = order.courier
    result.tracking_id = order.tracking_id


async def _finish(
    session: AsyncSession,
    result: IntakeResult,
    *,
    started: float,
    user_id: Optional[str],
    trace_id: str,
    entry_type: EntryType,
) -> IntakeResult:
    """失败/成功统一收尾：审计 + 扫描历史 + 提交 + 指标。"""
    elapsed = time.perf_counter() - started
    result.processing_ms = int(elapsed * 1000)

    await AuditEventWriter.write(
        session,
        flow="DISPATCH",
        event="DISPATCHED" if result.success else "DISPATCH_REJECTED",
        ref=result.order_number or result.entry,
        trace_id=trace_id,
        meta={
            "entry": result.entry,
            "entry_type": entry_type.value,
            "order_id": result.order_id,
            "courier": result.courier,
            "match_type": result.match_type.value if result.match_type else None,
            "error_code": result.error_code.value if result.error_code else None,
            "status_before": result.status_before,
            "user_id": user_id,
        },
    )
    await record_scan(session, kind=ScanKind.DISPATCH, result=result, user_id=user_id)
    await session.commit()

    code = "OK" if result.success else (result.error_code or ErrorCode.UNKNOWN_ERROR).value
    SCAN_OUTCOMES.labels(kind=ScanKind.DISPATCH.value, code=code).inc()
    SCAN_LATENCY.labels(kind=ScanKind.DISPATCH.value).observe(elapsed)
    return result


def _fail(result: IntakeResult, code: ErrorCode, message: str, suggestion: Optional[str] = None) -> IntakeResult:
    result.success = False
    result.error_code = code
    result.message = message
    result.suggestion = suggestion
    return result


async def _dispatch_locked(
    session: AsyncSession,
    hit: LocateResult,
    result: IntakeResult,
    *,
    entry_type: EntryType,
    courier_code: Optional[str],
    user_id: Optional[str],
) -> IntakeResult:
    order = hit.order
    await session.refresh(order)
    _order_fields(result, order)
    result.status_before = order.status

    if order.status == OrderStatus.CANCELLED.value:
        return _fail(
            result,
            ErrorCode.ORDER_CANCELLED,
            f"Order {order.order_number} is cancelled",
            "Reinstate the order before dispatching it",
        )
    if OrderStatus(order.status).is_terminal:
        logger.warning(
            "dispatching order %s from terminal status %s", order.order_number, order.status
        )

    courier = order.courier or courier_code
    if not courier:
        return _fail(
            result,
            ErrorCode.NO_COURIER,
            "Order has no courier and no courier was selected",
            "Select a courier for this batch",
        )

    existing = await session.scalar(select(Dispatch.id).where(Dispatch.order_id == order.id))
    if existing is not None:
        return _fail(result, ErrorCode.ALREADY_DISPATCHED, f"Order {order.order_number} is already dispatched")

    if entry_type == EntryType.TRACKING_ID and result.entry != order.tracking_id:
        order.tracking_id = result.entry

    session.add(
        Dispatch(
            order_id=order.id,
            courier=courier,
            tracking_id=order.tracking_id,
            dispatched_by=user_id,
        )
    )
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        return _fail(result, ErrorCode.ALREADY_DISPATCHED, f"Order {result.order_number} is already dispatched")
    except SQLAlchemyError as e:
        await session.rollback()
        logger.exception("dispatch insert failed for %s", result.order_number)
        return _fail(result, ErrorCode.DB_ERROR, f"Failed to create dispatch: {e.__class__.__name__}")

    order.status = OrderStatus.DISPATCHED.value
    order.dispatched_at = utcnow()
    if not order.courier:
        order.courier = courier
    order.tags = merge_tags(order.tags or [], order.status)
    await session.flush()
    await enqueue_tag_sync(session, order)

    result.success = True
    result.courier = order.courier
    result.tracking_id = order.tracking_id
    return result


async def intake(
    session: AsyncSession,
    *,
    entry: str,
    entry_type: EntryType | str = EntryType.TRACKING_ID,
    courier_code: Optional[str] = None,
    user_id: Optional[str] = None,
    trace: Optional[TraceContext] = None,
) -> IntakeResult:
    started = time.perf_counter()
    et = EntryType(entry_type)
    ctx = ensure_trace(trace, f"scan:dispatch:{et.value}")
    finish = dict(started=started, user_id=user_id, trace_id=ctx.trace_id, entry_type=et)

    check = validate(entry)
    result = IntakeResult(success=False, entry=check.entry)
    if not check.ok:
        _fail(result, check.code or ErrorCode.INVALID_FORMAT, check.message or "Invalid entry", check.suggestion)
        return await _finish(session, result, **finish)

    hit = await locate(session, check.entry, et)
    if hit is None:
        _fail(
            result,
            ErrorCode.NOT_FOUND,
            f"No order found for {et.value} '{check.entry}'",
            "Check the entry type (tracking id vs order number)",
        )
        return await _finish(session, result, **finish)
    result.match_type = hit.match_type

    async with order_locks.hold(order_key(hit.order.id)):
        await _dispatch_locked(
            session, hit, result, entry_type=et, courier_code=courier_code, user_id=user_id
        )
        return await _finish(session, result, **finish)


async def intake_bulk(
    session: AsyncSession,
    *,
    entries: List[str],
    entry_type: EntryType | str = EntryType.TRACKING_ID,
    courier_code: Optional[str] = None,
    user_id: Optional[str] = None,
) -> BulkResult:
    """批量：去重后逐条顺序处理，单条失败不影响其它条目。"""
    unique, dupes = dedupe_entries(entries)
    bulk = BulkResult(duplicates_removed=dupes)
    trace = ensure_trace(None, "bulk:dispatch")
    for e in unique:
        try:
            r = await intake(
                session,
                entry=e,
                entry_type=entry_type,
                courier_code=courier_code,
                user_id=user_id,
                trace=trace,
            )
        except Exception as ex:
            await session.rollback()
            logger.exception("bulk dispatch entry crashed: %s", e)
            r = _fail(IntakeResult(success=False, entry=e), ErrorCode.UNKNOWN_ERROR, str(ex))
        bulk.add(r)
    logger.info(
        "bulk dispatch done: ok=%d err=%d dupes=%d",
        bulk.success_count,
        bulk.error_count,
        bulk.duplicates_removed,
    )
    return bulk
