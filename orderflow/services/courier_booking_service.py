# orderflow/services/courier_booking_service.py
"""
快递下单：

  1) 订单已有发运 → ALREADY_DISPATCHED（不发网络请求）
  2) 调适配器下单（整体超时 COURIER_HTTP_TIMEOUT_SECONDS）
  3) 无运单号 → BOOKING_MISSING_TRACKING_ID
  4) 面单：随下单返回 / 轮询（超时 → LABEL_TIMEOUT，部分成功，不自动重试）/ 不支持 → BOOKING_NO_LABEL
  5) 成功（含部分成功）：持锁更新订单 + 快递标签 + 建发运 + 记尝试 + 标签入队 + 审计
  6) 失败：记尝试；可重试且允许入队 → 进重试队列

fetch_label：面单超时后人工重取，只轮询面单，不重新下单。

每次尝试（成功/失败）都追加一行 CourierBookingAttempt。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.audit import TraceContext, ensure_trace
from orderflow.core.config import get_settings
from orderflow.core.locks import order_key, order_locks
from orderflow.db.base import utcnow
from orderflow.metrics import BOOKING_OUTCOMES
from orderflow.models.courier import Courier
from orderflow.models.courier_booking import CourierBookingAttempt
from orderflow.models.dispatch import Dispatch
from orderflow.models.enums import BOOKABLE_STATUSES, AttemptStatus, ErrorCode, OrderStatus
from orderflow.models.order import Order
from orderflow.services.audit_writer import AuditEventWriter
from orderflow.services.courier.adapters import CourierAdapter, get_adapter
from orderflow.services.courier.classify import classify_exception, is_retryable
from orderflow.services.courier.http import CourierHttp
from orderflow.services.courier.label_poller import poll_label
from orderflow.services.courier.types import (
    BookingOutcome,
    BookingRequest,
    BookingResponse,
    LabelData,
)
from orderflow.services.courier_booking_queue import enqueue_retry, next_attempt_number
from orderflow.services.tag_sync import enqueue_tag_sync, merge_tags, replace_prefixed

logger = logging.getLogger("orderflow.booking")


async def find_courier(session: AsyncSession, courier_ref: int | str) -> Optional[Courier]:
    """按 id 或 code 找启用中的快递。"""
    if isinstance(courier_ref, int) or str(courier_ref).isdigit():
        stmt = select(Courier).where(Courier.id == int(courier_ref))
    else:
        stmt = select(Courier).where(Courier.code == str(courier_ref).lower())
    courier = (await session.execute(stmt.where(Courier.is_active.is_(True)))).scalars().first()
    return courier


class CourierBookingService:
    def __init__(self, http: CourierHttp, *, mock: Optional[bool] = None) -> None:
        s = get_settings()
        self.http = http
        self.mock = s.courier_mock_mode if mock is None else mock
        self.call_timeout = s.COURIER_HTTP_TIMEOUT_SECONDS
        self.poll_interval = s.LABEL_POLL_INTERVAL_SECONDS
        self.poll_timeout = s.LABEL_POLL_TIMEOUT_SECONDS

    async def _fetch_label(
        self, adapter: CourierAdapter, resp: BookingResponse
    ) -> tuple[Optional[LabelData], Optional[ErrorCode], Optional[str]]:
        if resp.label is not None and (resp.label.url or resp.label.data):
            return resp.label, None, None
        if not adapter.supports_label_fetch:
            return None, ErrorCode.BOOKING_NO_LABEL, "Courier did not return a label"
        try:
            label = await poll_label(
                lambda: adapter.fetch_label(resp.tracking_id),
                interval=self.poll_interval,
                timeout=self.poll_timeout,
            )
            return label, None, None
        except asyncio.TimeoutError:
            return None, ErrorCode.LABEL_TIMEOUT, (
                f"Label not ready after {self.poll_timeout:g}s; retry label fetch manually"
            )

    async def book(
        self,
        session: AsyncSession,
        *,
        order_id: int,
        courier_ref: int | str,
        request: BookingRequest,
        user_id: Optional[str] = None,
        enqueue_on_failure: bool = True,
        trace: Optional[TraceContext] = None,
    ) -> BookingOutcome:
        ctx = ensure_trace(trace, f"booking:{order_id}")

        order = await session.get(Order, order_id)
        if order is None:
            return BookingOutcome(False, order_id, error_code=ErrorCode.ORDER_NOT_FOUND, message="Order not found")
        courier = await find_courier(session, courier_ref)
        if courier is None:
            return BookingOutcome(
                False, order_id, error_code=ErrorCode.COURIER_NOT_FOUND, message=f"Courier {courier_ref} not found"
            )

        if await session.scalar(select(Dispatch.id).where(Dispatch.order_id == order_id)) is not None:
            return BookingOutcome(
                False,
                order_id,
                courier=courier.code,
                error_code=ErrorCode.ALREADY_DISPATCHED,
                message=f"Order {order.order_number} already has a dispatch",
            )

        request_payload = request.model_dump(mode="json")
        adapter = get_adapter(courier, self.http, mock=self.mock)

        try:
            resp = await asyncio.wait_for(adapter.book(order, request), timeout=self.call_timeout)
        except Exception as e:
            code, message = classify_exception(e)
            response = getattr(e, "response", None)
            return await self._record_failure(
                session,
                order=order,
                courier=courier,
                code=code,
                message=message,
                request_payload=request_payload,
                response_payload=response if isinstance(response, dict) else None,
                user_id=user_id,
                enqueue=enqueue_on_failure,
                trace_id=ctx.trace_id,
            )

        if not resp.tracking_id:
            return await self._record_failure(
                session,
                order=order,
                courier=courier,
                code=ErrorCode.BOOKING_MISSING_TRACKING_ID,
                message=f"{courier.name} response did not include a tracking id",
                request_payload=request_payload,
                response_payload=resp.raw,
                user_id=user_id,
                enqueue=enqueue_on_failure,
                trace_id=ctx.trace_id,
            )

        label, label_code, label_msg = await self._fetch_label(adapter, resp)
        return await self._apply_success(
            session,
            order_id=order_id,
            courier=courier,
            resp=resp,
            label=label,
            label_code=label_code,
            label_msg=label_msg,
            request_payload=request_payload,
            user_id=user_id,
            trace_id=ctx.trace_id,
        )

    async def _add_attempt(
        self,
        session: AsyncSession,
        *,
        order_id: int,
        courier_id: Optional[int],
        status: AttemptStatus,
        request_payload: Dict[str, Any],
        response_payload: Optional[Dict[str, Any]] = None,
        error_code: Optional[ErrorCode] = None,
        error_message: Optional[str] = None,
        tracking_id: Optional[str] = None,
        label_url: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> CourierBookingAttempt:
        attempt = CourierBookingAttempt(
            order_id=order_id,
            courier_id=courier_id,
            attempt_number=await next_attempt_number(session, order_id),
            status=status.value,
            request_payload=request_payload,
            response_payload=response_payload,
            error_code=error_code.value if error_code else None,
            error_message=error_message,
            tracking_id=tracking_id,
            label_url=label_url,
            user_id=user_id,
        )
        session.add(attempt)
        await session.flush()
        return attempt

    async def _record_failure(
        self,
        session: AsyncSession,
        *,
        order: Order,
        courier: Courier,
        code: ErrorCode,
        message: str,
        request_payload: Dict[str, Any],
        response_payload: Optional[Dict[str, Any]],
        user_id: Optional[str],
        enqueue: bool,
        trace_id: str,
    ) -> BookingOutcome:
        retryable = is_retryable(code)
        await self._add_attempt(
            session,
            order_id=order.id,
            courier_id=courier.id,
            status=AttemptStatus.FAILED,
            request_payload=request_payload,
            response_payload=response_payload,
            error_code=code,
            error_message=message,
            user_id=user_id,
        )
        queued = False
        if retryable and enqueue:
            await enqueue_retry(
                session,
                order_id=order.id,
                courier_id=courier.id,
                booking_request=request_payload,
                error_code=code,
                error_message=message,
                user_id=user_id,
            )
            queued = True

        await AuditEventWriter.write(
            session,
            flow="BOOKING",
            event="BOOKING_FAILED",
            ref=order.order_number,
            trace_id=trace_id,
            meta={
                "courier": courier.code,
                "error_code": code.value,
                "retryable": retryable,
                "queued": queued,
                "user_id": user_id,
            },
        )
        await session.commit()

        log = logger.warning if retryable else logger.error
        log("booking failed order=%s courier=%s code=%s: %s", order.order_number, courier.code, code.value, message)
        BOOKING_OUTCOMES.labels(courier=courier.code, code=code.value).inc()
        return BookingOutcome(
            False,
            order.id,
            courier=courier.code,
            error_code=code,
            message=message,
            retryable=retryable,
            attempt_status=AttemptStatus.FAILED,
            queued=queued,
        )

    async def _apply_success(
        self,
        session: AsyncSession,
        *,
        order_id: int,
        courier: Courier,
        resp: BookingResponse,
        label: Optional[LabelData],
        label_code: Optional[ErrorCode],
        label_msg: Optional[str],
        request_payload: Dict[str, Any],
        user_id: Optional[str],
        trace_id: str,
    ) -> BookingOutcome:
        s = get_settings()
        tracking = resp.tracking_id
        label_url = label.url if label else None
        attempt_status = AttemptStatus.SUCCESS if label_code is None else AttemptStatus.PARTIAL

        async with order_locks.hold(order_key(order_id)):
            order = await session.get(Order, order_id)
            await session.refresh(order)

            if await session.scalar(select(Dispatch.id).where(Dispatch.order_id == order_id)) is not None:
                # 下单期间别的流程已经发运：快递侧已生成运单，只留痕不改订单
                message = f"Order {order.order_number} was dispatched while booking; courier tracking {tracking}"
                await self._add_attempt(
                    session,
                    order_id=order_id,
                    courier_id=courier.id,
                    status=AttemptStatus.PARTIAL,
                    request_payload=request_payload,
                    response_payload=resp.raw,
                    error_code=ErrorCode.ALREADY_DISPATCHED,
                    error_message=message,
                    tracking_id=tracking,
                    label_url=label_url,
                    user_id=user_id,
                )
                await session.commit()
                logger.warning(message)
                BOOKING_OUTCOMES.labels(courier=courier.code, code=ErrorCode.ALREADY_DISPATCHED.value).inc()
                return BookingOutcome(
                    False,
                    order_id,
                    courier=courier.code,
                    tracking_id=tracking,
                    error_code=ErrorCode.ALREADY_DISPATCHED,
                    message=message,
                    attempt_status=AttemptStatus.PARTIAL,
                )

            before = order.status
            order.tracking_id = tracking
            order.courier = courier.code
            order.booked_at = utcnow()
            if OrderStatus(order.status) in BOOKABLE_STATUSES:
                order.status = OrderStatus.BOOKED.value
            tags = replace_prefixed(order.tags or [], s.COURIER_TAG_PREFIX, f"{s.COURIER_TAG_PREFIX}{courier.name}")
            order.tags = merge_tags(tags, order.status)

            session.add(
                Dispatch(
                    order_id=order_id,
                    courier=courier.code,
                    tracking_id=tracking,
                    booking_response=resp.raw,
                    dispatched_by=user_id,
                )
            )
            await self._add_attempt(
                session,
                order_id=order_id,
                courier_id=courier.id,
                status=attempt_status,
                request_payload=request_payload,
                response_payload=resp.raw,
                error_code=label_code,
                error_message=label_msg,
                tracking_id=tracking,
                label_url=label_url,
                user_id=user_id,
            )
            await enqueue_tag_sync(session, order)
            await AuditEventWriter.write(
                session,
                flow="BOOKING",
                event="BOOKED",
                ref=order.order_number,
                trace_id=trace_id,
                meta={
                    "courier": courier.code,
                    "tracking_id": tracking,
                    "status_before": before,
                    "status_after": order.status,
                    "attempt_status": attempt_status.value,
                    "label_code": label_code.value if label_code else None,
                    "user_id": user_id,
                },
            )
            await session.commit()

        BOOKING_OUTCOMES.labels(courier=courier.code, code=(label_code.value if label_code else "OK")).inc()
        if label_code is not None:
            logger.warning("booking partial order=%s tracking=%s: %s", order_id, tracking, label_msg)

        # 面单轮询超时：运单已落库，面单等人工重取，对调用方仍是失败
        success = label_code != ErrorCode.LABEL_TIMEOUT
        return BookingOutcome(
            success,
            order_id,
            courier=courier.code,
            tracking_id=tracking,
            label_url=label_url,
            label_data=label.data if label else None,
            error_code=label_code,
            message=label_msg,
            retryable=False,
            attempt_status=attempt_status,
        )

    async def fetch_label(
        self,
        session: AsyncSession,
        *,
        order_id: int,
        user_id: Optional[str] = None,
        trace: Optional[TraceContext] = None,
    ) -> BookingOutcome:
        """
        已下单订单重取面单（面单轮询超时后由操作员触发）：
        不重新下单，只按发运记录上的运单号轮询面单，结果追加一行尝试记录。
        """
        ctx = ensure_trace(trace, f"label:{order_id}")

        order = await session.get(Order, order_id)
        if order is None:
            return BookingOutcome(False, order_id, error_code=ErrorCode.ORDER_NOT_FOUND, message="Order not found")
        dispatch = (
            await session.execute(select(Dispatch).where(Dispatch.order_id == order_id))
        ).scalars().first()
        if dispatch is None or not dispatch.tracking_id:
            return BookingOutcome(
                False,
                order_id,
                error_code=ErrorCode.NOT_FOUND,
                message=f"Order {order.order_number} has no booked dispatch",
            )
        courier = await find_courier(session, dispatch.courier)
        if courier is None:
            return BookingOutcome(
                False,
                order_id,
                error_code=ErrorCode.COURIER_NOT_FOUND,
                message=f"Courier {dispatch.courier} not found",
            )

        tracking = dispatch.tracking_id
        adapter = get_adapter(courier, self.http, mock=self.mock)
        label, label_code, label_msg = await self._fetch_label(adapter, BookingResponse(tracking_id=tracking))
        attempt_status = AttemptStatus.SUCCESS if label is not None else AttemptStatus.FAILED

        await self._add_attempt(
            session,
            order_id=order_id,
            courier_id=courier.id,
            status=attempt_status,
            request_payload={"action": "label_fetch", "tracking_id": tracking},
            error_code=label_code,
            error_message=label_msg,
            tracking_id=tracking,
            label_url=label.url if label else None,
            user_id=user_id,
        )
        await AuditEventWriter.write(
            session,
            flow="BOOKING",
            event="LABEL_FETCHED" if label is not None else "LABEL_FETCH_FAILED",
            ref=order.order_number,
            trace_id=ctx.trace_id,
            meta={
                "courier": courier.code,
                "tracking_id": tracking,
                "label_code": label_code.value if label_code else None,
                "user_id": user_id,
            },
        )
        await session.commit()

        if label is None:
            logger.warning("label fetch failed order=%s tracking=%s: %s", order_id, tracking, label_msg)
        return BookingOutcome(
            label is not None,
            order_id,
            courier=courier.code,
            tracking_id=tracking,
            label_url=label.url if label else None,
            label_data=label.data if label else None,
            error_code=label_code,
            message=label_msg,
            attempt_status=attempt_status,
        )
