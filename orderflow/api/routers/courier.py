# orderflow/api/routers/courier.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_booking_service, get_session
from orderflow.api.errors import BizError, NotFoundError
from orderflow.api.routers._schemas import CourierEventIn, _In
from orderflow.db.base import as_utc
from orderflow.models.enums import ErrorCode, OrderStatus
from orderflow.services.courier.types import BookingRequest
from orderflow.services.courier_booking_queue import list_failed
from orderflow.services.courier_booking_service import CourierBookingService
from orderflow.services.courier_retry_worker import run_retry_queue
from orderflow.services.order_status_service import apply_courier_event

router = APIRouter(prefix="/courier", tags=["courier"])


class CourierBookIn(_In, BookingRequest):
    order_id: int
    courier_id: str
    user_id: Optional[str] = None


@router.post("/book")
async def courier_book(
    body: CourierBookIn,
    session: AsyncSession = Depends(get_session),
    service: CourierBookingService = Depends(get_booking_service),
):
    request = BookingRequest.model_validate(body.model_dump(include=set(BookingRequest.model_fields)))
    outcome = await service.book(
        session,
        order_id=body.order_id,
        courier_ref=body.courier_id,
        request=request,
        user_id=body.user_id,
    )
    if outcome.error_code in (ErrorCode.ORDER_NOT_FOUND, ErrorCode.COURIER_NOT_FOUND):
        raise NotFoundError(outcome.message or "not found", code=outcome.error_code.value)
    return outcome.to_dict()


@router.post("/label/{order_id}")
async def courier_label(
    order_id: int,
    user_id: Optional[str] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    service: CourierBookingService = Depends(get_booking_service),
):
    """面单超时后重取面单（不重新下单）。"""
    outcome = await service.fetch_label(session, order_id=order_id, user_id=user_id)
    if outcome.error_code in (ErrorCode.ORDER_NOT_FOUND, ErrorCode.COURIER_NOT_FOUND, ErrorCode.NOT_FOUND):
        raise NotFoundError(outcome.message or "not found", code=outcome.error_code.value)
    return outcome.to_dict()


@router.post("/retry-queue/run")
async def retry_queue_run(
    session: AsyncSession = Depends(get_session),
    service: CourierBookingService = Depends(get_booking_service),
):
    summary = await run_retry_queue(session, service)
    return summary.to_dict()


@router.get("/retry-queue/failed")
async def retry_queue_failed(session: AsyncSession = Depends(get_session)):
    rows = await list_failed(session)
    return [
        {
            "id": r.id,
            "order_id": r.order_id,
            "courier_id": r.courier_id,
            "retry_count": r.retry_count,
            "max_retries": r.max_retries,
            "last_error_code": r.last_error_code,
            "last_error_message": r.last_error_message,
            "updated_at": as_utc(r.updated_at).isoformat(),
        }
        for r in rows
    ]


@router.post("/events")
async def courier_event(body: CourierEventIn, session: AsyncSession = Depends(get_session)):
    """快递侧确认的终态：delivered / returned。"""
    if body.event not in (OrderStatus.DELIVERED.value, OrderStatus.RETURNED.value):
        raise BizError(f"unsupported courier event: {body.event}", code="UNSUPPORTED_EVENT")
    res = await apply_courier_event(session, tracking_id=body.tracking_id, event=body.event)
    if not res.success:
        raise NotFoundError(res.message or "not found", code=(res.error_code or ErrorCode.NOT_FOUND).value)
    return {"ok": True, "order_id": res.order_id, "status": res.status, "previous_status": res.previous_status}
