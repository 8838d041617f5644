# tests/services/test_courier_retry_worker.py
from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.db.base import as_utc, utcnow
from orderflow.models import CourierBookingQueueEntry, Order
from orderflow.models.enums import ErrorCode
from orderflow.services.courier.http import CourierHttp
from orderflow.services.courier_booking_queue import enqueue_retry, list_failed
from orderflow.services.courier_booking_service import CourierBookingService
from orderflow.services.courier_retry_worker import run_retry_queue
from orderflow.services.dispatch_intake_service import intake

pytestmark = pytest.mark.grp_courier


def _refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _service(handler=_refused, *, mock: bool = False) -> CourierBookingService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CourierBookingService(CourierHttp(client), mock=mock)


async def _due_entry(session: AsyncSession, order_id: int, courier_id: int, request: dict, **overrides) -> int:
    entry = await enqueue_retry(
        session,
        order_id=order_id,
        courier_id=courier_id,
        booking_request=request,
        error_code=ErrorCode.NETWORK_TIMEOUT,
        error_message="timed out",
    )
    entry.next_retry_at = utcnow() - timedelta(minutes=1)
    for k, v in overrides.items():
        setattr(entry, k, v)
    await session.commit()
    return entry.id


@pytest.mark.asyncio
async def test_retryable_failure_is_rescheduled_with_backoff(session: AsyncSession, make_order, make_courier, booking_request_payload):
    order = await make_order("SHOP-1001")
    courier = await make_courier("postex")
    entry_id = await _due_entry(session, order.id, courier.id, booking_request_payload)

    summary = await run_retry_queue(session, _service())

    assert summary.processed == 1
    assert summary.rescheduled == 1
    entry = await session.get(CourierBookingQueueEntry, entry_id)
    await session.refresh(entry)
    assert entry.status == "retrying"
    assert entry.retry_count == 1
    assert entry.last_error_code == "NETWORK_ERROR"
    assert as_utc(entry.next_retry_at) > utcnow() + timedelta(minutes=14)


@pytest.mark.asyncio
async def test_success_removes_entry(session: AsyncSession, make_order, make_courier, booking_request_payload):
    order = await make_order("SHOP-1001")
    courier = await make_courier("tcs", name="TCS")
    await _due_entry(session, order.id, courier.id, booking_request_payload)

    summary = await run_retry_queue(session, _service(mock=True))

    assert summary.succeeded == 1
    assert await session.scalar(select(func.count(CourierBookingQueueEntry.id))) == 0
    order = await session.get(Order, order.id)
    await session.refresh(order)
    assert order.status == "booked"
    assert order.tracking_id == "MOCKTCS1001"


@pytest.mark.asyncio
async def test_exhausted_entry_becomes_failed(session: AsyncSession, make_order, make_courier, booking_request_payload):
    order = await make_order("SHOP-1001")
    courier = await make_courier("postex")
    entry_id = await _due_entry(session, order.id, courier.id, booking_request_payload, retry_count=4, max_retries=5)

    summary = await run_retry_queue(session, _service())

    assert summary.failed == 1
    assert summary.failed_entry_ids == [entry_id]
    failed = await list_failed(session)
    assert [f.id for f in failed] == [entry_id]
    assert failed[0].retry_count == 5


@pytest.mark.asyncio
async def test_non_retryable_failure_is_failed_immediately(session: AsyncSession, make_order, make_courier, booking_request_payload):
    order = await make_order("SHOP-1001")
    courier = await make_courier("postex", pickup_address_code=None)
    entry_id = await _due_entry(session, order.id, courier.id, booking_request_payload)

    summary = await run_retry_queue(session, _service())

    assert summary.failed == 1
    entry = await session.get(CourierBookingQueueEntry, entry_id)
    await session.refresh(entry)
    assert entry.status == "failed"
    assert entry.last_error_code == "CONFIGURATION_REQUIRED"
    assert entry.retry_count == 0


@pytest.mark.asyncio
async def test_invalid_stored_request_is_missing_fields(session: AsyncSession, make_order, make_courier):
    order = await make_order("SHOP-1001")
    courier = await make_courier("postex")
    entry_id = await _due_entry(session, order.id, courier.id, {"pickup_address": {"name": "x"}})

    summary = await run_retry_queue(session, _service())

    assert summary.failed == 1
    entry = await session.get(CourierBookingQueueEntry, entry_id)
    await session.refresh(entry)
    assert entry.last_error_code == ErrorCode.MISSING_FIELDS.value


@pytest.mark.asyncio
async def test_entries_not_yet_due_are_skipped(session: AsyncSession, make_order, make_courier, booking_request_payload):
    order = await make_order("SHOP-1001")
    courier = await make_courier("postex")
    await enqueue_retry(
        session,
        order_id=order.id,
        courier_id=courier.id,
        booking_request=booking_request_payload,
        error_code=ErrorCode.NETWORK_TIMEOUT,
        error_message="timed out",
    )
    await session.commit()

    summary = await run_retry_queue(session, _service())

    assert summary.processed == 0


@pytest.mark.asyncio
async def test_entry_for_order_dispatched_by_scan_is_resolved(session: AsyncSession, make_order, make_courier, booking_request_payload):
    order = await make_order("SHOP-1001", tracking_id="TRK1234567890", courier="postex")
    courier = await make_courier("postex")
    await _due_entry(session, order.id, courier.id, booking_request_payload)

    scanned = await intake(session, entry="TRK1234567890", user_id="op-1")
    assert scanned.success, scanned.message

    summary = await run_retry_queue(session, _service())

    assert summary.processed == 1
    assert summary.resolved == 1
    assert summary.failed == 0
    assert summary.failed_entry_ids == []
    assert await session.scalar(select(func.count(CourierBookingQueueEntry.id))) == 0
    assert await list_failed(session) == []
