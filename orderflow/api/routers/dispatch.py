# orderflow/api/routers/dispatch.py
from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_session
from orderflow.api.errors import NotFoundError
from orderflow.api.routers._schemas import DispatchBulkIn, DispatchIntakeIn
from orderflow.models.enums import ErrorCode
from orderflow.services.courier_booking_service import find_courier
from orderflow.services.dispatch_intake_service import intake, intake_bulk
from orderflow.services.order_status_service import cancel_dispatch

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


async def resolve_courier_code(session: AsyncSession, courier_id: Optional[str]) -> Optional[str]:
    """前端传的是 couriers.id 或 code；内部统一用 code。"""
    if not courier_id:
        return None
    courier = await find_courier(session, courier_id)
    if courier is None:
        raise NotFoundError(f"courier {courier_id} not found", code=ErrorCode.COURIER_NOT_FOUND.value)
    return courier.code


@router.post("/intake")
async def dispatch_intake(body: DispatchIntakeIn, session: AsyncSession = Depends(get_session)):
    courier_code = await resolve_courier_code(session, body.courier_id)
    result = await intake(
        session,
        entry=body.entry,
        entry_type=body.entry_type,
        courier_code=courier_code,
        user_id=body.user_id,
    )
    return result.to_dict()


@router.post("/bulk")
async def dispatch_bulk(body: DispatchBulkIn, session: AsyncSession = Depends(get_session)):
    courier_code = await resolve_courier_code(session, body.courier_id)
    bulk = await intake_bulk(
        session,
        entries=body.entries,
        entry_type=body.entry_type,
        courier_code=courier_code,
        user_id=body.user_id,
    )
    return {
        "success_count": bulk.success_count,
        "error_count": bulk.error_count,
        "duplicates_removed": bulk.duplicates_removed,
        "processed": bulk.processed,
        "errors": [asdict(e) for e in bulk.errors],
        "results": [r.to_dict() for r in bulk.results],
    }


@router.delete("/{order_id}")
async def dispatch_cancel(
    order_id: int,
    user_id: Optional[str] = Query(default=None),
    session: AsyncSession = Depends(get_session),
):
    res = await cancel_dispatch(session, order_id=order_id, user_id=user_id)
    if not res.success:
        raise NotFoundError(res.message or "not found", code=(res.error_code or ErrorCode.NOT_FOUND).value)
    return {"ok": True, "order_id": order_id, "status": res.status, "previous_status": res.previous_status}
