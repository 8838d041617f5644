# orderflow/api/routers/orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_session
from orderflow.api.errors import NotFoundError
from orderflow.api.routers._schemas import StatusChangeIn
from orderflow.services.order_status_service import change_status

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/{order_id}/status")
async def order_status_change(
    order_id: int, body: StatusChangeIn, session: AsyncSession = Depends(get_session)
):
    res = await change_status(
        session, order_id=order_id, status=body.status, user_id=body.user_id, reason=body.reason
    )
    if not res.success:
        raise NotFoundError(res.message or "order not found", code="ORDER_NOT_FOUND")
    return {"ok": True, "order_id": order_id, "status": res.status, "previous_status": res.previous_status}
