# orderflow/api/routers/returns.py
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_session
from orderflow.api.routers._schemas import ReturnBulkIn, ReturnIntakeIn
from orderflow.services.return_intake_service import receive_return, receive_returns_bulk

router = APIRouter(prefix="/returns", tags=["returns"])


@router.post("/intake")
async def return_intake(body: ReturnIntakeIn, session: AsyncSession = Depends(get_session)):
    result = await receive_return(session, entry=body.entry, user_id=body.user_id)
    return result.to_dict()


@router.post("/bulk")
async def return_bulk(body: ReturnBulkIn, session: AsyncSession = Depends(get_session)):
    bulk = await receive_returns_bulk(session, entries=body.entries, user_id=body.user_id)
    return {
        "success_count": bulk.success_count,
        "error_count": bulk.error_count,
        "duplicates_removed": bulk.duplicates_removed,
        "processed": bulk.processed,
        "errors": [asdict(e) for e in bulk.errors],
        "results": [r.to_dict() for r in bulk.results],
    }
