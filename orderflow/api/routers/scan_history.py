# orderflow/api/routers/scan_history.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_session
from orderflow.models.enums import ScanKind
from orderflow.services.scan_history import list_scans, render_csv

router = APIRouter(prefix="/scan-history", tags=["scan-history"])


@router.get("/export.csv")
async def export_csv(
    kind: Optional[ScanKind] = Query(default=None),
    limit: int = Query(default=5000, ge=1, le=50000),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_scans(session, kind=kind, limit=limit)
    filename = f"scan-history-{kind.value if kind else 'all'}.csv"
    return Response(
        content=render_csv(rows),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
