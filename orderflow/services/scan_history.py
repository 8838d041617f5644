# orderflow/services/scan_history.py
from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.db.base import as_utc
from orderflow.models.enums import ScanKind
from orderflow.models.scan_record import ScanRecord
from orderflow.services.dispatch_intake_types import IntakeResult

CSV_COLUMNS = [
    "Timestamp",
    "Entry",
    "OrderNumber",
    "Customer",
    "Amount",
    "Courier",
    "TrackingId",
    "Status",
    "Reason",
    "MatchType",
    "ProcessingTime",
]


async def record_scan(
    session: AsyncSession,
    *,
    kind: ScanKind,
    result: IntakeResult,
    user_id: Optional[str] = None,
) -> ScanRecord:
    """每条处理过的录入写一行（成功失败都写），随调用方事务提交。"""
    row = ScanRecord(
        kind=kind.value,
        entry=result.entry[:256],
        order_id=result.order_id,
        order_number=result.order_number,
        customer=result.customer,
        amount=result.amount,
        courier=result.courier,
        tracking_id=result.tracking_id,
        status="success" if result.success else "error",
        reason=(result.error_code.value if result.error_code else None),
        match_type=(result.match_type.value if result.match_type else None),
        processing_ms=result.processing_ms,
        user_id=user_id,
    )
    session.add(row)
    await session.flush()
    return row


async def list_scans(
    session: AsyncSession,
    *,
    kind: Optional[ScanKind] = None,
    since: Optional[datetime] = None,
    limit: int = 5000,
) -> List[ScanRecord]:
    stmt = select(ScanRecord)
    if kind is not None:
        stmt = stmt.where(ScanRecord.kind == kind.value)
    if since is not None:
        stmt = stmt.where(ScanRecord.created_at >= since)
    stmt = stmt.order_by(ScanRecord.created_at, ScanRecord.id).limit(limit)
    return list((await session.execute(stmt)).scalars().all())


def render_csv(rows: Iterable[ScanRecord]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_COLUMNS)
    for r in rows:
        ts = as_utc(r.created_at)
        writer.writerow(
            [
                ts.isoformat() if ts else "",
                r.entry,
                r.order_number or "",
                r.customer or "",
                "" if r.amount is None else str(r.amount),
                r.courier or "",
                r.tracking_id or "",
                r.status,
                r.reason or "",
                r.match_type or "",
                "" if r.processing_ms is None else f"{r.processing_ms}ms",
            ]
        )
    return buf.getvalue()
