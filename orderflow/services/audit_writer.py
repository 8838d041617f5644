# orderflow/services/audit_writer.py
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.models.audit_event import AuditEvent
from orderflow.services.audit_logger import log_event


class AuditEventWriter:
    """
    统一审计写入器：

    - 唯一职责：往 audit_events 表加一行（与业务写入同一事务，随业务一起提交/回滚）。
    - 语义约定：
        * category = flow（WEBHOOK / DISPATCH / RETURN / BOOKING / ORDER / SCAN）
        * ref      = 业务引用（一般是订单号，找不到订单时是原始录入）
        * meta     = json，至少包含 flow / event，其余字段任意扩展
        * trace_id = 链路 ID
    - 同时打一行 log_event，方便只看日志的排障。
    """

    @staticmethod
    async def write(
        session: AsyncSession,
        *,
        flow: str,
        event: str,
        ref: str,
        trace_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        payload: Dict[str, Any] = dict(meta or {})
        payload.setdefault("flow", flow)
        payload.setdefault("event", event)
        if trace_id:
            payload.setdefault("trace_id", trace_id)

        row = AuditEvent(category=flow, ref=ref, trace_id=trace_id, meta=payload)
        session.add(row)
        await session.flush()

        log_event(f"{flow}.{event}", ref, payload)
        return row
