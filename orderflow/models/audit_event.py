# orderflow/models/audit_event.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.db.base import Base, utcnow


class AuditEvent(Base):
    """
    审计事件表 audit_events

      - category: 流程大类（WEBHOOK / DISPATCH / RETURN / BOOKING / ORDER）
      - ref:      业务引用（一般是订单号）
      - trace_id: 链路 ID
      - meta:     JSON，至少含 flow / event
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_cat_ref_time", "category", "ref", "created_at"),
        Index("ix_audit_events_trace_id", "trace_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    ref: Mapped[str] = mapped_column(String(128), nullable=False)
    trace_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent id={self.id} category={self.category} "
            f"ref={self.ref} trace_id={self.trace_id}>"
        )
