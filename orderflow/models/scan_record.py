# orderflow/models/scan_record.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.db.base import Base, utcnow


class ScanRecord(Base):
    """扫描历史：每条处理过的录入一行（成功 / 失败都记）。"""

    __tablename__ = "scan_records"
    __table_args__ = (Index("ix_scan_records_kind_time", "kind", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    entry: Mapped[str] = mapped_column(String(256), nullable=False)
    order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    order_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    courier: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tracking_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    match_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    processing_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
