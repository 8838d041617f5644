# orderflow/models/return_record.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.db.base import Base, utcnow
from orderflow.models.enums import ReturnStatus


class ReturnRecord(Base):
    """
    退货记录（强契约·UTC 入库）
    - 每个订单至多一条，原地更新，不重复创建
    """

    __tablename__ = "returns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ReturnStatus.IN_TRANSIT.value
    )
    worth: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    received_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    claim_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    claim_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    claim_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<ReturnRecord id={self.id} order_id={self.order_id} status={self.status}>"
