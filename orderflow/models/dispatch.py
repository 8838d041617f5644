# orderflow/models/dispatch.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.db.base import Base, utcnow
from orderflow.models.enums import DispatchStatus


class Dispatch(Base):
    """
    发运记录：一个订单至多一条（order_id 唯一约束兜底并发双发）。
    仅在撤销发运时删除。
    """

    __tablename__ = "dispatches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    courier: Mapped[str] = mapped_column(String(64), nullable=False)
    tracking_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    booking_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DispatchStatus.DISPATCHED.value
    )
    dispatched_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Dispatch id={self.id} order_id={self.order_id} courier={self.courier!r}>"
