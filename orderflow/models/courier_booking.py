# orderflow/models/courier_booking.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.db.base import Base, utcnow
from orderflow.models.enums import QueueStatus


class CourierBookingAttempt(Base):
    """
    快递下单尝试（只追加，不汇总、不删除）：
    成功 / 部分成功（无面单）/ 失败 每次都记一行，是与快递扯皮时的取证依据。
    """

    __tablename__ = "courier_booking_attempts"
    __table_args__ = (Index("ix_booking_attempts_order", "order_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False)
    courier_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("couriers.id"), nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    request_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    response_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    tracking_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    label_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class CourierBookingQueueEntry(Base):
    """下单失败且可重试时的队列项（由重试 worker 消费）。"""

    __tablename__ = "courier_booking_queue"
    __table_args__ = (Index("ix_booking_queue_due", "status", "next_retry_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False)
    courier_id: Mapped[int] = mapped_column(Integer, ForeignKey("couriers.id"), nullable=False)
    booking_request: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=QueueStatus.PENDING.value)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    next_retry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<CourierBookingQueueEntry id={self.id} order_id={self.order_id} "
            f"status={self.status} retry={self.retry_count}/{self.max_retries}>"
        )
