# orderflow/models/order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.db.base import Base, utcnow
from orderflow.models.enums import OrderStatus


class Order(Base):
    """
    订单主档（内部台账 = 状态唯一真相）

    - status 仅由对账引擎 / 发运录入 / 人工改状态 / 快递终态事件推进；
    - tags 为有序字符串列表，至多包含一个状态标签（按前缀替换）；
    - 从不物理删除：取消是一种状态。
    """

    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_status", "status"),
        Index("ix_orders_tracking_id", "tracking_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # 业务单号（带平台前缀，例如 SHOP-1001）
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    # 平台侧订单 id / 原始编号
    external_order_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    external_order_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shipping_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    courier: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tracking_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # 最近一次成功推送到平台的状态标签
    pushed_status_tag: Mapped[str | None] = mapped_column(String(128), nullable=True)

    booked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} no={self.order_number!r} status={self.status} "
            f"courier={self.courier!r} tracking={self.tracking_id!r}>"
        )
