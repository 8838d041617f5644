# orderflow/models/courier.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.db.base import Base, utcnow


class Courier(Base):
    """
    快递公司配置：

    - code: 内部快递代码（postex / leopard / tcs / trax / rider / other ...）
    - auth_type: bearer_token | api_key_header | basic_auth | token_header
    - auth_config: 认证细节（header 名、用户名/密码等）
    """

    __tablename__ = "couriers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)

    booking_endpoint: Mapped[str | None] = mapped_column(String(512), nullable=True)
    label_endpoint: Mapped[str | None] = mapped_column(String(512), nullable=True)
    auth_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    auth_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    api_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    pickup_address_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    label_format: Mapped[str | None] = mapped_column(String(16), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Courier id={self.id} code={self.code!r} active={self.is_active}>"
