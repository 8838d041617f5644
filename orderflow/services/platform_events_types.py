# orderflow/services/platform_events_types.py
"""
平台 webhook 边界类型：进入系统后立即转换为这些模型，不把原始 dict 往里传。
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookTopic(StrEnum):
    ORDERS_CREATE = "orders/create"
    ORDERS_UPDATED = "orders/updated"
    ORDERS_CANCELLED = "orders/cancelled"
    ORDERS_FULFILLED = "orders/fulfilled"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CustomerPayload(_Payload):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        name = " ".join(p for p in (self.first_name, self.last_name) if p).strip()
        return name or None


class AddressPayload(_Payload):
    name: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class LineItemPayload(_Payload):
    id: Optional[int] = None
    sku: Optional[str] = None
    title: Optional[str] = None
    quantity: int = 1
    price: Optional[Decimal] = None


class FulfillmentPayload(_Payload):
    id: Optional[int] = None
    status: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_company: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderPayload(_Payload):
    id: int | str
    name: Optional[str] = None
    order_number: Optional[int | str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    total_price: Optional[Decimal] = None
    customer: Optional[CustomerPayload] = None
    shipping_address: Optional[AddressPayload] = None
    line_items: List[LineItemPayload] = Field(default_factory=list)
    fulfillments: List[FulfillmentPayload] = Field(default_factory=list)
    fulfillment_status: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    tags: str = ""

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_to_str(cls, v):
        if v is None:
            return ""
        if isinstance(v, list):
            return ", ".join(str(t) for t in v)
        return v

    @property
    def external_id(self) -> str:
        return str(self.id)

    @property
    def number(self) -> str:
        """平台订单编号（去掉 '#'）。"""
        if self.order_number is not None:
            return str(self.order_number)
        return (self.name or self.external_id).lstrip("#")


class PlatformOrderEvent(BaseModel):
    """一次 webhook 投递：topic + 订单快照。"""

    topic: WebhookTopic
    order: OrderPayload

    @property
    def is_cancellation(self) -> bool:
        return self.topic == WebhookTopic.ORDERS_CANCELLED or self.order.cancelled_at is not None

    @property
    def reports_fulfilled(self) -> bool:
        return (
            self.topic == WebhookTopic.ORDERS_FULFILLED
            or (self.order.fulfillment_status or "").lower() == "fulfilled"
        )
