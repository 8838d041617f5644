# orderflow/services/courier/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from orderflow.models.enums import AttemptStatus, ErrorCode


class Address(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    phone: Optional[str] = None
    address: str
    city: str


class BookingItem(BaseModel):
    name: str
    quantity: int = 1


class BookingRequest(BaseModel):
    """下单请求（API 边界 + 重试队列里持久化的就是它的 json dump）。"""

    model_config = ConfigDict(extra="ignore")

    pickup_address: Address
    delivery_address: Address
    weight: Decimal = Field(default=Decimal("0.5"), ge=0)
    pieces: int = Field(default=1, ge=1)
    cod_amount: Optional[Decimal] = None
    items: List[BookingItem] = Field(default_factory=list)
    special_instructions: Optional[str] = None


class CourierError(Exception):
    """快递适配器抛出的已分类错误（由下单服务统一判定是否可重试）。"""

    def __init__(self, code: ErrorCode, message: str, *, response: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.response = response


@dataclass
class LabelData:
    url: Optional[str] = None
    data: Optional[str] = None  # base64
    format: Optional[str] = None


@dataclass
class BookingResponse:
    """适配器的统一返回：运单号 + 面单（可能还没生成）。"""

    tracking_id: Optional[str]
    label: Optional[LabelData] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BookingOutcome:
    success: bool
    order_id: int
    courier: Optional[str] = None
    tracking_id: Optional[str] = None
    label_url: Optional[str] = None
    label_data: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None
    retryable: bool = False
    attempt_status: Optional[AttemptStatus] = None
    queued: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "order_id": self.order_id,
            "courier": self.courier,
            "tracking_id": self.tracking_id,
            "label_url": self.label_url,
            "label_data": self.label_data,
            "error_code": self.error_code.value if self.error_code else None,
            "error_kind": self.error_code.kind.value if self.error_code else None,
            "message": self.message,
            "is_retryable": self.retryable,
            "attempt_status": self.attempt_status.value if self.attempt_status else None,
            "queued": self.queued,
        }
