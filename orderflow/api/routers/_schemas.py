# orderflow/api/routers/_schemas.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from orderflow.models.enums import EntryType, OrderStatus, ScanKind


class _In(BaseModel):
    """请求体同时接受 camelCase（前端）和 snake_case。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DispatchIntakeIn(_In):
    entry: str
    entry_type: EntryType = EntryType.TRACKING_ID
    courier_id: Optional[str] = None
    user_id: str


class DispatchBulkIn(_In):
    entries: List[str] = Field(default_factory=list)
    entry_type: EntryType = EntryType.TRACKING_ID
    courier_id: Optional[str] = None
    user_id: str


class ReturnIntakeIn(_In):
    entry: str
    user_id: str


class ReturnBulkIn(_In):
    entries: List[str] = Field(default_factory=list)
    user_id: str


class StatusChangeIn(_In):
    status: OrderStatus
    user_id: str
    reason: Optional[str] = None


class CourierEventIn(_In):
    tracking_id: str
    event: str


class ScannerStartIn(_In):
    kind: ScanKind = ScanKind.DISPATCH
    entry_type: EntryType = EntryType.TRACKING_ID
    courier_id: Optional[str] = None
    user_id: str


class ScanIn(_In):
    entry: str
