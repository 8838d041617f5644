# orderflow/services/order_reconcile_types.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class OrderSnapshot:
    """对账输入：订单当前的内部状态（只读快照）。"""

    status: str
    courier: Optional[str]
    tracking_id: Optional[str]
    tags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReconcileDecision:
    """对账输出：权威字段的新值 + 哪些字段变了。"""

    status: str
    courier: Optional[str]
    tracking_id: Optional[str]
    tags: List[str]
    changed: List[str]
    rebooked: bool = False
    cancelled: bool = False
    ignored_cancellation: bool = False

    @property
    def is_noop(self) -> bool:
        return not self.changed


@dataclass
class WebhookOutcome:
    order_id: int
    order_number: str
    created: bool
    status: str
    changed: List[str]
