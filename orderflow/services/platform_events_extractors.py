# orderflow/services/platform_events_extractors.py
from __future__ import annotations

from datetime import UTC, datetime
from typing import Iterable, Optional

from orderflow.services.platform_events_types import FulfillmentPayload

_EXCLUDED_FULFILLMENT_STATES = frozenset({"cancelled", "failure", "error"})

# 承运商名 → 内部快递代码（大小写不敏感的子串匹配，按顺序取第一个命中）
CARRIER_CODE_TABLE: tuple[tuple[str, str], ...] = (
    ("leopard", "leopard"),
    ("tcs", "tcs"),
    ("postex", "postex"),
    ("post ex", "postex"),
    ("trax", "trax"),
    ("m&p", "m&p"),
    ("call courier", "callcourier"),
    ("callcourier", "callcourier"),
)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def _ts(f: FulfillmentPayload) -> datetime:
    if f.created_at is None:
        return _EPOCH
    if f.created_at.tzinfo is None:
        return f.created_at.replace(tzinfo=UTC)
    return f.created_at


def select_latest_fulfillment(
    fulfillments: Iterable[FulfillmentPayload],
) -> Optional[FulfillmentPayload]:
    """过滤掉 cancelled/failure/error，按 created_at 排序（稳定），取最后一个。"""
    live = [
        f
        for f in fulfillments
        if (f.status or "").lower() not in _EXCLUDED_FULFILLMENT_STATES
    ]
    if not live:
        return None
    return sorted(live, key=_ts)[-1]


def map_carrier(name: Optional[str]) -> Optional[str]:
    """未识别的承运商名原样透传。"""
    if not name:
        return None
    low = name.lower()
    for needle, code in CARRIER_CODE_TABLE:
        if needle in low:
            return code
    return name
