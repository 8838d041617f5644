# orderflow/services/order_locator.py
"""
订单定位：录入 → 至多一个订单。

tracking_id 模式：只做 tracking_id 精确匹配。
order_number 模式（固定优先级，精确永远优先于模糊）：
  1) order_number 精确
  2) 兜底一次查询（limit 1，按以下顺序取第一条）：
       - 前缀变体：ORDER_NUMBER_PREFIX + entry
       - 子串匹配：order_number ILIKE %entry%
       - 平台原始编号 external_order_number 精确
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.config import get_settings
from orderflow.models.enums import EntryType, MatchType
from orderflow.models.order import Order


@dataclass(frozen=True)
class LocateResult:
    order: Order
    match_type: MatchType


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def _by_tracking(session: AsyncSession, entry: str) -> Optional[Order]:
    stmt = select(Order).where(Order.tracking_id == entry).order_by(Order.id).limit(1)
    return (await session.execute(stmt)).scalars().first()


async def _by_order_number(
    session: AsyncSession, entry: str, prefix: str
) -> Optional[LocateResult]:
    exact = (
        await session.execute(select(Order).where(Order.order_number == entry).limit(1))
    ).scalars().first()
    if exact is not None:
        return LocateResult(exact, MatchType.ORDER_NUMBER)

    prefixed = f"{prefix}{entry}"
    pattern = f"%{_escape_like(entry)}%"
    rank = case(
        (Order.order_number == prefixed, 0),
        (Order.order_number.ilike(pattern, escape="\\"), 1),
        else_=2,
    )
    stmt = (
        select(Order)
        .where(
            or_(
                Order.order_number == prefixed,
                Order.order_number.ilike(pattern, escape="\\"),
                Order.external_order_number == entry,
            )
        )
        .order_by(rank, Order.id)
        .limit(1)
    )
    found = (await session.execute(stmt)).scalars().first()
    if found is None:
        return None

    if found.order_number == prefixed:
        return LocateResult(found, MatchType.PREFIXED)
    if entry.lower() in (found.order_number or "").lower():
        return LocateResult(found, MatchType.PARTIAL)
    return LocateResult(found, MatchType.ALTERNATE_ID)


async def locate(
    session: AsyncSession,
    entry: str,
    mode: EntryType | str,
    *,
    prefix: Optional[str] = None,
) -> Optional[LocateResult]:
    """找不到返回 None（不是异常）。"""
    if not entry:
        return None
    if EntryType(mode) == EntryType.TRACKING_ID:
        order = await _by_tracking(session, entry)
        return LocateResult(order, MatchType.TRACKING_ID) if order is not None else None
    p = get_settings().ORDER_NUMBER_PREFIX if prefix is None else prefix
    return await _by_order_number(session, entry, p)


async def locate_any(
    session: AsyncSession, entry: str, *, prefix: Optional[str] = None
) -> Optional[LocateResult]:
    """退货扫描不区分录入类型：先按 tracking_id，再按订单号。"""
    hit = await locate(session, entry, EntryType.TRACKING_ID)
    if hit is not None:
        return hit
    return await locate(session, entry, EntryType.ORDER_NUMBER, prefix=prefix)
