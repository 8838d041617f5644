# orderflow/services/courier/label_poller.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from orderflow.services.courier.types import LabelData

logger = logging.getLogger("orderflow.booking")

LabelFetcher = Callable[[], Awaitable[Optional[LabelData]]]


async def _poll(fetch: LabelFetcher, interval: float, backoff: float, max_interval: float) -> LabelData:
    delay = interval
    attempt = 0
    while True:
        attempt += 1
        try:
            label = await fetch()
        except Exception as e:
            # 面单接口偶发失败不中断轮询，由总超时兜底
            logger.warning("label fetch attempt %d failed: %s", attempt, e)
            label = None
        if label is not None:
            return label
        await asyncio.sleep(delay)
        delay = min(delay * backoff, max_interval)


async def poll_label(
    fetch: LabelFetcher,
    *,
    interval: float,
    timeout: float,
    backoff: float = 1.5,
    max_interval: Optional[float] = None,
) -> LabelData:
    """
    固定起始间隔 + 退避轮询面单，直到拿到或总超时。
    超时抛 asyncio.TimeoutError（调用方归类为 LABEL_TIMEOUT，不自动重试）。
    """
    return await asyncio.wait_for(
        _poll(fetch, interval, backoff, max_interval or max(interval, timeout / 4)),
        timeout=timeout,
    )
