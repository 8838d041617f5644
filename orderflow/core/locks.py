# orderflow/core/locks.py
"""
按 key 串行化的进程内异步锁。

- key 约定：'order:{id}' / 'ext:{external_order_id}'；
- 同一 key 的临界区不会交错，不同 key 之间互不阻塞；
- 没有持有者也没有等待者时回收锁对象，避免无限增长；
- 只在单进程内有效，多进程部署依赖 DB 唯一约束兜底。
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLockRegistry:
    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def order_key(order_id: int) -> str:
    return f"order:{order_id}"


def external_key(external_order_id: str) -> str:
    return f"ext:{external_order_id}"


order_locks = KeyedLockRegistry()
