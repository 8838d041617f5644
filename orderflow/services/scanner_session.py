# orderflow/services/scanner_session.py
"""
交互式扫描会话（进程内）。

- 操作员扫得比一次往返快：最多 max_in_flight 条并发处理（Semaphore）；
- 正在处理中的原始录入串再次提交 → DUPLICATE_IN_FLIGHT（轻量拒绝，不碰 DB）；
- 统计（成功/失败/重复/滑动平均耗时）只由一个聚合任务从 asyncio.Queue 读结果后更新；
- 空闲 idle_timeout 秒或操作员 stop → 立即停止接收新扫描，已在处理的写入照常完成；
- 空闲停止后自行收尾（drain + 关聚合任务），再通过 on_stopped 通知登记表移除。
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.models.enums import EntryType, ErrorCode, ScanKind
from orderflow.services.dispatch_intake_service import intake
from orderflow.services.dispatch_intake_types import IntakeResult
from orderflow.services.return_intake_service import receive_return

logger = logging.getLogger("orderflow.scanner")

ScanHandler = Callable[[str], Awaitable[IntakeResult]]

LATENCY_WINDOW = 20
RECENT_RESULTS = 50


@dataclass
class SubmitAck:
    accepted: bool
    entry: str
    error_code: Optional[ErrorCode] = None


@dataclass
class _ScanEvent:
    entry: str
    result: Optional[IntakeResult]
    latency_ms: float = 0.0
    duplicate: bool = False


@dataclass
class ScannerStats:
    session_id: str
    kind: str
    active: bool
    stopped_reason: Optional[str]
    in_flight: int
    total: int = 0
    success: int = 0
    errors: int = 0
    duplicates_in_flight: int = 0
    avg_latency_ms: float = 0.0
    recent: List[dict] = field(default_factory=list)


class ScannerSession:
    def __init__(
        self,
        handler: ScanHandler,
        *,
        kind: ScanKind = ScanKind.DISPATCH,
        session_id: Optional[str] = None,
        max_in_flight: int = 5,
        idle_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        on_stopped: Optional[Callable[["ScannerSession"], None]] = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.kind = kind
        self.handler = handler
        self.idle_timeout = idle_timeout
        self._clock = clock
        self.on_stopped = on_stopped
        self._sem = asyncio.Semaphore(max_in_flight)
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._events: asyncio.Queue[_ScanEvent] = asyncio.Queue()
        self._aggregator: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._last_activity = clock()

        self.active = False
        self.stopped_reason: Optional[str] = None

        # 以下只由聚合任务写
        self._total = 0
        self._success = 0
        self._errors = 0
        self._duplicates = 0
        self._latencies: Deque[float] = deque(maxlen=LATENCY_WINDOW)
        self._recent: Deque[dict] = deque(maxlen=RECENT_RESULTS)

    # ---------------- lifecycle ----------------

    def start(self) -> "ScannerSession":
        if self.active:
            return self
        self.active = True
        self._last_activity = self._clock()
        self._aggregator = asyncio.create_task(self._aggregate(), name=f"scanner-agg-{self.session_id}")
        self._watchdog = asyncio.create_task(self._watch_idle(), name=f"scanner-idle-{self.session_id}")
        logger.info("scanner session %s started (%s)", self.session_id, self.kind.value)
        return self

    def stop(self, reason: str = "operator") -> None:
        """停止接收新扫描；不取消已在处理的任务。"""
        if not self.active:
            return
        self.active = False
        self.stopped_reason = reason
        if self._watchdog is not None and self._watchdog is not asyncio.current_task():
            self._watchdog.cancel()
        logger.info(
            "scanner session %s stopped (%s), %d still in flight",
            self.session_id,
            reason,
            len(self._in_flight),
        )

    async def drain(self) -> None:
        """等所有已接收的扫描处理完并被聚合，然后关掉聚合任务。"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._events.join()
        if self._aggregator is not None:
            self._aggregator.cancel()
            await asyncio.gather(self._aggregator, return_exceptions=True)
            self._aggregator = None

    async def close(self, reason: str = "operator") -> ScannerStats:
        self.stop(reason)
        await self.drain()
        return self.stats()

    # ---------------- scanning ----------------

    def submit(self, entry: str) -> SubmitAck:
        """非阻塞提交（即发即忘）；结果通过聚合统计和 recent 读取。"""
        if not self.active:
            return SubmitAck(False, entry, ErrorCode.SESSION_INACTIVE)
        self._last_activity = self._clock()

        if entry in self._in_flight:
            self._events.put_nowait(_ScanEvent(entry=entry, result=None, duplicate=True))
            return SubmitAck(False, entry, ErrorCode.DUPLICATE_IN_FLIGHT)

        self._in_flight.add(entry)
        task = asyncio.create_task(self._run(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return SubmitAck(True, entry)

    async def _run(self, entry: str) -> None:
        started = time.perf_counter()
        result: Optional[IntakeResult] = None
        try:
            async with self._sem:
                started = time.perf_counter()
                result = await self.handler(entry)
        except Exception as e:
            logger.exception("scanner %s: handler crashed for %r", self.session_id, entry)
            result = IntakeResult(
                success=False, entry=entry, error_code=ErrorCode.UNKNOWN_ERROR, message=str(e)
            )
        finally:
            self._in_flight.discard(entry)
            self._last_activity = self._clock()
            latency = (time.perf_counter() - started) * 1000
            await self._events.put(_ScanEvent(entry=entry, result=result, latency_ms=latency))

    async def _aggregate(self) -> None:
        while True:
            ev = await self._events.get()
            try:
                if ev.duplicate:
                    self._duplicates += 1
                    self._recent.append(
                        {"entry": ev.entry, "success": False, "error_code": ErrorCode.DUPLICATE_IN_FLIGHT.value}
                    )
                    continue
                self._total += 1
                r = ev.result
                if r is not None and r.success:
                    self._success += 1
                else:
                    self._errors += 1
                self._latencies.append(ev.latency_ms)
                self._recent.append(r.to_dict() if r is not None else {"entry": ev.entry, "success": False})
            finally:
                self._events.task_done()

    async def _watch_idle(self) -> None:
        tick = min(max(self.idle_timeout / 10, 0.01), 5.0)
        while self.active:
            await asyncio.sleep(tick)
            if self._in_flight:
                continue
            if self._clock() - self._last_activity >= self.idle_timeout:
                self.stop("idle")
                await self.drain()
                if self.on_stopped is not None:
                    self.on_stopped(self)
                return

    # ---------------- read side ----------------

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def stats(self) -> ScannerStats:
        avg = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
        return ScannerStats(
            session_id=self.session_id,
            kind=self.kind.value,
            active=self.active,
            stopped_reason=self.stopped_reason,
            in_flight=len(self._in_flight),
            total=self._total,
            success=self._success,
            errors=self._errors,
            duplicates_in_flight=self._duplicates,
            avg_latency_ms=round(avg, 2),
            recent=list(self._recent),
        )


def dispatch_handler(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    entry_type: EntryType,
    courier_code: Optional[str],
    user_id: Optional[str],
) -> ScanHandler:
    """每条扫描独立开一个 DB 会话（并发扫描不能共用 AsyncSession）。"""

    async def _handle(entry: str) -> IntakeResult:
        async with session_maker() as session:
            return await intake(
                session,
                entry=entry,
                entry_type=entry_type,
                courier_code=courier_code,
                user_id=user_id,
            )

    return _handle


def return_handler(
    session_maker: async_sessionmaker[AsyncSession], *, user_id: Optional[str]
) -> ScanHandler:
    async def _handle(entry: str) -> IntakeResult:
        async with session_maker() as session:
            return await receive_return(session, entry=entry, user_id=user_id)

    return _handle


class ScannerRegistry:
    """
    进程内扫描会话登记表。
    空闲停止的会话自动移出，最终统计保留最近 FINISHED_KEEP 条供查询。
    """

    FINISHED_KEEP = 100

    def __init__(self) -> None:
        self._sessions: Dict[str, ScannerSession] = {}
        self._finished: "OrderedDict[str, ScannerStats]" = OrderedDict()

    def add(self, session: ScannerSession) -> ScannerSession:
        session.on_stopped = self._forget
        self._sessions[session.session_id] = session
        return session

    def _forget(self, session: ScannerSession) -> None:
        if self._sessions.pop(session.session_id, None) is None:
            return
        self._finished[session.session_id] = session.stats()
        while len(self._finished) > self.FINISHED_KEEP:
            self._finished.popitem(last=False)
        logger.info("scanner session %s removed (%s)", session.session_id, session.stopped_reason)

    def get(self, session_id: str) -> Optional[ScannerSession]:
        return self._sessions.get(session_id)

    def finished_stats(self, session_id: str) -> Optional[ScannerStats]:
        return self._finished.get(session_id)

    async def close(self, session_id: str, reason: str = "operator") -> Optional[ScannerStats]:
        s = self._sessions.pop(session_id, None)
        if s is None:
            return self._finished.pop(session_id, None)
        return await s.close(reason)

    async def close_all(self) -> None:
        for sid in list(self._sessions):
            await self.close(sid, reason="shutdown")

    def __len__(self) -> int:
        return len(self._sessions)
