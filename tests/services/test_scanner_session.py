# tests/services/test_scanner_session.py
from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from orderflow.models import Dispatch
from orderflow.models.enums import ErrorCode, ScanKind
from orderflow.services.dispatch_intake_types import IntakeResult
from orderflow.services.scanner_session import ScannerRegistry, ScannerSession, dispatch_handler

pytestmark = pytest.mark.grp_scan


class GatedHandler:
    """可控的假处理器：release() 之前所有扫描都卡住，记录最大并发。"""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.running = 0
        self.peak = 0
        self.calls = []

    async def __call__(self, entry: str) -> IntakeResult:
        self.calls.append(entry)
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await self.gate.wait()
        finally:
            self.running -= 1
        ok = not entry.startswith("BAD")
        return IntakeResult(
            success=ok,
            entry=entry,
            error_code=None if ok else ErrorCode.NOT_FOUND,
        )

    def release(self) -> None:
        self.gate.set()


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_duplicate_in_flight_is_rejected_without_second_call():
    h = GatedHandler()
    s = ScannerSession(h, max_in_flight=5).start()

    first = s.submit("TRK11111")
    await _settle()
    dup = s.submit("TRK11111")

    assert first.accepted
    assert not dup.accepted
    assert dup.error_code == ErrorCode.DUPLICATE_IN_FLIGHT

    h.release()
    stats = await s.close()
    assert h.calls == ["TRK11111"]
    assert stats.total == 1
    assert stats.duplicates_in_flight == 1

    # 处理完以后同一条可以再次提交（会话已关，这里换一个新会话）
    s2 = ScannerSession(h).start()
    assert s2.submit("TRK11111").accepted
    await s2.close()


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    h = GatedHandler()
    s = ScannerSession(h, max_in_flight=2).start()

    for i in range(6):
        assert s.submit(f"TRK0000{i}").accepted
    await _settle()
    assert h.running == 2
    assert s.in_flight == 6

    h.release()
    stats = await s.close()
    assert h.peak == 2
    assert stats.total == 6
    assert stats.success == 6
    assert stats.in_flight == 0


@pytest.mark.asyncio
async def test_stats_count_success_and_errors():
    h = GatedHandler()
    h.release()
    s = ScannerSession(h).start()
    for e in ("TRKAAAAA", "BAD00001", "TRKBBBBB"):
        s.submit(e)
    stats = await s.close()

    assert stats.total == 3
    assert stats.success == 2
    assert stats.errors == 1
    assert stats.avg_latency_ms >= 0
    assert len(stats.recent) == 3


@pytest.mark.asyncio
async def test_stop_rejects_new_scans_but_finishes_in_flight():
    h = GatedHandler()
    s = ScannerSession(h).start()
    assert s.submit("TRK11111").accepted
    await _settle()

    s.stop()
    late = s.submit("TRK22222")
    assert not late.accepted
    assert late.error_code == ErrorCode.SESSION_INACTIVE

    h.release()
    await s.drain()
    stats = s.stats()
    assert stats.total == 1
    assert stats.success == 1
    assert stats.stopped_reason == "operator"


@pytest.mark.asyncio
async def test_idle_timeout_stops_session():
    h = GatedHandler()
    h.release()
    s = ScannerSession(h, idle_timeout=0.05).start()

    for _ in range(50):
        if not s.active:
            break
        await asyncio.sleep(0.02)

    assert not s.active
    assert s.stopped_reason == "idle"
    assert s.submit("TRK11111").error_code == ErrorCode.SESSION_INACTIVE
    await s.close()


@pytest.mark.asyncio
async def test_handler_crash_counts_as_error():
    async def boom(entry: str) -> IntakeResult:
        raise RuntimeError("db went away")

    s = ScannerSession(boom).start()
    s.submit("TRK11111")
    stats = await s.close()

    assert stats.errors == 1
    assert stats.recent[0]["error_code"] == ErrorCode.UNKNOWN_ERROR.value


@pytest.mark.asyncio
async def test_real_dispatch_handler_end_to_end(async_session_maker, make_order):
    await make_order("SHOP-1001", tracking_id="PX111111", courier="postex")
    await make_order("SHOP-1002", tracking_id="PX222222", courier="postex")

    registry = ScannerRegistry()
    s = registry.add(
        ScannerSession(
            dispatch_handler(async_session_maker, entry_type="tracking_id", courier_code=None, user_id="op-1"),
            kind=ScanKind.DISPATCH,
            # sqlite 单写者：真实 DB 场景串行处理
            max_in_flight=1,
        ).start()
    )
    for e in ("PX111111", "PX222222", "NOPE00001"):
        s.submit(e)

    stats = await registry.close(s.session_id)

    assert stats.total == 3
    assert stats.success == 2
    assert stats.errors == 1
    assert registry.get(s.session_id) is None
    async with async_session_maker() as db:
        assert await db.scalar(select(func.count(Dispatch.id))) == 2


@pytest.mark.asyncio
async def test_idle_session_is_removed_from_registry_and_cleaned_up():
    h = GatedHandler()
    h.release()
    registry = ScannerRegistry()
    s = registry.add(ScannerSession(h, idle_timeout=0.05).start())
    s.submit("TRK11111")

    for _ in range(50):
        if len(registry) == 0:
            break
        await asyncio.sleep(0.02)

    assert len(registry) == 0
    assert registry.get(s.session_id) is None
    assert not s.active
    running = {t.get_name() for t in asyncio.all_tasks() if not t.done()}
    assert f"scanner-agg-{s.session_id}" not in running
    assert f"scanner-idle-{s.session_id}" not in running

    # 最终统计仍可查
    stats = registry.finished_stats(s.session_id)
    assert stats is not None
    assert stats.stopped_reason == "idle"
    assert stats.total == 1
    assert stats.success == 1
