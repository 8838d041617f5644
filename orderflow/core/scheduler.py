# orderflow/core/scheduler.py
from __future__ import annotations

import logging
from typing import Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.config import get_settings
from orderflow.services.courier.http import CourierHttp
from orderflow.services.courier_booking_service import CourierBookingService
from orderflow.services.courier_retry_worker import run_retry_queue_job
from orderflow.services.sync_queue_worker import PlatformTagPusher, run_sync_queue_job

logger = logging.getLogger("orderflow.scheduler")

_scheduler: Optional[AsyncIOScheduler] = None


def init_scheduler(
    session_maker: async_sessionmaker[AsyncSession], client: httpx.AsyncClient
) -> Optional[AsyncIOScheduler]:
    """ENABLE_WORKERS=1 时启动：下单重试队列 + 标签回写队列，固定间隔。"""
    global _scheduler
    s = get_settings()
    if not s.ENABLE_WORKERS:
        return None
    if _scheduler is not None:
        return _scheduler

    booking = CourierBookingService(CourierHttp(client, max_redirects=s.COURIER_MAX_REDIRECTS))
    pusher = PlatformTagPusher(client)

    _scheduler = AsyncIOScheduler(timezone="UTC")
    _scheduler.add_job(
        run_retry_queue_job,
        "interval",
        seconds=s.WORKER_INTERVAL_SECONDS,
        args=[session_maker, booking],
        id="courier_retry_queue",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(
        run_sync_queue_job,
        "interval",
        seconds=s.WORKER_INTERVAL_SECONDS,
        args=[session_maker, pusher],
        id="platform_sync_queue",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info("workers started (interval=%ss)", s.WORKER_INTERVAL_SECONDS)
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
